"""Audit trail: models, storage, logger, and CLI for engine events."""

from offer_engine.audit.cli import build_parser
from offer_engine.audit.logger import AuditLogger
from offer_engine.audit.models import AuditAction, AuditEntry, SubjectType
from offer_engine.audit.store import (
    close_audit_db,
    init_audit_db,
    init_audit_table,
    insert_audit_entry,
    query_audit_trail,
)

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditLogger",
    "SubjectType",
    "build_parser",
    "close_audit_db",
    "init_audit_db",
    "init_audit_table",
    "insert_audit_entry",
    "query_audit_trail",
]
