"""Command-line access to the offer engine audit trail.

Filters map one-to-one onto :func:`offer_engine.audit.store.query_audit_trail`;
``--last`` is a shorthand for ``--from-date`` relative to now.

Usage::

    offer-engine-audit --subject-id <session-id> --last 7d
    offer-engine-audit --action offer.merged --format json
"""

from __future__ import annotations

import argparse
import json
import re
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from offer_engine.audit.models import AuditAction, SubjectType
from offer_engine.audit.store import close_audit_db, init_audit_db, query_audit_trail

DEFAULT_DB = "data/offer_engine.db"

_DURATION = re.compile(r"^(\d+)([mhdw])$")
_UNITS = {"m": "minutes", "h": "hours", "d": "days", "w": "weeks"}

# (header, row key, width)
COLUMNS: tuple[tuple[str, str, int], ...] = (
    ("Timestamp", "timestamp", 20),
    ("Action", "action", 22),
    ("Actor", "actor_id", 20),
    ("Subject", "subject_type", 15),
    ("Subject ID", "subject_id", 36),
    ("Details", "details", 40),
)

# Metadata keys worth a glance in table output, in display order.
_DETAIL_KEYS = ("cost", "combined_cost", "from_status", "to_status", "old_quantity", "new_quantity")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="offer-engine-audit", description="Query the offer engine audit trail"
    )
    filters = parser.add_argument_group("filters")
    filters.add_argument("--actor", help="Acting user ID")
    filters.add_argument(
        "--subject-type", choices=[s.value for s in SubjectType], help="Kind of subject"
    )
    filters.add_argument("--subject-id", help="Session, order, listing, or organization ID")
    filters.add_argument("--action", choices=[a.value for a in AuditAction])
    filters.add_argument("--from-date", help="Earliest timestamp (YYYY-MM-DD)")
    filters.add_argument("--to-date", help="Latest timestamp (YYYY-MM-DD)")
    filters.add_argument("--last", help='Relative window such as "30m", "24h", "7d", "2w"')

    output = parser.add_argument_group("output")
    output.add_argument(
        "--format", choices=["table", "json"], default="table", dest="output_format"
    )
    output.add_argument("--limit", type=int, default=50, help="Maximum rows (default: 50)")
    parser.add_argument("--db", default=DEFAULT_DB, help=f"Engine database (default: {DEFAULT_DB})")
    return parser


def parse_last_duration(last: str) -> str:
    """Turn a ``--last`` window into an absolute UTC timestamp.

    Args:
        last: A count followed by ``m``, ``h``, ``d`` or ``w``.

    Returns:
        The start of the window as ``YYYY-MM-DDTHH:MM:SSZ``.

    Raises:
        ValueError: If *last* does not match the format.
    """
    match = _DURATION.match(last or "")
    if match is None:
        msg = f"Unrecognized duration format: {last!r}. Use e.g. 30m, 24h, 7d or 2w."
        raise ValueError(msg)
    delta = timedelta(**{_UNITS[match.group(2)]: int(match.group(1))})
    return (datetime.now(tz=UTC) - delta).strftime("%Y-%m-%dT%H:%M:%SZ")


def summarize_metadata(metadata: dict[str, Any] | None) -> str:
    """Render the interesting metadata fields of an entry as ``key=value`` pairs."""
    if not metadata:
        return ""
    return " ".join(f"{key}={metadata[key]}" for key in _DETAIL_KEYS if key in metadata)


def _cell(value: Any, width: int) -> str:
    text = "" if value is None else str(value)
    if len(text) > width:
        text = text[: width - 3] + "..."
    return text.ljust(width)


def format_table(results: list[dict[str, Any]]) -> str:
    """Format audit entries as a fixed-width table with a header row."""
    if not results:
        return "No results found."

    header = "  ".join(_cell(title, width) for title, _, width in COLUMNS).rstrip()
    lines = [header, "-" * len(header)]
    for row in results:
        values = {**row, "details": summarize_metadata(row.get("metadata"))}
        lines.append(
            "  ".join(_cell(values.get(key), width) for _, key, width in COLUMNS).rstrip()
        )
    return "\n".join(lines)


def format_json(results: list[dict[str, Any]]) -> str:
    return json.dumps(results, indent=2)


def main(argv: list[str] | None = None) -> None:
    """Entry point for ``offer-engine-audit``."""
    args = build_parser().parse_args(argv)
    from_date = parse_last_duration(args.last) if args.last else args.from_date

    db_path = Path(args.db)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = init_audit_db(db_path)
    try:
        results = query_audit_trail(
            conn,
            action=args.action,
            actor_id=args.actor,
            subject_type=args.subject_type,
            subject_id=args.subject_id,
            from_date=from_date,
            to_date=args.to_date,
            limit=args.limit,
        )
    finally:
        close_audit_db(conn)

    render = format_json if args.output_format == "json" else format_table
    print(render(results))


if __name__ == "__main__":
    main()
