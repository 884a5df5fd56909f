"""Notifier transports: signed JSON webhook and structured logging.

:class:`WebhookNotifier` POSTs each event as JSON with an HMAC-SHA256
signature of the raw body in ``X-Signature``, retrying transient failures.
:class:`LoggingNotifier` is used when no webhook URL is configured.
"""

from __future__ import annotations

import hashlib
import hmac

import httpx
import structlog

from offer_engine.notifications.models import NotificationEvent
from offer_engine.resilience.retry import resilient_api_call

logger = structlog.get_logger()

SIGNATURE_HEADER = "X-Signature"


def sign_payload(body: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 digest of *body* under *secret*."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Check *signature* against the raw *body* bytes in constant time."""
    return hmac.compare_digest(sign_payload(body, secret), signature)


class WebhookNotifier:
    """Deliver notification events to an HTTP endpoint.

    Args:
        url: Endpoint receiving the POSTed events.
        secret: Signing secret.  Empty disables the signature header.
        client: Optional shared ``httpx.AsyncClient`` (tests inject a mock
            transport here).  A client is created per call otherwise.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        secret: str = "",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._secret = secret
        self._client = client
        self._timeout = timeout

    def _headers(self, body: bytes) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._secret:
            headers[SIGNATURE_HEADER] = sign_payload(body, self._secret)
        return headers

    @resilient_api_call("notification_webhook")
    async def send(self, event: NotificationEvent) -> None:
        """POST *event* to the webhook.

        Raises:
            httpx.HTTPStatusError: If the endpoint answers with a non-2xx
                status on the final attempt.
        """
        body = event.model_dump_json().encode()
        if self._client is not None:
            response = await self._client.post(
                self._url, content=body, headers=self._headers(body), timeout=self._timeout
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self._url, content=body, headers=self._headers(body), timeout=self._timeout
                )
        response.raise_for_status()
        logger.info("notification_webhook_sent", event_type=event.type.value)


class LoggingNotifier:
    """Write notification events to the structured log."""

    async def send(self, event: NotificationEvent) -> None:
        logger.info(
            "notification",
            event_type=event.type.value,
            recipients=event.recipients,
            session_id=event.session_id,
            order_id=event.order_id,
            message=event.message,
        )
