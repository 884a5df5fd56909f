"""Resilient outbound call decorator built on tenacity.

Retries 3 times with exponential backoff and jitter, logs a warning before
each retry, and logs an error (forwarded to Sentry when enabled) once the
attempts are exhausted before re-raising the original exception.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    retry,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])

MAX_ATTEMPTS = 3


def _api_name(retry_state: RetryCallState) -> str:
    if retry_state.fn is None:
        return "unknown"
    return str(getattr(retry_state.fn, "_api_name", "unknown"))


def log_final_failure(retry_state: RetryCallState) -> Any:
    """Log exhaustion of all attempts, then re-raise the last exception.

    Args:
        retry_state: Tenacity retry state with attempt info and outcome.
    """
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.error(
        "api_call_failed",
        api_name=_api_name(retry_state),
        attempts=retry_state.attempt_number,
        exception=str(exception),
    )
    if retry_state.outcome is not None:
        return retry_state.outcome.result()
    return None


def _before_sleep_log(retry_state: RetryCallState) -> None:
    logger.warning(
        "api_call_retrying",
        api_name=_api_name(retry_state),
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
    )


def resilient_api_call(
    api_name: str,
    *,
    attempts: int = MAX_ATTEMPTS,
    initial_wait: float = 1,
    max_wait: float = 30,
    jitter: float = 5,
) -> Callable[[F], F]:
    """Create a retry decorator for an outbound call.

    Works for plain and ``async`` functions alike.

    Args:
        api_name: Human-readable name for the API (used in logs).
        attempts: Maximum number of attempts.
        initial_wait: First backoff interval in seconds.
        max_wait: Upper bound on any backoff interval.
        jitter: Maximum random jitter added to each interval.

    Returns:
        A decorator that wraps the function with retry logic.
    """

    def decorator(func: F) -> F:
        func._api_name = api_name  # type: ignore[attr-defined]

        wrapped = retry(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential_jitter(initial=initial_wait, max=max_wait, jitter=jitter),
            before_sleep=_before_sleep_log,
            retry_error_callback=log_final_failure,
            reraise=True,
        )(func)

        return wrapped  # type: ignore[return-value]

    return decorator
