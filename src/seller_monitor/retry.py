"""Retry and backoff helpers for marketplace calls."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import requests

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_STATUSES = frozenset({403, 429})
PAGINATION_LIMIT_MESSAGE = "Pagination above 100 disabled"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff schedule."""

    max_attempts: int = 3
    initial_delay: float = 5.0
    max_delay: float = 60.0

    def delays(self) -> list[float]:
        """Delays slept between consecutive attempts."""

        delays: list[float] = []
        delay = max(0.0, self.initial_delay)
        for _ in range(max(0, self.max_attempts - 1)):
            delays.append(min(delay, self.max_delay))
            delay *= 2
        return delays


def response_message(error: BaseException) -> str:
    """Return the ``message`` field of an error response body, if any."""

    response = getattr(error, "response", None)
    if response is None:
        return ""
    try:
        payload = response.json()
    except ValueError:
        return ""
    if isinstance(payload, dict):
        return str(payload.get("message") or "")
    return ""


def status_code_of(error: BaseException) -> int | None:
    response = getattr(error, "response", None)
    if response is None:
        return None
    return getattr(response, "status_code", None)


def is_pagination_limit_error(error: BaseException) -> bool:
    """Discogs answers 403 when paging past page 100 of another user's inventory."""

    if status_code_of(error) != 403:
        return False
    return PAGINATION_LIMIT_MESSAGE in response_message(error) or PAGINATION_LIMIT_MESSAGE in str(error)


def is_retryable_error(error: BaseException) -> bool:
    """Classify ``error`` as worth retrying.

    Discogs uses both 429 and 403 for throttling, so both are retried. The
    pagination-limit 403 is a hard limit and is not.
    """

    if isinstance(error, requests.HTTPError):
        if is_pagination_limit_error(error):
            return False
        return status_code_of(error) in RATE_LIMIT_STATUSES
    return isinstance(
        error,
        (
            requests.ConnectionError,
            requests.Timeout,
            requests.exceptions.ChunkedEncodingError,
            requests.exceptions.RetryError,
        ),
    )


def with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    context: str = "request",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``operation`` until it succeeds, fails fatally or runs out of attempts."""

    delays = policy.delays()
    attempts = max(1, policy.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except Exception as exc:
            if attempt >= attempts or not is_retryable(exc):
                raise
            delay = delays[attempt - 1]
            logger.warning(
                "Retryable failure for %s (attempt %s/%s), retrying in %.1fs: %s",
                context,
                attempt,
                attempts,
                delay,
                exc,
            )
            if delay > 0:
                sleep(delay)
    # The loop either returns or raises.
    raise RuntimeError("Retry loop exited unexpectedly")
