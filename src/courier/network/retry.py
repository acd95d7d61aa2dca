# === NAVMAP v1 ===
# {
#   "module": "courier.network.retry",
#   "purpose": "Default retry backoff computation built on Tenacity wait strategies",
#   "sections": [
#     {"id": "retry-info", "name": "RetryInfo", "anchor": "class-retry-info", "kind": "class"},
#     {"id": "parse-retry-after", "name": "parse_retry_after", "anchor": "function-parse-retry-after", "kind": "function"},
#     {"id": "calculate-retry-delay", "name": "calculate_retry_delay", "anchor": "function-calculate-retry-delay", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Retry backoff computation.

The promise layer asks the configured ``retry.calculate_delay`` callable for a
delay after every failed attempt.  The callable receives a :class:`RetryInfo`
whose ``computed_value`` is the result of :func:`calculate_retry_delay`, so
custom policies can adjust the default rather than reimplement it.  A delay of
``0`` means "do not retry".

The exponential part of the default is a Tenacity wait strategy:
``wait_exponential`` (1s, 2s, 4s, ...) plus ``wait_random`` jitter.
"""

from __future__ import annotations

import email.utils
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from tenacity import RetryCallState, wait_exponential, wait_random
from tenacity.wait import wait_base

from courier.network.policy import RETRY_BACKOFF_BASE, RETRY_JITTER

if TYPE_CHECKING:  # pragma: no cover
    from courier.errors import RequestError

logger = logging.getLogger(__name__)

__all__ = ["RetryInfo", "calculate_retry_delay", "parse_retry_after", "default_backoff"]


@dataclass
class RetryInfo:
    """Arguments handed to ``retry.calculate_delay``.

    Attributes:
        attempt_count: 1-based number of the retry being considered.
        retry_options: The :class:`~courier.options.RetryPolicy` in force.
        error: The error that ended the previous attempt.
        computed_value: Delay (seconds) suggested by the default policy.
        retry_after: Parsed ``Retry-After`` header (seconds), if any.
    """

    attempt_count: int
    retry_options: Any
    error: "RequestError"
    computed_value: float = 0.0
    retry_after: Optional[float] = None


# ============================================================================
# Retry-After
# ============================================================================


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Convert a Retry-After header value into a delay in seconds.

    Dates in the past collapse to a 1ms delay so the header still counts as
    present.

    Example:
        >>> parse_retry_after("3")
        3.0
        >>> parse_retry_after(None) is None
        True
    """
    if not value:
        return None

    try:
        return max(0.0, float(int(value.strip())))
    except ValueError:
        pass

    try:
        dt = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delay = (dt - datetime.now(timezone.utc)).total_seconds()
    return delay if delay > 0 else 0.001


# ============================================================================
# Backoff
# ============================================================================


def _build_backoff() -> wait_base:
    return wait_exponential(multiplier=RETRY_BACKOFF_BASE, exp_base=2, min=0) + wait_random(
        0, RETRY_JITTER
    )


_BACKOFF = _build_backoff()


def default_backoff(attempt_count: int) -> float:
    """Exponential backoff with jitter for the ``attempt_count``-th retry."""
    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})  # type: ignore[arg-type]
    state.attempt_number = attempt_count
    return float(_BACKOFF(state))


def calculate_retry_delay(info: RetryInfo) -> float:
    """Default retry policy.

    Returns ``0`` when the retry limit is exhausted, the method is not
    retryable, or neither the error code nor the status code is in the
    allow-lists.  A ``Retry-After`` header wins over the exponential backoff
    unless ``max_retry_after`` is unset or exceeded, in which case no retry
    happens.  ``413`` responses without ``Retry-After`` are not retried.
    """
    policy = info.retry_options
    error = info.error

    if info.attempt_count > policy.limit:
        return 0

    options = error.options
    method = options.method if options is not None else None
    if method not in policy.methods:
        return 0

    response = error.response
    has_error_code = error.code in policy.error_codes
    has_status_code = response is not None and response.status_code in policy.status_codes
    if not has_error_code and not has_status_code:
        return 0

    if response is not None:
        if info.retry_after:
            if policy.max_retry_after is None or info.retry_after > policy.max_retry_after:
                return 0
            return info.retry_after
        if response.status_code == 413:
            return 0

    return default_backoff(info.attempt_count)
