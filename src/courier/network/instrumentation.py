# === NAVMAP v1 ===
# {
#   "module": "courier.network.instrumentation",
#   "purpose": "Request logging hooks emitting net.request records",
#   "sections": [
#     {
#       "id": "create-request-logging-hooks",
#       "name": "create_request_logging_hooks",
#       "anchor": "function-create-request-logging-hooks",
#       "kind": "function"
#     },
#     {
#       "id": "elapsed-ms",
#       "name": "_elapsed_ms",
#       "anchor": "function-elapsed-ms",
#       "kind": "function"
#     },
#     {
#       "id": "get-cache-state",
#       "name": "_get_cache_state",
#       "anchor": "function-get-cache-state",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Request instrumentation.

Emits ``net.request`` log records for every attempt made through an instance
that installs these hooks, capturing method, redacted URL, status, attempt
number, elapsed time and cache state.  Elapsed time is read from the
attempt's :class:`~courier.response.Timings`, so the hooks keep no state
between calls.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from courier.logging_utils import redact_url

logger = logging.getLogger(__name__)


def create_request_logging_hooks(level: int = logging.INFO) -> Dict[str, List[Any]]:
    """Create hooks that log one ``net.request`` record per attempt.

    Successful attempts are logged from ``after_response`` (promise mode
    only); failures from ``before_error`` in both modes.  An attempt that
    already failed is never logged twice.

    Returns:
        Mapping usable as the ``hooks`` option.

    Usage:
        >>> from courier import courier
        >>> client = courier.extend({"hooks": create_request_logging_hooks()})
    """

    def on_response(response: Any, retry_with_merged_options: Any) -> Any:
        engine = response.request
        if engine is not None and engine.error is not None:
            return response

        options = response.options
        logger.log(
            level,
            "net.request",
            extra={
                "method": options.method,
                "url_redacted": redact_url(response.url),
                "host": response.url.host or "unknown",
                "status": response.status_code,
                "attempt": response.retry_count + 1,
                "http2": response.http_version.startswith("HTTP/2"),
                "cache": _get_cache_state(response),
                "elapsed_ms": _elapsed_ms(response.timings),
                "redirects": len(response.redirect_urls),
            },
        )
        return response

    def on_error(error: Any) -> Any:
        options = error.options
        engine = error.request
        if options is None or error.timings is None:
            return error
        if engine is not None and engine.error is not None:
            return error

        response = error.response
        logger.log(
            level,
            "net.request",
            extra={
                "method": options.method,
                "url_redacted": redact_url(options.url),
                "status": response.status_code if response is not None else None,
                "attempt": engine.retry_count + 1 if engine is not None else 1,
                "error": error.code,
                "kind": error.kind.value,
                "elapsed_ms": _elapsed_ms(error.timings),
            },
        )
        return error

    return {
        "after_response": [on_response],
        "before_error": [on_error],
    }


def _elapsed_ms(timings: Any) -> Optional[float]:
    if timings is None:
        return None
    return (time.monotonic() - timings.start) * 1000


def _get_cache_state(response: Any) -> str:
    """Cache state reported by the caching decorator."""
    if response.is_from_cache:
        return "hit"
    if response.raw.extensions.get("revalidated"):
        return "revalidated"
    return "miss"


__all__ = [
    "create_request_logging_hooks",
]
