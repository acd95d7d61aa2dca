"""Network subsystem: default transport, caching, retry delays and telemetry.

This package holds everything the request engine delegates to libraries:
- HTTPX: HTTP/1.1 and HTTP/2 client with connection pooling
- Hishel: RFC 9111-compliant HTTP caching
- Tenacity: exponential backoff with jitter for the default retry delay

Modules:
- client: default transport function over shared ``httpx.AsyncClient`` pools
- policy: HTTP policy constants (redirects, retry lists, pooling, caching)
- cache: Hishel caching decorator for transport functions
- retry: default retry delay computation
- instrumentation: request logging hooks

Example:
    >>> from courier.network import create_request_logging_hooks
    >>> hooks = create_request_logging_hooks()
"""

from courier.network.cache import cached_transport, resolve_cache_storage
from courier.network.client import (
    TransportOptions,
    close_http_clients,
    get_http_client,
    reset_http_clients,
    send_request,
)
from courier.network.instrumentation import create_request_logging_hooks
from courier.network.policy import (
    MAX_REDIRECTS,
    REDIRECT_CODES,
    RETRY_ERROR_CODES,
    RETRY_LIMIT,
    RETRY_METHODS,
    RETRY_STATUS_CODES,
)
from courier.network.retry import RetryInfo, calculate_retry_delay, parse_retry_after

__all__ = [
    "TransportOptions",
    "send_request",
    "get_http_client",
    "close_http_clients",
    "reset_http_clients",
    "cached_transport",
    "resolve_cache_storage",
    "create_request_logging_hooks",
    "RetryInfo",
    "calculate_retry_delay",
    "parse_retry_after",
    "MAX_REDIRECTS",
    "REDIRECT_CODES",
    "RETRY_ERROR_CODES",
    "RETRY_LIMIT",
    "RETRY_METHODS",
    "RETRY_STATUS_CODES",
]
