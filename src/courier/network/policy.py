# === NAVMAP v1 ===
# {
#   "module": "courier.network.policy",
#   "purpose": "HTTP policy constants and defaults.",
#   "sections": []
# }
# === /NAVMAP ===

"""HTTP policy constants and defaults.

Redirect handling, the default retry allow-lists, connection pooling limits
and cache controller settings used by the request engine and the default
httpx-backed transport.
"""

from importlib.util import find_spec

# ============================================================================
# Redirects
# ============================================================================

#: Status codes that trigger redirect handling when a Location header is present
REDIRECT_CODES = frozenset({300, 301, 302, 303, 304, 307, 308})

#: Default ceiling for the redirect chain of one request
MAX_REDIRECTS = 10

#: Methods that never carry a payload unless explicitly allowed
METHODS_WITHOUT_BODY = frozenset({"GET", "HEAD"})


# ============================================================================
# Retry Defaults
# ============================================================================

#: Retries after the first attempt
RETRY_LIMIT = 2

#: Methods safe to replay (POST/PATCH are not idempotent)
RETRY_METHODS = frozenset({"GET", "PUT", "HEAD", "DELETE", "OPTIONS", "TRACE"})

#: Status codes worth another attempt
RETRY_STATUS_CODES = frozenset({408, 413, 429, 500, 502, 503, 504, 521, 522, 524})

#: Errno-style codes worth another attempt
RETRY_ERROR_CODES = frozenset(
    {
        "ETIMEDOUT",
        "ECONNRESET",
        "EADDRINUSE",
        "ECONNREFUSED",
        "EPIPE",
        "ENOTFOUND",
        "ENETUNREACH",
        "EAI_AGAIN",
    }
)

#: Base of the exponential backoff (seconds); attempt n waits 2 ** (n - 1)
RETRY_BACKOFF_BASE = 1.0

#: Upper bound of the jitter added to every computed backoff (seconds)
RETRY_JITTER = 0.1


# ============================================================================
# Connection Pooling
# ============================================================================

#: Maximum concurrent connections per shared client
MAX_CONNECTIONS = 100

#: Maximum idle connections kept per shared client
MAX_KEEPALIVE_CONNECTIONS = 20

#: How long to keep idle connections alive (seconds)
KEEPALIVE_EXPIRY = 5.0


# ============================================================================
# Compression
# ============================================================================

#: Brotli decoding is available when either binding is installed
BROTLI_AVAILABLE = find_spec("brotli") is not None or find_spec("brotlicffi") is not None

#: Default Accept-Encoding sent when decompression is enabled
ACCEPT_ENCODING = "gzip, deflate, br" if BROTLI_AVAILABLE else "gzip, deflate"


# ============================================================================
# Hishel RFC 9111 Cache Settings
# ============================================================================

#: Cacheable HTTP methods
CACHEABLE_METHODS = ["GET", "HEAD"]

#: Cacheable HTTP status codes
CACHEABLE_STATUS_CODES = [200, 203, 300, 301, 308]

#: Allow heuristic caching (RFC 9111 Section 4.2.3)
ALLOW_HEURISTIC_CACHING = False

#: Lifetime of entries in file storage (seconds)
CACHE_STORAGE_TTL_SECONDS = 7 * 24 * 3600

#: Application name used for the platform cache directory
CACHE_APP_NAME = "courier"


# ============================================================================
# User-Agent
# ============================================================================

#: Default User-Agent template
USER_AGENT_TEMPLATE = "courier/{version} (+{project_url})"

#: Project URL advertised in the User-Agent
PROJECT_URL = "https://github.com/courier-http/courier"


__all__ = [
    "REDIRECT_CODES",
    "MAX_REDIRECTS",
    "METHODS_WITHOUT_BODY",
    "RETRY_LIMIT",
    "RETRY_METHODS",
    "RETRY_STATUS_CODES",
    "RETRY_ERROR_CODES",
    "RETRY_BACKOFF_BASE",
    "RETRY_JITTER",
    "MAX_CONNECTIONS",
    "MAX_KEEPALIVE_CONNECTIONS",
    "KEEPALIVE_EXPIRY",
    "BROTLI_AVAILABLE",
    "ACCEPT_ENCODING",
    "CACHEABLE_METHODS",
    "CACHEABLE_STATUS_CODES",
    "ALLOW_HEURISTIC_CACHING",
    "CACHE_STORAGE_TTL_SECONDS",
    "CACHE_APP_NAME",
    "USER_AGENT_TEMPLATE",
    "PROJECT_URL",
]
