# === NAVMAP v1 ===
# {
#   "module": "courier.network.client",
#   "purpose": "Default transport function backed by shared httpx.AsyncClient pools",
#   "sections": [
#     {
#       "id": "transport-options",
#       "name": "TransportOptions",
#       "anchor": "class-transportoptions",
#       "kind": "class"
#     },
#     {
#       "id": "send-request",
#       "name": "send_request",
#       "anchor": "function-send-request",
#       "kind": "function"
#     },
#     {
#       "id": "get-http-client",
#       "name": "get_http_client",
#       "anchor": "function-get-http-client",
#       "kind": "function"
#     },
#     {
#       "id": "close-http-clients",
#       "name": "close_http_clients",
#       "anchor": "function-close-http-clients",
#       "kind": "function"
#     },
#     {
#       "id": "reset-http-clients",
#       "name": "reset_http_clients",
#       "anchor": "function-reset-http-clients",
#       "kind": "function"
#     },
#     {
#       "id": "create-ssl-context",
#       "name": "_create_ssl_context",
#       "anchor": "function-create-ssl-context",
#       "kind": "function"
#     },
#     {
#       "id": "create-http-client",
#       "name": "_create_http_client",
#       "anchor": "function-create-http-client",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""HTTPX-backed default transport.

The request engine never owns sockets.  It hands a fully built
``httpx.Request`` to a *transport function*; :func:`send_request` is the
default one.  It picks a client (a caller supplied override from the
``clients`` option, or a shared ``httpx.AsyncClient`` from the pool) and
sends the request with ``stream=True`` and redirects disabled, because the
engine reads the body on demand and follows redirects itself.

Key design:
- **Lazy initialization**: Clients are created on first use, never at import.
- **Keyed pool**: One client per distinct (http2, verify, socket path,
  local address) combination, so connection pools are shared between
  requests that can share sockets.
- **Thread-safe**: The pool is guarded by a ``threading.Lock``.
- **PID-aware**: A forked child discards the inherited pool.

Example:
    >>> from courier.network.client import TransportOptions, send_request
    >>> # response = await send_request(httpx.Request("GET", url), TransportOptions())
    >>> # await close_http_clients()  # at process shutdown or test cleanup
"""

import logging
import os
import ssl
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import certifi
import httpx

from courier.network.policy import KEEPALIVE_EXPIRY, MAX_CONNECTIONS, MAX_KEEPALIVE_CONNECTIONS

logger = logging.getLogger(__name__)


# ============================================================================
# Transport Options
# ============================================================================


@dataclass(frozen=True)
class TransportOptions:
    """Per-request settings handed to a transport function.

    Attributes:
        timeout: ``httpx.Timeout`` for connect/read/write (``as_dict()`` form
            is also accepted by httpx through request extensions).
        http2: Negotiate HTTP/2 when the server supports it.
        verify: Verify TLS certificates.
        local_address: Source address to bind outgoing sockets to.
        socket_path: UNIX domain socket to connect through.
        clients: Caller supplied clients keyed by ``http``, ``https`` or
            ``http2``.
    """

    timeout: httpx.Timeout = field(default_factory=lambda: httpx.Timeout(None))
    http2: bool = False
    verify: bool = True
    local_address: Optional[str] = None
    socket_path: Optional[str] = None
    clients: Optional[Mapping[str, httpx.AsyncClient]] = None

    @property
    def pool_key(self) -> Tuple[bool, bool, Optional[str], Optional[str]]:
        return (self.http2, self.verify, self.socket_path, self.local_address)


# ============================================================================
# Global Client State
# ============================================================================

_clients: Dict[Tuple[bool, bool, Optional[str], Optional[str]], httpx.AsyncClient] = {}
_clients_lock = threading.Lock()
_clients_pid: Optional[int] = None


# ============================================================================
# Public API
# ============================================================================


async def send_request(request: httpx.Request, transport_options: TransportOptions) -> httpx.Response:
    """Send ``request`` and return the response with its body still open.

    Args:
        request: Request built by the engine (absolute URL, final headers,
            body stream and timeout/trace extensions).
        transport_options: Per-request transport settings.

    Returns:
        A streaming ``httpx.Response``; the caller must read or close it.
    """
    client = select_client(request.url, transport_options)
    return await client.send(request, stream=True, follow_redirects=False)


def select_client(url: httpx.URL, transport_options: TransportOptions) -> httpx.AsyncClient:
    """Return the client that should carry a request to ``url``.

    Caller supplied ``clients`` win: ``http2`` when HTTP/2 is requested, then
    the entry for the URL scheme.  Otherwise a pooled client is used.
    """
    overrides = transport_options.clients or {}
    if transport_options.http2 and "http2" in overrides:
        return overrides["http2"]
    if url.scheme in overrides:
        return overrides[url.scheme]
    return get_http_client(transport_options)


def get_http_client(transport_options: Optional[TransportOptions] = None) -> httpx.AsyncClient:
    """Get or create the shared client for ``transport_options``.

    Behavior:
        - First call for a pool key: creates the client.
        - Subsequent calls: return the same client (thread-safe).
        - Process forked: the child drops the inherited clients without
          closing them and rebuilds on demand.

    Example:
        >>> client = get_http_client(TransportOptions(http2=True))
        >>> client is get_http_client(TransportOptions(http2=True))
        True
    """
    global _clients_pid

    transport_options = transport_options or TransportOptions()
    key = transport_options.pool_key

    client = _clients.get(key)
    if client is not None and _clients_pid == os.getpid() and not client.is_closed:
        return client

    with _clients_lock:
        if _clients_pid != os.getpid():
            if _clients:
                logger.debug("Process forked; discarding inherited HTTP clients.")
            _clients.clear()
            _clients_pid = os.getpid()

        client = _clients.get(key)
        if client is None or client.is_closed:
            client = _create_http_client(transport_options)
            _clients[key] = client
            logger.debug(
                "HTTP client initialized",
                extra={
                    "http2": transport_options.http2,
                    "verify": transport_options.verify,
                    "socket_path": transport_options.socket_path,
                    "local_address": transport_options.local_address,
                    "pid": _clients_pid,
                },
            )
        return client


async def close_http_clients() -> None:
    """Close every pooled client and release its connections.

    Safe to call multiple times or when no client has been created.
    Caller supplied ``clients`` overrides are never closed.
    """
    with _clients_lock:
        clients = list(_clients.values())
        _clients.clear()

    for client in clients:
        try:
            await client.aclose()
        except Exception as exc:
            logger.error(f"Error closing HTTP client: {exc}")
    if clients:
        logger.debug("HTTP clients closed", extra={"count": len(clients)})


def reset_http_clients() -> None:
    """Forget pooled clients without awaiting their shutdown (test isolation).

    **NOT** for production use; prefer :func:`close_http_clients`.
    """
    global _clients_pid

    with _clients_lock:
        _clients.clear()
        _clients_pid = None


# ============================================================================
# Implementation Details
# ============================================================================


def _create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """Create SSL context with secure defaults.

    Uses the certifi bundle.  With ``verify=False`` hostname checks and
    certificate validation are disabled (``reject_unauthorized=False``).

    Returns:
        Configured ssl.SSLContext for use with HTTPX
    """
    if not verify:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("TLS verification DISABLED for this transport")
        return ctx

    ctx = ssl.create_default_context(cafile=certifi.where())
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def _create_http_client(transport_options: TransportOptions) -> httpx.AsyncClient:
    """Create an ``httpx.AsyncClient`` for one pool key.

    Configuration:
    - Timeouts: none at the client level (sent per request as extensions)
    - Connection pooling: bounded by :mod:`courier.network.policy`
    - HTTP/2: per pool key
    - Redirects: disabled (the engine follows them)
    - Default headers: none (the engine sets every header)

    Returns:
        Fully configured httpx.AsyncClient ready for use
    """
    ssl_ctx = _create_ssl_context(transport_options.verify)

    transport_kwargs: Dict[str, Any] = {
        "verify": ssl_ctx,
        "http2": transport_options.http2,
        "limits": httpx.Limits(
            max_connections=MAX_CONNECTIONS,
            max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
            keepalive_expiry=KEEPALIVE_EXPIRY,
        ),
    }
    if transport_options.socket_path:
        transport_kwargs["uds"] = transport_options.socket_path
    if transport_options.local_address:
        transport_kwargs["local_address"] = transport_options.local_address

    client = httpx.AsyncClient(
        transport=httpx.AsyncHTTPTransport(**transport_kwargs),
        timeout=httpx.Timeout(None),
        follow_redirects=False,
        trust_env=False,
    )

    logger.debug(
        "HTTPX client created",
        extra={
            "http2": transport_options.http2,
            "max_connections": MAX_CONNECTIONS,
            "max_keepalive": MAX_KEEPALIVE_CONNECTIONS,
        },
    )
    return client


__all__ = [
    "TransportOptions",
    "send_request",
    "select_client",
    "get_http_client",
    "close_http_clients",
    "reset_http_clients",
]
