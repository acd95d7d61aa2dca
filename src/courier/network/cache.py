# === NAVMAP v1 ===
# {
#   "module": "courier.network.cache",
#   "purpose": "Hishel caching decorator around transport functions",
#   "sections": [
#     {"id": "resolve-cache-storage", "name": "resolve_cache_storage", "anchor": "function-resolve-cache-storage", "kind": "function"},
#     {"id": "cached-transport", "name": "cached_transport", "anchor": "function-cached-transport", "kind": "function"},
#     {"id": "get-cache-dir", "name": "_get_cache_dir", "anchor": "function-get-cache-dir", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""RFC 9111 caching for transport functions.

The engine talks to the network through a *transport function*
``async (request, transport_options) -> httpx.Response``.  When the ``cache``
option is set, :func:`cached_transport` wraps that function in a Hishel
``AsyncCacheTransport`` so fresh responses are served from storage and stale
ones are revalidated.  Failures raised by the storage layer surface as
:class:`~courier.errors.CacheError`; failures of the wrapped transport are
re-raised unchanged.

Storage selection (the ``cache`` option):

- ``True`` or ``"memory"``: in-process ``AsyncInMemoryStorage``
- ``"file"``: ``AsyncFileStorage`` under the platform cache directory
- a Hishel async storage instance: used as is
- ``False``/``None``: caching disabled
"""

import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import hishel
import httpx
import platformdirs

from courier.errors import CacheError, OptionsError
from courier.logging_utils import redact_url
from courier.network.policy import (
    ALLOW_HEURISTIC_CACHING,
    CACHE_APP_NAME,
    CACHE_STORAGE_TTL_SECONDS,
    CACHEABLE_METHODS,
    CACHEABLE_STATUS_CODES,
)

logger = logging.getLogger(__name__)

TransportFunction = Callable[[httpx.Request, Any], Awaitable[httpx.Response]]


# ============================================================================
# Storage
# ============================================================================


def resolve_cache_storage(value: Any) -> Optional[hishel.AsyncBaseStorage]:
    """Turn the ``cache`` option into a Hishel storage (or ``None``)."""
    if value is None or value is False:
        return None
    if value is True or value == "memory":
        return hishel.AsyncInMemoryStorage()
    if value == "file":
        return hishel.AsyncFileStorage(base_path=_get_cache_dir(), ttl=CACHE_STORAGE_TTL_SECONDS)
    if isinstance(value, hishel.AsyncBaseStorage):
        return value
    raise OptionsError(
        "Expected `cache` to be a boolean, 'memory', 'file' or a hishel async storage, "
        f"got {type(value).__name__}"
    )


def _get_cache_dir() -> Path:
    """Persistent cache directory, created on first use."""
    cache_dir = Path(platformdirs.user_cache_dir(CACHE_APP_NAME)) / "http"
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


# ============================================================================
# Decorator
# ============================================================================


class _TransportFailure(Exception):
    """Carries an exception raised by the wrapped transport through Hishel."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(str(error))
        self.error = error


class _FunctionTransport(httpx.AsyncBaseTransport):
    """Expose a transport function as an httpx transport for Hishel."""

    def __init__(self, send: TransportFunction, transport_options: Any) -> None:
        self._send = send
        self._transport_options = transport_options

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        try:
            return await self._send(request, self._transport_options)
        except Exception as exc:
            raise _TransportFailure(exc) from exc


def _build_controller() -> hishel.Controller:
    return hishel.Controller(
        cacheable_methods=CACHEABLE_METHODS,
        cacheable_status_codes=CACHEABLE_STATUS_CODES,
        allow_heuristics=ALLOW_HEURISTIC_CACHING,
        cache_private=True,
    )


def cached_transport(send: TransportFunction, storage: hishel.AsyncBaseStorage) -> TransportFunction:
    """Wrap ``send`` so responses are served from and stored into ``storage``.

    The returned response carries ``extensions["from_cache"]``.
    """
    controller = _build_controller()

    async def send_cached(request: httpx.Request, transport_options: Any) -> httpx.Response:
        cache_transport = hishel.AsyncCacheTransport(
            transport=_FunctionTransport(send, transport_options),
            storage=storage,
            controller=controller,
        )
        try:
            response = await cache_transport.handle_async_request(request)
        except _TransportFailure as failure:
            raise failure.error
        except Exception as exc:
            logger.warning(
                "Cache storage failure",
                extra={"url": redact_url(request.url), "error": repr(exc)},
            )
            raise CacheError(exc) from exc

        response.request = request
        if response.extensions.get("from_cache"):
            logger.debug("Served from cache", extra={"url": redact_url(request.url)})
        return response

    return send_cached


__all__ = ["resolve_cache_storage", "cached_transport", "TransportFunction"]
