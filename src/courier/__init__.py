# === NAVMAP v1 ===
# {
#   "module": "courier",
#   "purpose": "Public API for the courier HTTP request engine",
#   "sections": [
#     {"id": "default-instance", "name": "courier", "anchor": "data-courier", "kind": "data"}
#   ]
# }
# === /NAVMAP ===

"""Public API for courier, an asyncio HTTP request engine.

The default instance :data:`courier` is created from environment-driven
settings; :func:`create` and :meth:`Courier.extend` build customized
instances.  Requests are awaitable in promise mode and async-iterable in
stream mode:

    >>> from courier import courier
    >>> # data = await courier.get("https://httpbin.org/json").json()
    >>> # async for chunk in courier.stream("https://example.com/big.bin"): ...
"""

from __future__ import annotations

from courier.body import FormData
from courier.create import Courier, HandledRequest, create
from courier.engine import EngineState, Request
from courier.errors import (
    CacheError,
    CancelError,
    ErrorKind,
    HTTPError,
    MaxRedirectsError,
    OptionsError,
    ParseError,
    ReadError,
    RequestError,
    RequestTimeoutError,
    UnsupportedProtocolError,
    UploadError,
)
from courier.hooks import CONTINUE, Continue, Hooks, Replace
from courier.logging_utils import setup_logging
from courier.network.client import close_http_clients
from courier.network.retry import RetryInfo
from courier.options import NormalizedOptions, RetryPolicy, TimeoutPolicy, merge_options
from courier.promise import CancelableRequest
from courier.response import Progress, Response, Timings
from courier.settings import __version__, build_default_options, get_settings

#: Default instance configured from ``COURIER_*`` environment variables
courier = create(build_default_options())

__all__ = [
    "__version__",
    "courier",
    "create",
    "Courier",
    "Request",
    "EngineState",
    "CancelableRequest",
    "HandledRequest",
    "Response",
    "Progress",
    "Timings",
    "FormData",
    "Hooks",
    "Continue",
    "Replace",
    "CONTINUE",
    "NormalizedOptions",
    "TimeoutPolicy",
    "RetryPolicy",
    "RetryInfo",
    "merge_options",
    "ErrorKind",
    "RequestError",
    "OptionsError",
    "HTTPError",
    "MaxRedirectsError",
    "CacheError",
    "UploadError",
    "RequestTimeoutError",
    "ReadError",
    "ParseError",
    "UnsupportedProtocolError",
    "CancelError",
    "setup_logging",
    "get_settings",
    "build_default_options",
    "close_http_clients",
]
