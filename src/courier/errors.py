"""Exception hierarchy shared by the options normalizer, request engine and promise layer.

Every failure a caller can observe is a :class:`RequestError`.  Each subclass
carries a :class:`ErrorKind` discriminant so retry and settlement logic can
branch on ``error.kind`` instead of chains of ``isinstance`` checks, while
callers that prefer exception classes can still catch the specific subclass.

Errors raised by the engine keep a reference to the engine (``error.request``),
the normalized options in force, the response when one was received, and the
timings captured for the attempt.  ``error.code`` holds an errno-style string
(``ETIMEDOUT``, ``ECONNRESET``...) used by the retry policy's error-code allow
list.
"""

from __future__ import annotations

import enum
import errno
import socket
from typing import TYPE_CHECKING, Any, Optional

import httpx

if TYPE_CHECKING:  # pragma: no cover
    from courier.engine import Request
    from courier.options import NormalizedOptions
    from courier.response import Response

__all__ = [
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
    "error_code_for",
]


class ErrorKind(str, enum.Enum):
    """Discriminant attached to every :class:`RequestError`."""

    REQUEST = "request"
    OPTIONS = "options"
    HTTP = "http"
    MAX_REDIRECTS = "max_redirects"
    CACHE = "cache"
    UPLOAD = "upload"
    TIMEOUT = "timeout"
    READ = "read"
    PARSE = "parse"
    UNSUPPORTED_PROTOCOL = "unsupported_protocol"
    CANCEL = "cancel"


# ============================================================================
# Base Exceptions
# ============================================================================


class RequestError(Exception):
    """Base class for request lifecycle failures.

    Args:
        message: Human readable description.
        error: Underlying exception, if any. Stored as ``__cause__``.
        source: Either the engine that produced the failure or the
            normalized options it was using.
        code: Errno-style code; derived from ``error`` when omitted.
    """

    kind: ErrorKind = ErrorKind.REQUEST

    def __init__(
        self,
        message: str,
        error: Optional[BaseException] = None,
        source: Any = None,
        *,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.request: Optional["Request"] = None
        self.options: Optional["NormalizedOptions"] = None
        self.response: Optional["Response"] = None
        self.timings = None

        if error is not None:
            self.__cause__ = error
        self.code = code or error_code_for(error) or "ERR_COURIER_REQUEST_ERROR"

        if source is not None and hasattr(source, "destroy"):
            self.request = source
            self.options = source.options
            self.response = getattr(source, "response", None)
            self.timings = getattr(source, "timings", None)
        elif source is not None:
            self.options = source

    @property
    def message(self) -> str:
        return str(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, code={self.code!r})"


class OptionsError(RequestError, TypeError):
    """Raised when caller supplied options fail validation."""

    kind = ErrorKind.OPTIONS

    def __init__(self, message: str, source: Any = None) -> None:
        super().__init__(message, None, source, code="ERR_COURIER_OPTIONS")


class UnsupportedProtocolError(RequestError):
    """Raised when a URL uses a scheme other than ``http`` or ``https``."""

    kind = ErrorKind.UNSUPPORTED_PROTOCOL

    def __init__(self, url: Any, source: Any = None) -> None:
        scheme = getattr(url, "scheme", None) or str(url).split(":", 1)[0]
        super().__init__(
            f'Unsupported protocol "{scheme}:"', None, source, code="ERR_UNSUPPORTED_PROTOCOL"
        )
        self.url = url


# ============================================================================
# Response Errors
# ============================================================================


class HTTPError(RequestError):
    """Raised when the response status is outside the accepted range."""

    kind = ErrorKind.HTTP

    def __init__(self, response: "Response") -> None:
        engine = response.request
        super().__init__(
            f"Response code {response.status_code} ({response.status_message})",
            None,
            engine,
            code="ERR_NON_2XX_3XX_RESPONSE",
        )
        self.response = response
        self.timings = response.timings


class MaxRedirectsError(RequestError):
    """Raised when the redirect chain reaches ``max_redirects``."""

    kind = ErrorKind.MAX_REDIRECTS

    def __init__(self, request: "Request") -> None:
        super().__init__(
            f"Redirected {request.options.max_redirects} times. Aborting.",
            None,
            request,
            code="ERR_TOO_MANY_REDIRECTS",
        )


class ParseError(RequestError):
    """Raised when a response body cannot be decoded per ``response_type``."""

    kind = ErrorKind.PARSE

    def __init__(self, error: BaseException, response: "Response") -> None:
        super().__init__(
            f"{error} in {response.request_url}",
            error,
            response.request,
            code="ERR_BODY_PARSE_FAILURE",
        )
        self.response = response


class ReadError(RequestError):
    """Raised when the response body stream fails mid-read."""

    kind = ErrorKind.READ

    def __init__(self, error: BaseException, request: "Request") -> None:
        super().__init__(str(error) or type(error).__name__, error, request)


# ============================================================================
# Transport Errors
# ============================================================================


class CacheError(RequestError):
    """Raised when the cache storage fails while serving a request."""

    kind = ErrorKind.CACHE

    def __init__(self, error: BaseException, source: Any = None) -> None:
        super().__init__(str(error) or type(error).__name__, error, source, code="ERR_CACHE_ACCESS")


class UploadError(RequestError):
    """Raised when the upload side of a request fails."""

    kind = ErrorKind.UPLOAD

    def __init__(self, error: BaseException, source: Any = None) -> None:
        super().__init__(str(error) or type(error).__name__, error, source, code="ERR_UPLOAD")


class RequestTimeoutError(RequestError):
    """Raised when one of the configured timeout phases expires.

    Attributes:
        event: Name of the phase that expired (``connect``, ``socket``,
            ``send``, ``lookup``, ``response`` or ``request``).
    """

    kind = ErrorKind.TIMEOUT

    def __init__(self, event: str, threshold: Optional[float], source: Any = None) -> None:
        super().__init__(
            f"Timeout awaiting '{event}' for {threshold}s", None, source, code="ETIMEDOUT"
        )
        self.event = event
        self.threshold = threshold


class CancelError(RequestError):
    """Raised when a promise-mode request is cancelled by the caller."""

    kind = ErrorKind.CANCEL

    def __init__(self, source: Any = None) -> None:
        super().__init__("Promise was canceled", None, source, code="ERR_CANCELED")

    @property
    def is_canceled(self) -> bool:
        return True


# ============================================================================
# Error Codes
# ============================================================================


def error_code_for(error: Optional[BaseException]) -> Optional[str]:
    """Return an errno-style code describing ``error``.

    Walks the ``__cause__``/``__context__`` chain so that an
    ``httpx.ConnectError`` wrapping ``ConnectionRefusedError`` maps to
    ``ECONNREFUSED``.

    Example:
        >>> error_code_for(ConnectionRefusedError(111, "refused"))
        'ECONNREFUSED'
    """
    if error is None:
        return None
    if isinstance(error, httpx.TimeoutException):
        return "ETIMEDOUT"

    seen: set[int] = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        code = getattr(current, "code", None)
        if isinstance(code, str) and code:
            return code
        if isinstance(current, socket.gaierror):
            return "EAI_AGAIN" if current.errno == socket.EAI_AGAIN else "ENOTFOUND"
        if isinstance(current, TimeoutError):
            return "ETIMEDOUT"
        if isinstance(current, OSError) and current.errno in errno.errorcode:
            return errno.errorcode[current.errno]
        current = current.__cause__ or current.__context__

    if isinstance(error, httpx.ConnectError):
        return "ECONNREFUSED"
    if isinstance(error, (httpx.ReadError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    if isinstance(error, httpx.WriteError):
        return "EPIPE"
    return None
