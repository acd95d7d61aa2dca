# === NAVMAP v1 ===
# {
#   "module": "courier.engine",
#   "purpose": "Request engine: one in-flight HTTP attempt as an async duplex",
#   "sections": [
#     {"id": "engine-state", "name": "EngineState", "anchor": "class-enginestate", "kind": "class"},
#     {"id": "request", "name": "Request", "anchor": "class-request", "kind": "class"},
#     {"id": "make-request", "name": "Request._make_request", "anchor": "MKR", "kind": "api"},
#     {"id": "on-response", "name": "Request._on_response", "anchor": "ONR", "kind": "api"},
#     {"id": "before-error", "name": "Request._before_error", "anchor": "BFE", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Request engine.

A :class:`Request` is one HTTP attempt, redirects included.  It is a duplex:

* the upload side accepts ``await write(chunk)``, ``await end()`` and
  ``await pipe_from(source)`` when the options carry no payload and the
  method allows one;
* the download side is an async iterator of body chunks
  (``async for chunk in request``) plus ``await read()``.

Construction schedules the asynchronous setup on the running loop: ``init``
hooks, normalization, body finalization and dispatch of the transport call.
Writes issued before setup finishes wait for it.  Redirects continue in
place on the same engine; retries are the promise layer's business and
always create a new engine.

Every failure funnels through :meth:`Request._before_error`, which runs the
``before_error`` hooks once and destroys the engine with the final error.

Events (listeners registered with :meth:`~courier.events.EventEmitter.on`):
``request``, ``response``, ``redirect``, ``upload_progress``,
``download_progress``, ``finalized``, ``end``, ``error`` and ``close``.
"""

from __future__ import annotations

import asyncio
import base64
import enum
import logging
from typing import Any, AsyncIterator, Iterable, Mapping, Optional, Union

import httpx

from courier.body import PAYLOAD_PROVIDED_MESSAGE, BodyPlan, finalize_body
from courier.dns import is_ip_address
from courier.errors import (
    HTTPError,
    MaxRedirectsError,
    OptionsError,
    ReadError,
    RequestError,
    RequestTimeoutError,
    UnsupportedProtocolError,
    UploadError,
)
from courier.events import EventEmitter
from courier.hooks import Hooks, Replace, as_outcome, call_hook, call_init_hooks
from courier.logging_utils import redact_url
from courier.network.cache import TransportFunction, cached_transport
from courier.network.client import TransportOptions, send_request
from courier.network.policy import ACCEPT_ENCODING, REDIRECT_CODES
from courier.options import NormalizedOptions, normalize_options
from courier.response import Progress, Response, Timings, is_response_ok

logger = logging.getLogger(__name__)

__all__ = ["EngineState", "Request"]

_TRACE_MARKS = (
    ("connect_tcp.started", "socket"),
    ("connect_unix_socket.started", "socket"),
    ("connect_tcp.complete", "connect"),
    ("connect_unix_socket.complete", "connect"),
    ("start_tls.complete", "secure_connect"),
    ("send_request_body.complete", "upload"),
    ("receive_response_headers.complete", "response"),
)


class EngineState(enum.Enum):
    CONSTRUCTING = "constructing"
    NORMALIZING = "normalizing"
    FINALIZING_BODY = "finalizing_body"
    REQUEST_SENT = "request_sent"
    RESPONSE_RECEIVED = "response_received"
    REDIRECTING = "redirecting"
    STREAMING = "streaming"
    ENDED = "ended"
    DESTROYED = "destroyed"


class Request(EventEmitter):
    """One HTTP attempt exposed as an async duplex stream.

    Args:
        url: URL, or ``None`` when ``options`` carries one.
        options: Raw options mapping or :class:`NormalizedOptions`. A
            normalized value passed without ``url``/``defaults`` is used as
            is and no ``init`` hooks run.
        defaults: Instance defaults the raw options are layered over.
        no_pipe: Never accept writes; the request body is finished as soon
            as the payload (if any) is sent.

    Example:
        >>> async def fetch():
        ...     request = Request("https://example.com")
        ...     return await request.read()
    """

    def __init__(
        self,
        url: Union[str, httpx.URL, None] = None,
        options: Union[Mapping[str, Any], NormalizedOptions, None] = None,
        defaults: Optional[NormalizedOptions] = None,
        *,
        no_pipe: bool = False,
    ) -> None:
        super().__init__()
        loop = asyncio.get_running_loop()

        self.options: Optional[NormalizedOptions] = None
        self.state = EngineState.CONSTRUCTING
        self.response: Optional[Response] = None
        self.transport_request: Optional[httpx.Request] = None
        self.request_url: Optional[httpx.URL] = None
        self.redirects: list[httpx.URL] = []
        self.timings: Optional[Timings] = None
        self.retry_count = 0
        self.uploaded = 0
        self.downloaded = 0
        self.finalized = False
        self.destroyed = False
        self.error: Optional[RequestError] = None

        self._defaults = defaults
        self._no_pipe = no_pipe
        self._body = BodyPlan()
        self._upload_size: Optional[int] = None
        self._download_size: Optional[int] = None
        self._write_locked = False
        self._lock_message = PAYLOAD_PROVIDED_MESSAGE
        self._write_ended = False
        self._upload_queue: asyncio.Queue[Optional[bytes]] = asyncio.Queue()
        self._upload_finished = False
        self._request_pending = False
        self._error_handled = False
        self._body_claimed = False
        self._raw: Optional[httpx.Response] = None
        self._chunks: Optional[AsyncIterator[bytes]] = None
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._exchange_task: Optional[asyncio.Task[None]] = None
        self._background: set[asyncio.Task[Any]] = set()
        self._finalized_future: asyncio.Future[bool] = loop.create_future()
        self._response_future: asyncio.Future[Optional[Response]] = loop.create_future()
        self._closed = asyncio.Event()

        self._bootstrap_task = loop.create_task(self._bootstrap(url, options, defaults))

    def __repr__(self) -> str:
        url = redact_url(self.options.url) if self.options is not None else None
        return f"<Request [{self.state.value}] {url}>"

    # ========================================================================
    # Setup
    # ========================================================================

    async def _bootstrap(
        self,
        url: Union[str, httpx.URL, None],
        options: Union[Mapping[str, Any], NormalizedOptions, None],
        defaults: Optional[NormalizedOptions],
    ) -> None:
        try:
            self.state = EngineState.NORMALIZING
            self.options = self._normalize(url, options, defaults)
            if self.options.url is None:
                raise OptionsError("Missing `url` property", self.options)

            self.state = EngineState.FINALIZING_BODY
            self._body = finalize_body(self.options)
            self._upload_size = self._body.size
            if not self._body.is_empty:
                self._lock_write(PAYLOAD_PROVIDED_MESSAGE)
            elif self._body.cannot_have_body:
                self._lock_write(f"The `{self.options.method}` method cannot be used with a body")
            elif self._no_pipe:
                self._lock_write(PAYLOAD_PROVIDED_MESSAGE)

            self._start_watchdog()
            await self._make_request()

            self.finalized = True
            if not self._finalized_future.done():
                self._finalized_future.set_result(True)
            self.emit("finalized")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._before_error(exc)

    @staticmethod
    def _normalize(
        url: Union[str, httpx.URL, None],
        options: Union[Mapping[str, Any], NormalizedOptions, None],
        defaults: Optional[NormalizedOptions],
    ) -> NormalizedOptions:
        if isinstance(options, NormalizedOptions) and url is None and defaults is None:
            return options

        if isinstance(options, NormalizedOptions):
            raw = options.to_dict()
        elif options is None:
            raw = {}
        elif isinstance(options, Mapping):
            raw = dict(options)
        else:
            raise OptionsError(f"Expected options to be a mapping, got {type(options).__name__}")
        if url is not None:
            if raw.get("url") is not None:
                raise OptionsError("The `url` option is mutually exclusive with the `url` argument")
            raw["url"] = url

        init_hooks = list(defaults.hooks.init) if defaults is not None else []
        init_hooks.extend(Hooks.coerce(raw.get("hooks")).init)
        call_init_hooks(init_hooks, raw)
        return normalize_options(None, raw, defaults)

    def _lock_write(self, message: str) -> None:
        self._write_locked = True
        self._lock_message = message

    def _start_watchdog(self) -> None:
        threshold = self.options.timeout.request
        if threshold is None:
            return
        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(threshold, self._on_request_timeout, threshold)

    def _on_request_timeout(self, threshold: float) -> None:
        self._watchdog = None
        if self.destroyed:
            return
        if self.timings is not None:
            self.timings.mark("abort")
        self._spawn(self._before_error(RequestTimeoutError("request", threshold, self)))

    def _clear_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ========================================================================
    # Dispatch
    # ========================================================================

    async def _make_request(self) -> None:
        """Build the transport request for the current options and send it.

        A second call while a transport call is outstanding does nothing.
        """
        if self._request_pending:
            return
        self._request_pending = True

        options = self.options
        headers = options.headers
        for key in [key for key, value in headers.items() if value is None]:
            del headers[key]
        if options.decompress and "accept-encoding" not in headers:
            headers["accept-encoding"] = ACCEPT_ENCODING
        if options.cookie_jar is not None:
            cookie_string = await options.cookie_jar.get_cookie_string(str(options.url))
            if cookie_string:
                headers["cookie"] = cookie_string

        short_circuit: Any = None
        for hook in options.hooks.before_request:
            outcome = as_outcome(await call_hook(hook, options))
            if isinstance(outcome, Replace):
                short_circuit = outcome.value
                break

        if self.request_url is None:
            self.request_url = options.url
        self.timings = Timings()
        self.uploaded = 0

        url = options.url
        socket_path = options.socket_path
        if url.host == "unix":
            unix_path, separator, request_path = url.raw_path.decode("ascii").partition(":")
            if separator:
                socket_path = unix_path
                url = url.copy_with(raw_path=(request_path or "/").encode("ascii"))

        request_headers = dict(headers)
        if (options.username or options.password) and "authorization" not in request_headers:
            credentials = f"{options.username}:{options.password}".encode("utf-8")
            request_headers["authorization"] = "Basic " + base64.b64encode(credentials).decode("ascii")

        extensions: dict[str, Any] = {
            "timeout": options.timeout.as_httpx().as_dict(),
            "trace": self._trace,
        }
        if (
            options.dns_cache is not None
            and short_circuit is None
            and socket_path is None
            and not is_ip_address(url.host)
        ):
            address = await self._lookup(url.host)
            request_headers.setdefault("host", options.url.netloc.decode("ascii"))
            extensions["sni_hostname"] = url.host
            url = url.copy_with(host=f"[{address}]" if ":" in address else address)

        content: Any = None
        if not (self._write_locked and self._body.is_empty):
            content = self._upload_stream()
        request = httpx.Request(
            options.method,
            url,
            headers=request_headers,
            content=content,
            extensions=extensions,
        )

        self.state = EngineState.REQUEST_SENT
        self.transport_request = request
        self.emit("request", request)
        self.emit("upload_progress", self.upload_progress)

        if short_circuit is not None:
            send: TransportFunction = _static_transport(short_circuit)
        else:
            send = options.transport or send_request
            if options.cache is not None:
                send = cached_transport(send, options.cache)
        transport_options = TransportOptions(
            timeout=options.timeout.as_httpx(),
            http2=options.http2,
            verify=options.reject_unauthorized,
            local_address=options.local_address,
            socket_path=socket_path,
            clients=options.clients,
        )

        logger.debug(
            "Dispatching request",
            extra={"method": options.method, "url": redact_url(options.url), "redirects": len(self.redirects)},
        )
        self._exchange_task = asyncio.get_running_loop().create_task(
            self._exchange(send, request, transport_options)
        )

    async def _lookup(self, hostname: str) -> str:
        threshold = self.options.timeout.lookup
        try:
            address = await asyncio.wait_for(self.options.dns_cache.lookup(hostname), threshold)
        except asyncio.TimeoutError as exc:
            error = RequestTimeoutError("lookup", threshold, self)
            raise error from exc
        except OSError as exc:
            raise RequestError(f"getaddrinfo failed for {hostname}: {exc}", exc, self) from exc
        self.timings.mark("lookup")
        return address

    async def _exchange(
        self,
        send: TransportFunction,
        request: httpx.Request,
        transport_options: TransportOptions,
    ) -> None:
        threshold = self.options.timeout.response
        try:
            try:
                raw = await asyncio.wait_for(send(request, transport_options), threshold)
            except asyncio.TimeoutError as exc:
                error = RequestTimeoutError("response", threshold, self)
                raise error from exc
            self._request_pending = False
            await self._on_response(raw)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._before_error(self._wrap_error(exc, reading=False))

    async def _trace(self, name: str, info: Mapping[str, Any]) -> None:
        if self.timings is None:
            return
        for suffix, mark in _TRACE_MARKS:
            if name.endswith(suffix):
                self.timings.mark(mark)
                break

    def _wrap_error(self, error: BaseException, *, reading: bool) -> RequestError:
        if isinstance(error, RequestError):
            return error
        timeout = self.options.timeout if self.options is not None else None
        wrapped: RequestError
        if timeout is not None and isinstance(error, (httpx.ConnectTimeout, httpx.PoolTimeout)):
            wrapped = RequestTimeoutError("connect", timeout.connect, self)
        elif timeout is not None and isinstance(error, httpx.ReadTimeout):
            wrapped = RequestTimeoutError("socket", timeout.socket, self)
        elif timeout is not None and isinstance(error, httpx.WriteTimeout):
            wrapped = RequestTimeoutError("send", timeout.send, self)
        elif reading or isinstance(error, httpx.DecodingError):
            wrapped = ReadError(error, self)
        else:
            wrapped = RequestError(str(error) or type(error).__name__, error, self)
        wrapped.__cause__ = error
        return wrapped

    # ========================================================================
    # Response
    # ========================================================================

    async def _on_response(self, raw: httpx.Response) -> None:
        self.state = EngineState.RESPONSE_RECEIVED
        options = self.options
        self._raw = raw
        self.timings.mark("response")

        response = Response(
            raw,
            request=self,
            url=options.url,
            request_url=self.request_url,
            redirect_urls=self.redirects,
            is_from_cache=bool(raw.extensions.get("from_cache")),
            ip=_peer_address(raw),
            timings=self.timings,
        )
        response.retry_count = self.retry_count
        self.response = response

        if options.cookie_jar is not None:
            for raw_cookie in raw.headers.get_list("set-cookie"):
                try:
                    await options.cookie_jar.set_cookie(raw_cookie, str(options.url))
                except Exception as exc:
                    if not options.ignore_invalid_cookies:
                        raise
                    logger.debug("Ignoring invalid cookie", extra={"url": redact_url(options.url), "error": repr(exc)})

        if (
            options.follow_redirect
            and "location" in raw.headers
            and raw.status_code in REDIRECT_CODES
        ):
            await self._redirect(response)
            return

        if options.throw_http_errors and not is_response_ok(raw.status_code, options.follow_redirect):
            raise HTTPError(response)

        content_length = raw.headers.get("content-length", "")
        self._download_size = int(content_length) if content_length.isdigit() and int(content_length) else None
        self._chunks = raw.aiter_bytes() if options.decompress else raw.aiter_raw()
        self.state = EngineState.STREAMING
        if not self._response_future.done():
            self._response_future.set_result(response)
        self.emit("response", response)
        self.emit("download_progress", self.download_progress)

    async def _redirect(self, response: Response) -> None:
        options = self.options
        raw = response.raw
        await raw.aclose()
        self._raw = None
        self.state = EngineState.REDIRECTING

        should_be_get = raw.status_code == 303 and options.method not in ("GET", "HEAD")
        if should_be_get or not options.method_rewriting:
            options.method = "GET"
            options.body = None
            options.json = None
            options.form = None
            options.headers.pop("content-length", None)
            self._body = BodyPlan(cannot_have_body=True)
            self._upload_size = None
            self._lock_write(PAYLOAD_PROVIDED_MESSAGE)

        if len(self.redirects) >= options.max_redirects:
            raise MaxRedirectsError(self)

        location = _raw_location(raw)
        try:
            redirect_url = options.url.join(location)
        except httpx.InvalidURL as exc:
            raise RequestError(f"Invalid redirect location: {location}", exc, self) from exc
        if redirect_url.scheme not in ("http", "https"):
            raise UnsupportedProtocolError(redirect_url, self)

        if redirect_url.host != options.url.host or redirect_url.port != options.url.port:
            for name in ("host", "cookie", "authorization"):
                options.headers.pop(name, None)
            options.username = ""
            options.password = ""

        self.redirects.append(redirect_url)
        options.url = redirect_url
        logger.debug(
            "Following redirect",
            extra={"status": raw.status_code, "url": redact_url(redirect_url), "hop": len(self.redirects)},
        )

        for hook in options.hooks.before_redirect:
            await call_hook(hook, options, response)
        self.emit("redirect", response, options)

        self._request_pending = False
        await self._make_request()

    # ========================================================================
    # Download side
    # ========================================================================

    @property
    def download_progress(self) -> Progress:
        return Progress.compute(self.downloaded, self._download_size)

    @property
    def upload_progress(self) -> Progress:
        return Progress.compute(self.uploaded, self._upload_size)

    @property
    def is_from_cache(self) -> bool:
        return self.response is not None and self.response.is_from_cache

    async def wait_for_response(self) -> Optional[Response]:
        """Wait until response headers arrive.

        Returns:
            The response, or ``None`` when the engine was destroyed without
            an error.

        Raises:
            RequestError: The terminal error of the engine.
        """
        return await asyncio.shield(self._response_future)

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iter_body()

    async def _iter_body(self) -> AsyncIterator[bytes]:
        response = await self.wait_for_response()
        if response is None or self._chunks is None:
            return
        if self._body_claimed:
            raise RequestError("The response body has already been consumed", None, self)
        self._body_claimed = True

        raw = response.raw
        try:
            async for chunk in self._chunks:
                self.downloaded = raw.num_bytes_downloaded
                progress = self.download_progress
                if progress.percent < 1:
                    self.emit("download_progress", progress)
                yield chunk
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self.error is not None:
                raise self.error from exc
            error = await self._before_error(self._wrap_error(exc, reading=True))
            raise error from exc

        if self.destroyed:
            if self.error is not None:
                raise self.error
            return

        self.downloaded = raw.num_bytes_downloaded
        self._download_size = self.downloaded
        self.timings.mark("end")
        self.timings.finish()
        self._clear_watchdog()
        self.state = EngineState.ENDED
        await raw.aclose()
        self.emit("download_progress", self.download_progress)
        self.emit("end")

    async def read(self) -> bytes:
        """Read the remaining response body."""
        return b"".join([chunk async for chunk in self])

    # ========================================================================
    # Upload side
    # ========================================================================

    async def _wait_finalized(self) -> None:
        await asyncio.shield(self._finalized_future)
        if self.destroyed and self.error is not None:
            raise self.error

    async def write(self, chunk: Union[bytes, str]) -> None:
        """Queue ``chunk`` for upload once setup has finished.

        Raises:
            OptionsError: The payload came from the options or the method
                cannot carry a body.
        """
        await self._wait_finalized()
        if self._write_locked:
            raise OptionsError(self._lock_message, self.options)
        if self._write_ended:
            raise UploadError(RuntimeError("write after end"), self)
        await self._upload_queue.put(chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk))

    async def end(self, chunk: Union[bytes, str, None] = None) -> None:
        """Finish the upload, optionally writing one last chunk."""
        if chunk is not None:
            await self.write(chunk)
        else:
            await self._wait_finalized()
        if self._write_locked or self._write_ended:
            return
        self._write_ended = True
        await self._upload_queue.put(None)

    async def pipe_from(self, source: Union[Iterable[Any], AsyncIterator[Any]]) -> None:
        """Upload every chunk of ``source`` then finish the upload."""
        if hasattr(source, "__aiter__"):
            async for chunk in source:  # type: ignore[union-attr]
                await self.write(chunk)
        else:
            for chunk in source:  # type: ignore[union-attr]
                await self.write(chunk)
        await self.end()

    async def _queued_chunks(self) -> AsyncIterator[bytes]:
        if self._upload_finished:
            return
        while True:
            chunk = await self._upload_queue.get()
            if chunk is None:
                self._upload_finished = True
                return
            yield chunk

    async def _upload_stream(self) -> AsyncIterator[bytes]:
        source = self._queued_chunks() if self._body.is_empty else self._body.chunks()
        try:
            async for chunk in source:
                if not chunk:
                    continue
                yield chunk
                self.uploaded += len(chunk)
                progress = self.upload_progress
                if progress.percent < 1:
                    self.emit("upload_progress", progress)
        except (asyncio.CancelledError, GeneratorExit):
            raise
        except RequestError:
            raise
        except Exception as exc:
            raise UploadError(exc, self) from exc

        self._upload_size = self.uploaded
        if self.timings is not None:
            self.timings.mark("upload")
        self.emit("upload_progress", self.upload_progress)

    # ========================================================================
    # Errors and teardown
    # ========================================================================

    def _decode_error_body(self, response: Response) -> None:
        """Set ``response.body`` from ``response.raw_body`` for error diagnostics."""
        encoding = self.options.encoding if self.options is not None else "utf-8"
        response.body = response.raw_body.decode(encoding, errors="replace")

    async def _before_error(self, error: BaseException, *, settled: bool = False) -> RequestError:
        """Run ``before_error`` hooks on ``error`` and destroy the engine.

        Runs at most once; later calls return the error already chosen.
        With ``settled`` the hooks run again for a failure raised after the
        engine already handled one (retry decisions, ``before_retry`` and
        ``after_response`` hooks) and that failure becomes :attr:`error`.
        """
        if self._error_handled and not settled:
            return self.error or self._wrap_error(error, reading=False)
        self._error_handled = True

        if not isinstance(error, RequestError):
            error = RequestError(str(error) or type(error).__name__, error, self)
        if self.timings is not None and self.timings.error is None:
            self.timings.mark("error")

        response = self.response
        if (
            response is not None
            and response.raw_body is None
            and not self._body_claimed
            and not isinstance(error, RequestTimeoutError)
            and not settled
        ):
            try:
                response.raw_body = await response.raw.aread()
                self._decode_error_body(response)
            except Exception as exc:
                logger.debug("Could not read the error response body", extra={"error": repr(exc)})

        if self.options is not None:
            hooks = self.options.hooks.before_error
        elif self._defaults is not None:
            hooks = self._defaults.hooks.before_error
        else:
            hooks = []
        try:
            for hook in hooks:
                outcome = as_outcome(await call_hook(hook, error))
                if isinstance(outcome, Replace):
                    if not isinstance(outcome.value, BaseException):
                        raise TypeError(
                            f"`before_error` hooks must return an exception, got {type(outcome.value).__name__}"
                        )
                    error = outcome.value
        except Exception as exc:
            error = RequestError(str(exc) or type(exc).__name__, exc, self)

        if self.destroyed:
            if not isinstance(error, RequestError):
                error = RequestError(str(error) or type(error).__name__, error, self)
            self.error = error
        else:
            self.destroy(error)
        return self.error

    def destroy(self, error: Optional[BaseException] = None) -> None:
        """Abort the attempt.

        Cancels pending setup or transport work, closes the open response
        and wakes readers and writers.  ``error`` (wrapped into a
        :class:`RequestError` when foreign) becomes the terminal error and
        is emitted as ``error``.  Calling it again does nothing.
        """
        if self.destroyed:
            return
        self.destroyed = True
        self.state = EngineState.DESTROYED
        self._error_handled = True

        if error is not None and not isinstance(error, RequestError):
            error = RequestError(str(error) or type(error).__name__, error, self)
        self.error = error
        self._clear_watchdog()

        current = asyncio.current_task()
        for task in (self._bootstrap_task, self._exchange_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        if self._raw is not None and not self._raw.is_closed:
            self._spawn(self._raw.aclose())

        for future in (self._finalized_future, self._response_future):
            if future.done():
                continue
            if error is not None:
                future.set_exception(error)
                future.exception()
            else:
                future.set_result(None)
        if not self._upload_finished:
            self._upload_queue.put_nowait(None)
        self._closed.set()

        if error is not None:
            logger.debug(
                "Request destroyed",
                extra={
                    "error": error.code,
                    "kind": error.kind.value,
                    "url": redact_url(self.options.url) if self.options is not None else None,
                },
            )
            self.emit("error", error)
        self.emit("close")

    async def wait_closed(self) -> None:
        await self._closed.wait()


# ============================================================================
# Helpers
# ============================================================================


def _static_transport(value: Any) -> TransportFunction:
    """Transport function answering with the response a hook returned."""

    async def send(request: httpx.Request, transport_options: Any) -> httpx.Response:
        raw = value.raw if isinstance(value, Response) else value
        if not isinstance(raw, httpx.Response):
            raise TypeError(
                "`before_request` hooks must return None or a response, "
                f"got {type(value).__name__}"
            )
        raw.request = request
        return raw

    return send


def _raw_location(raw: httpx.Response) -> str:
    for key, value in raw.headers.raw:
        if key.lower() == b"location":
            return value.decode("utf-8", errors="replace")
    return raw.headers["location"]


def _peer_address(raw: httpx.Response) -> Optional[str]:
    stream = raw.extensions.get("network_stream")
    if stream is None:
        return None
    address = stream.get_extra_info("server_addr")
    if not address:
        return None
    return str(address[0])
