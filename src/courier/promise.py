# === NAVMAP v1 ===
# {
#   "module": "courier.promise",
#   "purpose": "Retry orchestration and the awaitable, cancelable request",
#   "sections": [
#     {"id": "parse-body", "name": "parse_body", "anchor": "function-parse-body", "kind": "function"},
#     {"id": "promisable-request", "name": "PromisableRequest", "anchor": "class-promisablerequest", "kind": "class"},
#     {"id": "cancelable-request", "name": "CancelableRequest", "anchor": "class-cancelablerequest", "kind": "class"},
#     {"id": "as-promise", "name": "as_promise", "anchor": "function-as-promise", "kind": "function"},
#     {"id": "create-rejection", "name": "create_rejection", "anchor": "function-create-rejection", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Promise mode: retries, body parsing and cancellation.

:func:`as_promise` turns normalized options into a :class:`CancelableRequest`,
an awaitable that drives one engine per attempt:

1. Every attempt derives fresh options from the caller's and forces
   ``throw_http_errors`` so status failures reach the retry decision.
2. The body is buffered and parsed per ``response_type``.
3. ``after_response`` hooks run in order; each may swap the response or
   issue a follow-up request through ``retry_with_merged_options``.
4. Failures are classified by :class:`~courier.errors.ErrorKind`.  Eligible
   ones ask ``retry.calculate_delay`` for a delay; a positive delay starts a
   new attempt after ``before_retry`` hooks, a zero delay settles.

Every terminal branch settles the awaitable exactly once: it resolves with
the parsed body or the response, or raises the final error.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Generator, Mapping, NoReturn, Optional, Sequence

from courier.engine import Request
from courier.errors import CancelError, ErrorKind, HTTPError, OptionsError, ParseError, RequestError
from courier.events import EventEmitter
from courier.hooks import Replace, as_outcome, call_hook
from courier.logging_utils import redact_url
from courier.network.retry import RetryInfo, calculate_retry_delay, parse_retry_after
from courier.options import NormalizedOptions, normalize_options
from courier.response import Response, is_response_ok

logger = logging.getLogger(__name__)

__all__ = [
    "RESPONSE_TYPES",
    "PROXIED_EVENTS",
    "parse_body",
    "PromisableRequest",
    "CancelableRequest",
    "RejectedRequest",
    "as_promise",
    "create_rejection",
]

RESPONSE_TYPES = ("text", "json", "buffer")

PROXIED_EVENTS = ("request", "response", "redirect", "upload_progress", "download_progress")

#: Kinds that are settled without consulting the retry policy
FATAL_KINDS = frozenset(
    {
        ErrorKind.OPTIONS,
        ErrorKind.UNSUPPORTED_PROTOCOL,
        ErrorKind.MAX_REDIRECTS,
        ErrorKind.PARSE,
        ErrorKind.CANCEL,
    }
)


def parse_body(response: Response, response_type: str, encoding: str) -> Any:
    """Decode ``response.raw_body`` according to ``response_type``.

    Raises:
        ParseError: The body is not valid JSON.
        OptionsError: ``response_type`` is not one of ``text``, ``json``
            or ``buffer``.
    """
    raw_body = response.raw_body if response.raw_body is not None else b""
    if response_type == "buffer":
        return raw_body
    if response_type == "text":
        return raw_body.decode(encoding, errors="replace")
    if response_type == "json":
        if not raw_body:
            return ""
        try:
            return json.loads(raw_body.decode(encoding))
        except ValueError as exc:
            raise ParseError(exc, response) from exc
    raise OptionsError(f"Unknown body type '{response_type}'", response.options)


class PromisableRequest(Request):
    """Engine used by promise mode: no upload side, bodies parsed on error."""

    def __init__(
        self,
        url: Any = None,
        options: Any = None,
        defaults: Optional[NormalizedOptions] = None,
    ) -> None:
        super().__init__(url, options, defaults, no_pipe=True)

    def _decode_error_body(self, response: Response) -> None:
        try:
            response.body = parse_body(response, self.options.response_type, self.options.encoding)
        except (ParseError, OptionsError):
            super()._decode_error_body(response)


class CancelableRequest:
    """Awaitable result of a promise-mode request.

    ``await`` it for the response (or the parsed body with
    ``resolve_body_only``).  :meth:`cancel` aborts the current attempt and
    any pending backoff; awaiting then raises :class:`CancelError`.

    Example:
        >>> async def main():
        ...     data = await courier.get("https://httpbin.org/json").json()
    """

    def __init__(self, options: NormalizedOptions) -> None:
        loop = asyncio.get_running_loop()
        self.options = options
        self.retry_count = 0
        self.is_canceled = False
        self.request: Optional[PromisableRequest] = None
        self._emitter = EventEmitter()
        self._shortcut: Optional[str] = None
        self._processed: Optional[Response] = None
        self._children: list[CancelableRequest] = []
        self._task = loop.create_task(self._run())

    # ========================================================================
    # Awaitable surface
    # ========================================================================

    def __await__(self) -> Generator[Any, None, Any]:
        return self._result().__await__()

    async def _result(self) -> Any:
        try:
            return await self._task
        except asyncio.CancelledError:
            if self.is_canceled and self._task.cancelled():
                raise CancelError(self.request) from None
            raise

    def done(self) -> bool:
        return self._task.done()

    def on(self, event: str, listener: Callable[..., Any]) -> "CancelableRequest":
        """Listen to ``request``, ``response``, ``redirect`` and progress events."""
        if event not in PROXIED_EVENTS:
            raise OptionsError(f"Unsupported event `{event}`")
        self._emitter.on(event, listener)
        return self

    def cancel(self) -> None:
        """Abort the request; no further attempt or ``calculate_delay`` call happens."""
        if self._task.done():
            return
        self.is_canceled = True
        if self.request is not None:
            self.request.destroy()
        for child in self._children:
            child.cancel()
        self._task.cancel()
        logger.debug("Request canceled", extra={"url": redact_url(self.options.url)})

    def json(self) -> "CancelableRequest":
        """Resolve with the body parsed as JSON; defaults ``accept`` to JSON."""
        if self.request is None and not self.options.is_frozen:
            self.options.headers.setdefault("accept", "application/json")
        self._shortcut = "json"
        return self

    def text(self) -> "CancelableRequest":
        self._shortcut = "text"
        return self

    def buffer(self) -> "CancelableRequest":
        self._shortcut = "buffer"
        return self

    # ========================================================================
    # Attempts
    # ========================================================================

    async def _run(self) -> Any:
        base = self.options
        while True:
            attempt_options = base.derive()
            attempt_options.throw_http_errors = True
            if attempt_options.response_type == "json":
                attempt_options.headers.setdefault("accept", "application/json")

            engine = PromisableRequest(None, attempt_options)
            engine.retry_count = self.retry_count
            self.request = engine
            for event in PROXIED_EVENTS:
                engine.on(event, _forward(self._emitter, event))

            try:
                response = await engine.wait_for_response()
                if response is None:
                    raise CancelError(engine)
                return await self._on_response(engine, response)
            except RequestError as error:
                if self.is_canceled:
                    raise CancelError(engine) from error
                try:
                    delay = await self._retry_delay(error)
                    if delay > 0:
                        logger.info(
                            "Retrying request",
                            extra={
                                "url": redact_url(base.url),
                                "attempt": self.retry_count,
                                "delay": delay,
                                "error": error.code,
                            },
                        )
                        for hook in base.hooks.before_retry:
                            await call_hook(hook, base, error, self.retry_count)
                except Exception as exc:
                    await _reject(engine, exc, settled=True)
                if delay > 0:
                    engine.destroy()
                    await asyncio.sleep(delay)
                    continue
                if error.kind is ErrorKind.HTTP and not base.throw_http_errors:
                    return await self._resolve_http_error(engine, error)
                raise
            finally:
                attempt_options.throw_http_errors = base.throw_http_errors

    async def _retry_delay(self, error: RequestError) -> float:
        """Ask the retry policy for a delay, counting the retry speculatively."""
        if error.kind in FATAL_KINDS:
            return 0

        retry = self.options.retry
        self.retry_count += 1
        retry_after = None
        if error.response is not None:
            retry_after = parse_retry_after(error.response.headers.get("retry-after"))
        info = RetryInfo(
            attempt_count=self.retry_count,
            retry_options=retry,
            error=error,
            retry_after=retry_after,
        )
        info.computed_value = calculate_retry_delay(info)
        try:
            delay = await call_hook(retry.calculate_delay, info)
        except Exception:
            self.retry_count -= 1
            raise

        if not isinstance(delay, (int, float)) or delay <= 0:
            self.retry_count -= 1
            return 0
        return float(delay)

    async def _on_response(self, engine: PromisableRequest, response: Response) -> Any:
        options = engine.options
        response.raw_body = await engine.read()
        try:
            response.body = parse_body(response, options.response_type, options.encoding)
        except (ParseError, OptionsError) as exc:
            response.body = response.raw_body.decode(options.encoding, errors="replace")
            if is_response_ok(response.status_code, options.follow_redirect):
                await _reject(engine, exc)

        try:
            response = await self._run_after_response(engine, response)
        except Exception as exc:
            await _reject(engine, exc)

        if not response.ok:
            error = await engine._before_error(HTTPError(response))
            raise error
        return self._settle(response)

    async def _run_after_response(self, engine: PromisableRequest, response: Response) -> Response:
        hooks = engine.options.hooks.after_response
        for index, hook in enumerate(hooks):
            outcome = as_outcome(
                await call_hook(hook, response, self._retry_with_merged_options(engine.options, index))
            )
            if isinstance(outcome, Replace):
                if not isinstance(outcome.value, Response):
                    raise TypeError(
                        f"`after_response` hooks must return a response, got {type(outcome.value).__name__}"
                    )
                response = outcome.value
        self._processed = response
        return response

    def _retry_with_merged_options(
        self, options: NormalizedOptions, index: int
    ) -> Callable[[Mapping[str, Any]], "CancelableRequest"]:
        def retry_with_merged_options(updated_options: Mapping[str, Any]) -> CancelableRequest:
            merged = normalize_options(
                None,
                {
                    **dict(updated_options),
                    "retry": {"calculate_delay": _no_retry},
                    "throw_http_errors": False,
                    "resolve_body_only": False,
                    "is_stream": False,
                },
                options,
            )
            merged.hooks.after_response = list(merged.hooks.after_response)[:index]
            child = _RetriedRequest(merged, self.retry_count)
            self._children.append(child)
            return child

        return retry_with_merged_options

    async def _resolve_http_error(self, engine: PromisableRequest, error: RequestError) -> Any:
        response = error.response
        if response is not self._processed:
            try:
                response = await self._run_after_response(engine, response)
            except Exception as exc:
                await _reject(engine, exc, settled=True)
        return self._settle(response)

    def _settle(self, response: Response) -> Any:
        response.retry_count = self.retry_count
        if self._shortcut is not None:
            return parse_body(response, self._shortcut, self.options.encoding)
        if self.options.resolve_body_only:
            return response.body
        return response


class _RetriedRequest(CancelableRequest):
    """Request issued by ``retry_with_merged_options``; runs ``before_retry`` first."""

    def __init__(self, options: NormalizedOptions, retry_count: int) -> None:
        self._initial_retry_count = retry_count
        super().__init__(options)

    async def _run(self) -> Any:
        try:
            for hook in self.options.hooks.before_retry:
                await call_hook(hook, self.options, None, self._initial_retry_count)
        except Exception as exc:
            error = exc
            if not isinstance(error, RequestError):
                error = RequestError(str(exc) or type(exc).__name__, exc, self.options)
            await RejectedRequest(error, [self.options.hooks.before_error])
        return await super()._run()


class RejectedRequest:
    """Awaitable that raises an error produced before any engine existed.

    Exposes the :class:`CancelableRequest` surface so callers can chain
    ``.json()`` or ``.on()`` regardless of how the request failed.
    """

    def __init__(self, error: BaseException, hook_groups: Sequence[Sequence[Callable[..., Any]]]) -> None:
        self.error = error
        self.is_canceled = False
        self.retry_count = 0
        self._hook_groups = hook_groups
        self._final: Optional[BaseException] = None

    def __await__(self) -> Generator[Any, None, Any]:
        return self._reject().__await__()

    async def _reject(self) -> Any:
        if self._final is None:
            error = self.error
            if isinstance(error, RequestError):
                try:
                    for hooks in self._hook_groups:
                        for hook in hooks or ():
                            outcome = as_outcome(await call_hook(hook, error))
                            if isinstance(outcome, Replace):
                                error = outcome.value
                except Exception as exc:
                    error = RequestError(str(exc) or type(exc).__name__, exc, error.options)
            self._final = error
        raise self._final

    def done(self) -> bool:
        return True

    def cancel(self) -> None:
        pass

    def on(self, event: str, listener: Callable[..., Any]) -> "RejectedRequest":
        return self

    def json(self) -> "RejectedRequest":
        return self

    def text(self) -> "RejectedRequest":
        return self

    def buffer(self) -> "RejectedRequest":
        return self


def as_promise(options: NormalizedOptions) -> CancelableRequest:
    """Start a promise-mode request for ``options``."""
    return CancelableRequest(options)


def create_rejection(error: BaseException, *before_error_hooks: Sequence[Callable[..., Any]]) -> RejectedRequest:
    """Awaitable failing with ``error`` after running ``before_error`` hook groups."""
    return RejectedRequest(error, before_error_hooks)


def _no_retry(info: RetryInfo) -> float:
    return 0


def _forward(emitter: EventEmitter, event: str) -> Callable[..., Any]:
    def forward(*args: Any) -> None:
        emitter.emit(event, *args)

    return forward


async def _reject(engine: Request, exc: Exception, *, settled: bool = False) -> NoReturn:
    """Raise the error ``before_error`` hooks settle on for ``exc``."""
    error = await engine._before_error(exc, settled=settled)
    if error is exc:
        raise error
    raise error from exc
