# === NAVMAP v1 ===
# {
#   "module": "courier.create",
#   "purpose": "Instance composition: defaults, handler pipeline, verb shortcuts and extend",
#   "sections": [
#     {"id": "default-handler", "name": "default_handler", "anchor": "function-default-handler", "kind": "function"},
#     {"id": "handled-request", "name": "HandledRequest", "anchor": "class-handledrequest", "kind": "class"},
#     {"id": "courier", "name": "Courier", "anchor": "class-courier", "kind": "class"},
#     {"id": "create", "name": "create", "anchor": "function-create", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Instance composition.

A :class:`Courier` instance bundles frozen default options with an ordered
list of *handlers*.  Calling the instance normalizes the caller's options
over the defaults and walks the handlers; each handler receives
``(options, next)`` and usually returns ``next(options)``.  The last
``next`` dispatches to stream mode (:class:`~courier.engine.Request`) or
promise mode (:func:`~courier.promise.as_promise`) depending on
``options.is_stream``.

Example:
    >>> api = create({"prefix_url": "https://api.example.com", "headers": {"x-token": "abc"}})
    >>> # user = await api.get("users/1").json()
    >>> # async for chunk in api.stream("export"): ...
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Generator, Mapping, Optional, Sequence, Union

from courier.engine import Request
from courier.errors import CancelError, OptionsError, RequestError
from courier.hooks import Hooks, call_init_hooks
from courier.options import NormalizedOptions, merge_options, normalize_options
from courier.promise import PROXIED_EVENTS, CancelableRequest, RejectedRequest, as_promise, create_rejection

logger = logging.getLogger(__name__)

__all__ = ["Courier", "HandledRequest", "Handler", "create", "default_handler", "HTTP_ALIASES"]

Handler = Callable[[NormalizedOptions, Callable[[NormalizedOptions], Any]], Any]

HTTP_ALIASES = ("get", "post", "put", "patch", "head", "delete")

#: Keys accepted by ``extend`` that configure the instance rather than requests
INSTANCE_KEYS = ("handlers", "mutable_defaults")


def default_handler(options: NormalizedOptions, next: Callable[[NormalizedOptions], Any]) -> Any:
    """Pass-through handler installed when an instance has no other handler."""
    return next(options)


def _dispatch(options: NormalizedOptions) -> Any:
    if options.is_stream:
        return Request(None, options)
    return as_promise(options)


class HandledRequest:
    """Awaitable returned when a handler wraps the promise-mode request.

    Awaiting yields whatever the handler produced.  :meth:`cancel`,
    :meth:`on` and the body shortcuts act on the requests the handler
    dispatched through ``next``; calls made before the handler reached
    ``next`` are replayed on the request once it is dispatched.
    """

    def __init__(self) -> None:
        self.requests: list[Any] = []
        self.is_canceled = False
        self._shortcut: Optional[str] = None
        self._listeners: list[tuple[str, Callable[..., Any]]] = []
        self._task: Optional["asyncio.Future[Any]"] = None

    def bind(self, request: Any) -> Any:
        """Attach a request dispatched by the handler chain."""
        if self._shortcut is not None:
            getattr(request, self._shortcut)()
        for event, listener in self._listeners:
            request.on(event, listener)
        if self.is_canceled:
            request.cancel()
        self.requests.append(request)
        return request

    def wrap(self, result: Awaitable[Any]) -> "HandledRequest":
        self._task = asyncio.ensure_future(result)
        return self

    def __await__(self) -> Generator[Any, None, Any]:
        return self._result().__await__()

    async def _result(self) -> Any:
        try:
            return await self._task
        except asyncio.CancelledError:
            if self.is_canceled and self._task.cancelled():
                raise CancelError() from None
            raise

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> None:
        if self.done():
            return
        self.is_canceled = True
        pending = [request for request in self.requests if not request.done()]
        for request in pending:
            request.cancel()
        if not pending:
            self._task.cancel()

    def on(self, event: str, listener: Callable[..., Any]) -> "HandledRequest":
        if event not in PROXIED_EVENTS:
            raise OptionsError(f"Unsupported event `{event}`")
        self._listeners.append((event, listener))
        for request in self.requests:
            request.on(event, listener)
        return self

    def _use_shortcut(self, name: str) -> "HandledRequest":
        self._shortcut = name
        for request in self.requests:
            getattr(request, name)()
        return self

    def json(self) -> "HandledRequest":
        return self._use_shortcut("json")

    def text(self) -> "HandledRequest":
        return self._use_shortcut("text")

    def buffer(self) -> "HandledRequest":
        return self._use_shortcut("buffer")


class _StreamNamespace:
    """``instance.stream(...)`` plus ``instance.stream.get(...)`` and friends."""

    def __init__(self, instance: "Courier") -> None:
        self._instance = instance

    def __call__(
        self,
        url: Union[str, Mapping[str, Any], None] = None,
        options: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> Request:
        return self._instance(url, {**(options or {}), **kwargs, "is_stream": True})

    def __getattr__(self, name: str) -> Callable[..., Request]:
        if name not in HTTP_ALIASES:
            raise AttributeError(name)

        def verb(
            url: Union[str, Mapping[str, Any], None] = None,
            options: Optional[Mapping[str, Any]] = None,
            **kwargs: Any,
        ) -> Request:
            return self(url, {**(options or {}), **kwargs, "method": name.upper()})

        return verb


class Courier:
    """A configured HTTP client.

    Attributes:
        defaults: Options every request starts from.  Read-only unless the
            instance was created with ``mutable_defaults=True``.
        handlers: Ordered handler pipeline.
        stream: Stream-mode entry point with the same verb shortcuts.
    """

    def __init__(
        self,
        defaults: NormalizedOptions,
        handlers: Sequence[Handler],
        mutable_defaults: bool = False,
    ) -> None:
        self.defaults = defaults
        self.handlers: list[Handler] = list(handlers) or [default_handler]
        self.mutable_defaults = mutable_defaults
        self.stream = _StreamNamespace(self)

    def __repr__(self) -> str:
        return f"<Courier handlers={len(self.handlers)} mutable_defaults={self.mutable_defaults}>"

    def __call__(
        self,
        url: Union[str, Mapping[str, Any], None] = None,
        options: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> Any:
        """Issue a request.

        Args:
            url: Absolute URL, a path relative to ``prefix_url``, or an
                options mapping.
            options: Options mapping; ``kwargs`` are merged on top.

        Returns:
            A :class:`~courier.promise.CancelableRequest` in promise mode or a
            :class:`~courier.engine.Request` when ``is_stream`` is set.  An
            awaitable produced by a handler that wraps the request comes back
            as a :class:`HandledRequest`.

        Raises:
            RequestError: In stream mode, when normalization or a handler
                fails.  Promise mode returns an awaitable that raises instead.
        """
        if isinstance(url, Mapping):
            raw: dict[str, Any] = {**url, **(options or {}), **kwargs}
            url = None
        else:
            raw = {**(options or {}), **kwargs}

        caller_hooks: Optional[Hooks] = None
        try:
            if url is not None:
                if raw.get("url") is not None:
                    raise OptionsError("The `url` option is mutually exclusive with the `url` argument")
                raw["url"] = url
            caller_hooks = Hooks.coerce(raw.get("hooks"))
            init_error: Optional[BaseException] = None
            try:
                call_init_hooks(self.defaults.hooks.init, raw)
                call_init_hooks(caller_hooks.init, raw)
            except Exception as exc:
                init_error = exc

            normalized = normalize_options(None, raw, self.defaults)
            if init_error is not None:
                if isinstance(init_error, RequestError):
                    raise init_error
                raise RequestError(str(init_error) or type(init_error).__name__, init_error, normalized)
            return self._iterate_handlers(normalized)
        except Exception as error:
            is_stream = raw.get("is_stream")
            if is_stream or (is_stream is None and self.defaults.is_stream):
                raise
            logger.debug("Request rejected before dispatch", extra={"error": repr(error)})
            return create_rejection(
                error,
                self.defaults.hooks.before_error,
                caller_hooks.before_error if caller_hooks is not None else (),
            )

    def _iterate_handlers(self, options: NormalizedOptions) -> Any:
        handlers = self.handlers
        handled = HandledRequest()

        def dispatch(final_options: NormalizedOptions) -> Any:
            result = _dispatch(final_options)
            if isinstance(result, CancelableRequest):
                handled.bind(result)
            return result

        def iterate(index: int) -> Callable[[NormalizedOptions], Any]:
            if index == len(handlers):
                return dispatch

            def next_handler(new_options: NormalizedOptions) -> Any:
                return handlers[index](new_options, iterate(index + 1))

            return next_handler

        result = iterate(0)(options)
        if (
            options.is_stream
            or not inspect.isawaitable(result)
            or isinstance(result, (CancelableRequest, RejectedRequest, HandledRequest))
        ):
            return result
        return handled.wrap(result)

    # ========================================================================
    # Verb shortcuts
    # ========================================================================

    def _verb(self, method: str, url: Any, options: Optional[Mapping[str, Any]], kwargs: dict[str, Any]) -> Any:
        return self(url, {**(options or {}), **kwargs, "method": method})

    def get(self, url: Any = None, options: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return self._verb("GET", url, options, kwargs)

    def post(self, url: Any = None, options: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return self._verb("POST", url, options, kwargs)

    def put(self, url: Any = None, options: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return self._verb("PUT", url, options, kwargs)

    def patch(self, url: Any = None, options: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return self._verb("PATCH", url, options, kwargs)

    def head(self, url: Any = None, options: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return self._verb("HEAD", url, options, kwargs)

    def delete(self, url: Any = None, options: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Any:
        return self._verb("DELETE", url, options, kwargs)

    # ========================================================================
    # Composition
    # ========================================================================

    def extend(self, *instances_or_options: Union["Courier", Mapping[str, Any]]) -> "Courier":
        """Return a new instance layering ``instances_or_options`` over this one.

        Options merge left to right (hooks concatenate, earlier first) and
        handlers concatenate; the pass-through default handler is dropped
        unless no other handler remains.
        """
        sources: list[Union[NormalizedOptions, Mapping[str, Any]]] = [self.defaults]
        handlers = list(self.handlers)
        mutable_defaults = self.mutable_defaults

        for value in instances_or_options:
            if isinstance(value, Courier):
                sources.append(value.defaults)
                handlers.extend(value.handlers)
                mutable_defaults = value.mutable_defaults
            elif isinstance(value, Mapping):
                sources.append({key: item for key, item in value.items() if key not in INSTANCE_KEYS})
                handlers.extend(value.get("handlers") or ())
                mutable_defaults = bool(value.get("mutable_defaults", False))
            else:
                raise OptionsError(f"Expected a Courier instance or an options mapping, got {type(value).__name__}")

        handlers = [handler for handler in handlers if handler is not default_handler]
        return create(merge_options(*sources), handlers, mutable_defaults)

    @staticmethod
    def merge_options(*sources: Union[NormalizedOptions, Mapping[str, Any], None]) -> NormalizedOptions:
        return merge_options(*sources)


def create(
    defaults: Union[NormalizedOptions, Mapping[str, Any], None] = None,
    handlers: Optional[Sequence[Handler]] = None,
    mutable_defaults: bool = False,
) -> Courier:
    """Create an instance from default options and handlers."""
    if isinstance(defaults, NormalizedOptions):
        options = defaults if not defaults.is_frozen else defaults.derive()
    else:
        options = normalize_options(None, defaults)
    for handler in handlers or ():
        if not callable(handler):
            raise OptionsError(f"Expected handlers to be callable, got {type(handler).__name__}")
    if not mutable_defaults:
        options = options.freeze()
    return Courier(options, handlers or [default_handler], mutable_defaults)
