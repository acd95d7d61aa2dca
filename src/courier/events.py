"""Minimal synchronous event emitter shared by the engine and promise layer."""

from __future__ import annotations

from typing import Any, Callable

__all__ = ["EventEmitter"]

Listener = Callable[..., Any]


class EventEmitter:
    """Named events with ordered listeners.

    Listeners are plain callables invoked synchronously, in registration
    order, from :meth:`emit`.  Exceptions raised by a listener propagate to
    the emitter.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> "EventEmitter":
        self._listeners.setdefault(event, []).append(listener)
        return self

    def once(self, event: str, listener: Listener) -> "EventEmitter":
        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return listener(*args)

        wrapper.listener = listener  # type: ignore[attr-defined]
        return self.on(event, wrapper)

    def off(self, event: str, listener: Listener) -> "EventEmitter":
        listeners = self._listeners.get(event, [])
        for index, candidate in enumerate(listeners):
            if candidate is listener or getattr(candidate, "listener", None) is listener:
                del listeners[index]
                break
        return self

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener of ``event``; return whether there were any."""
        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            listener(*args)
        return bool(listeners)
