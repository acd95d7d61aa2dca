"""Hook phases and the helpers that invoke them.

Hooks are plain callables stored per phase in ordered lists.  A hook may be a
regular function or a coroutine function; :func:`call_hook` awaits the result
until it is no longer awaitable, so a hook may also return another awaitable
(for example the request returned by ``retry_with_merged_options``).

Hook signatures per phase::

    init(raw_options: dict) -> None                       # synchronous
    before_request(options) -> None | Response | httpx.Response
    before_redirect(options, response) -> None
    before_retry(options, error, retry_count) -> None
    after_response(response, retry_with_merged_options) -> Response
    before_error(error) -> RequestError

Short-circuiting is expressed with :class:`Continue` and :class:`Replace`.
Returning ``None`` means continue; any other value is treated as
``Replace(value)``.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Generic, Iterable, Mapping, Protocol, TypeVar, Union

from courier.errors import OptionsError

__all__ = [
    "HOOK_PHASES",
    "Hooks",
    "Continue",
    "Replace",
    "CONTINUE",
    "as_outcome",
    "call_hook",
    "call_init_hooks",
]

T = TypeVar("T")

HOOK_PHASES = (
    "init",
    "before_request",
    "before_redirect",
    "before_retry",
    "after_response",
    "before_error",
)


class InitHook(Protocol):
    def __call__(self, raw_options: dict) -> None: ...


class BeforeRequestHook(Protocol):
    def __call__(self, options: Any) -> Any: ...


class BeforeRedirectHook(Protocol):
    def __call__(self, options: Any, response: Any) -> Any: ...


class BeforeRetryHook(Protocol):
    def __call__(self, options: Any, error: Any, retry_count: int) -> Any: ...


class AfterResponseHook(Protocol):
    def __call__(self, response: Any, retry_with_merged_options: Callable[..., Any]) -> Any: ...


class BeforeErrorHook(Protocol):
    def __call__(self, error: Any) -> Any: ...


# ============================================================================
# Outcomes
# ============================================================================


@dataclass(frozen=True)
class Continue:
    """Hook outcome: keep going with the current value."""


@dataclass(frozen=True)
class Replace(Generic[T]):
    """Hook outcome: substitute ``value`` for the current one."""

    value: T


CONTINUE = Continue()

Outcome = Union[Continue, Replace[Any]]


def as_outcome(result: Any) -> Outcome:
    if result is None or isinstance(result, Continue):
        return CONTINUE
    if isinstance(result, Replace):
        return result
    return Replace(result)


async def call_hook(hook: Callable[..., Any], *args: Any) -> Any:
    """Invoke ``hook`` and await its result until it is a plain value."""
    result = hook(*args)
    while inspect.isawaitable(result):
        result = await result
    return result


# ============================================================================
# Hook Container
# ============================================================================


@dataclass
class Hooks:
    """Ordered hook lists for every phase."""

    init: list[InitHook] = field(default_factory=list)
    before_request: list[BeforeRequestHook] = field(default_factory=list)
    before_redirect: list[BeforeRedirectHook] = field(default_factory=list)
    before_retry: list[BeforeRetryHook] = field(default_factory=list)
    after_response: list[AfterResponseHook] = field(default_factory=list)
    before_error: list[BeforeErrorHook] = field(default_factory=list)

    @classmethod
    def coerce(cls, value: Union["Hooks", Mapping[str, Any], None]) -> "Hooks":
        """Build a :class:`Hooks` from a mapping of phase name to hook(s).

        A single callable is accepted in place of a list.  Unknown phases and
        non-callable entries raise :class:`OptionsError`.
        """
        if value is None:
            return cls()
        if isinstance(value, Hooks):
            return value.copy()
        if not isinstance(value, Mapping):
            raise OptionsError(f"Expected `hooks` to be a mapping, got {type(value).__name__}")

        hooks = cls()
        for phase, entries in value.items():
            if phase not in HOOK_PHASES:
                raise OptionsError(f"Unknown hook phase `{phase}`")
            getattr(hooks, phase).extend(_coerce_entries(phase, entries))
        return hooks

    def merge(self, other: "Hooks") -> "Hooks":
        """Return a new container with ``self``'s hooks ahead of ``other``'s."""
        merged = Hooks()
        for phase in HOOK_PHASES:
            getattr(merged, phase).extend(getattr(self, phase))
            getattr(merged, phase).extend(getattr(other, phase))
        return merged

    def copy(self) -> "Hooks":
        return Hooks(**{f.name: list(getattr(self, f.name)) for f in fields(self)})


def _coerce_entries(phase: str, entries: Any) -> list[Callable[..., Any]]:
    if entries is None:
        return []
    if callable(entries):
        entries = [entries]
    if not isinstance(entries, Iterable) or isinstance(entries, (str, bytes)):
        raise OptionsError(f"Expected `hooks.{phase}` to be a list of callables")
    result = list(entries)
    for entry in result:
        if not callable(entry):
            raise OptionsError(
                f"Expected `hooks.{phase}` entries to be callable, got {type(entry).__name__}"
            )
    return result


def call_init_hooks(hooks: Iterable[InitHook], raw_options: dict) -> None:
    """Run ``init`` hooks against the raw options mapping.

    Raises:
        OptionsError: If a hook returns an awaitable.
    """
    for hook in hooks:
        result = hook(raw_options)
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise OptionsError("The `init` hook must be a synchronous function")

