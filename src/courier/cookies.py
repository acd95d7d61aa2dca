"""Cookie jar adapters.

The engine only ever talks to a :class:`CookieJarAdapter`, which exposes two
coroutines: ``get_cookie_string(url)`` and ``set_cookie(raw_cookie, url)``.
:func:`adapt_cookie_jar` wraps whatever the caller supplied:

* jars whose methods are coroutine functions or plain functions with the
  ``(url)`` / ``(raw_cookie, url)`` signatures;
* legacy callback jars, ``get_cookie_string(url, options, callback)`` and
  ``set_cookie(raw_cookie, url, options, callback)`` where ``callback`` is
  invoked as ``callback(error, value)``;
* ``httpx.Cookies`` and ``http.cookiejar.CookieJar`` instances.
"""

from __future__ import annotations

import asyncio
import http.cookiejar
import inspect
import logging
from typing import Any, Callable, Optional

import httpx

from courier.errors import OptionsError

logger = logging.getLogger(__name__)

__all__ = ["CookieJarAdapter", "adapt_cookie_jar"]


class CookieJarAdapter:
    """Uniform async facade over a caller supplied cookie jar."""

    def __init__(
        self,
        jar: Any,
        get_cookie_string: Callable[[str], Any],
        set_cookie: Callable[[str, str], Any],
    ) -> None:
        self.jar = jar
        self._get_cookie_string = get_cookie_string
        self._set_cookie = set_cookie

    async def get_cookie_string(self, url: str) -> str:
        result = self._get_cookie_string(url)
        if inspect.isawaitable(result):
            result = await result
        return result or ""

    async def set_cookie(self, raw_cookie: str, url: str) -> None:
        result = self._set_cookie(raw_cookie, url)
        if inspect.isawaitable(result):
            await result

    def __repr__(self) -> str:
        return f"CookieJarAdapter({self.jar!r})"


def adapt_cookie_jar(jar: Any) -> Optional[CookieJarAdapter]:
    """Wrap ``jar`` in a :class:`CookieJarAdapter`.

    Args:
        jar: Cookie jar supplied through the ``cookie_jar`` option. ``None``
            and ``False`` disable cookie handling.

    Returns:
        The adapter, or ``None`` when cookies are disabled.

    Raises:
        OptionsError: If ``jar`` does not look like any supported jar shape.
    """
    if jar is None or jar is False:
        return None
    if isinstance(jar, CookieJarAdapter):
        return jar
    if isinstance(jar, httpx.Cookies):
        return _httpx_adapter(jar)
    if isinstance(jar, http.cookiejar.CookieJar):
        return _httpx_adapter(httpx.Cookies(jar))

    get_cookie_string = getattr(jar, "get_cookie_string", None)
    set_cookie = getattr(jar, "set_cookie", None)
    if not callable(get_cookie_string) or not callable(set_cookie):
        raise OptionsError(
            "Expected `cookie_jar` to provide `get_cookie_string` and `set_cookie` callables"
        )

    get_arity = _positional_arity(get_cookie_string)
    set_arity = _positional_arity(set_cookie)

    if set_arity == 4 and get_arity == 3:
        logger.debug("Adapting callback-style cookie jar", extra={"jar": type(jar).__name__})
        return CookieJarAdapter(
            jar,
            lambda url: _call_with_callback(get_cookie_string, url, {}),
            lambda raw, url: _call_with_callback(set_cookie, raw, url, {}),
        )
    if get_arity in (1, None) and set_arity in (2, None):
        return CookieJarAdapter(jar, get_cookie_string, set_cookie)

    raise OptionsError(
        "Unsupported `cookie_jar` signature: expected get_cookie_string(url) and "
        "set_cookie(raw_cookie, url), or their callback forms"
    )


def _httpx_adapter(cookies: httpx.Cookies) -> CookieJarAdapter:
    def get_cookie_string(url: str) -> str:
        request = httpx.Request("GET", url)
        cookies.set_cookie_header(request)
        return request.headers.get("cookie", "")

    def set_cookie(raw_cookie: str, url: str) -> None:
        response = httpx.Response(
            200,
            headers=[("set-cookie", raw_cookie)],
            request=httpx.Request("GET", url),
        )
        cookies.extract_cookies(response)

    return CookieJarAdapter(cookies, get_cookie_string, set_cookie)


def _positional_arity(fn: Callable[..., Any]) -> Optional[int]:
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        return None
    return sum(
        1
        for parameter in signature.parameters.values()
        if parameter.kind
        in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    )


async def _call_with_callback(fn: Callable[..., Any], *args: Any) -> Any:
    loop = asyncio.get_running_loop()
    future: asyncio.Future[Any] = loop.create_future()

    def settle(error: Optional[BaseException], value: Any) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(value)

    def callback(error: Optional[BaseException] = None, value: Any = None) -> None:
        loop.call_soon_threadsafe(settle, error, value)

    fn(*args, callback)
    return await future
