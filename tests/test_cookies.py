"""Tests for cookie jar adaptation and cookie handling in the engine."""

import http.cookiejar

import httpx
import pytest

from courier import create
from courier.cookies import CookieJarAdapter, adapt_cookie_jar
from courier.errors import OptionsError, RequestError

from tests.fixtures.http_mocking import MockResponseBuilder


class AsyncJar:
    def __init__(self):
        self.cookies = {}

    async def get_cookie_string(self, url):
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())

    async def set_cookie(self, raw_cookie, url):
        name, _, rest = raw_cookie.partition("=")
        self.cookies[name] = rest.split(";", 1)[0]


class SyncJar(AsyncJar):
    def get_cookie_string(self, url):
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())

    def set_cookie(self, raw_cookie, url):
        name, _, rest = raw_cookie.partition("=")
        self.cookies[name] = rest.split(";", 1)[0]


class CallbackJar:
    """Legacy jar reporting results through ``callback(error, value)``."""

    def __init__(self, fail=False):
        self.stored = []
        self.fail = fail

    def get_cookie_string(self, url, options, callback):
        callback(None, "; ".join(self.stored))

    def set_cookie(self, raw_cookie, url, options, callback):
        if self.fail:
            callback(ValueError("rejected cookie"))
            return
        self.stored.append(raw_cookie.split(";", 1)[0])
        callback(None, None)


class RejectingJar(AsyncJar):
    async def set_cookie(self, raw_cookie, url):
        raise ValueError(f"invalid cookie: {raw_cookie}")


class TestAdaptation:
    def test_none_and_false_disable_cookies(self):
        assert adapt_cookie_jar(None) is None
        assert adapt_cookie_jar(False) is None

    def test_adapter_passes_through(self):
        adapter = adapt_cookie_jar(AsyncJar())
        assert adapt_cookie_jar(adapter) is adapter

    def test_missing_methods_rejected(self):
        with pytest.raises(OptionsError, match="get_cookie_string"):
            adapt_cookie_jar(object())

    def test_unsupported_signature_rejected(self):
        class OddJar:
            def get_cookie_string(self, url, extra):
                return ""

            def set_cookie(self, raw_cookie):
                return None

        with pytest.raises(OptionsError, match="signature"):
            adapt_cookie_jar(OddJar())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("jar_class", [AsyncJar, SyncJar])
    async def test_async_and_sync_jars(self, jar_class):
        adapter = adapt_cookie_jar(jar_class())
        assert isinstance(adapter, CookieJarAdapter)
        await adapter.set_cookie("a=b; Path=/", "https://example.com/")
        assert await adapter.get_cookie_string("https://example.com/") == "a=b"

    @pytest.mark.asyncio
    async def test_callback_jar_is_adapted(self):
        adapter = adapt_cookie_jar(CallbackJar())
        await adapter.set_cookie("session=abc; Path=/", "https://example.com/")
        assert await adapter.get_cookie_string("https://example.com/") == "session=abc"

    @pytest.mark.asyncio
    async def test_callback_jar_errors_propagate(self):
        adapter = adapt_cookie_jar(CallbackJar(fail=True))
        with pytest.raises(ValueError, match="rejected cookie"):
            await adapter.set_cookie("a=b", "https://example.com/")

    @pytest.mark.asyncio
    async def test_httpx_cookies(self):
        cookies = httpx.Cookies()
        adapter = adapt_cookie_jar(cookies)
        await adapter.set_cookie("token=xyz; Path=/", "https://example.com/")
        assert cookies.get("token") == "xyz"
        assert await adapter.get_cookie_string("https://example.com/account") == "token=xyz"

    @pytest.mark.asyncio
    async def test_stdlib_cookie_jar(self):
        jar = http.cookiejar.CookieJar()
        adapter = adapt_cookie_jar(jar)
        await adapter.set_cookie("a=1; Path=/", "https://example.com/")
        assert len(jar) == 1


class TestEngineCookies:
    @pytest.mark.asyncio
    async def test_cookie_header_sent_from_jar(self, mock_server):
        jar = SyncJar()
        jar.cookies["session"] = "abc"
        client = create({"transport": mock_server, "cookie_jar": jar})

        await client.get("https://example.com/")

        assert mock_server.requests[0].headers["cookie"] == "session=abc"

    @pytest.mark.asyncio
    async def test_set_cookie_stored_in_jar(self, mock_server):
        jar = AsyncJar()
        mock_server.respond_with(MockResponseBuilder(200, b"ok").with_cookie("a", "b"))
        client = create({"transport": mock_server, "cookie_jar": jar})

        await client.get("https://example.com/")

        assert jar.cookies == {"a": "b"}

    @pytest.mark.asyncio
    async def test_invalid_cookie_fails_request(self, mock_server):
        mock_server.respond_with(MockResponseBuilder(200, b"ok").with_cookie("a", "b"))
        client = create({"transport": mock_server, "cookie_jar": RejectingJar()})

        with pytest.raises(RequestError, match="invalid cookie") as excinfo:
            await client.get("https://example.com/")
        assert isinstance(excinfo.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_invalid_cookie_ignored_on_request(self, mock_server):
        mock_server.respond_with(MockResponseBuilder(200, b"ok").with_cookie("a", "b"))
        client = create(
            {"transport": mock_server, "cookie_jar": RejectingJar(), "ignore_invalid_cookies": True}
        )

        response = await client.get("https://example.com/")

        assert response.status_code == 200
        assert response.body == "ok"
