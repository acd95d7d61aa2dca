"""Tests for instance composition: defaults, handlers, verbs and extend."""

import asyncio
from dataclasses import FrozenInstanceError

import pytest

import courier as courier_package
from courier import Courier, create
from courier.create import HandledRequest, default_handler
from courier.engine import Request
from courier.errors import CancelError, OptionsError, RequestError, UnsupportedProtocolError
from courier.options import NormalizedOptions
from courier.promise import CancelableRequest, RejectedRequest

from tests.fixtures.http_mocking import MockResponseBuilder


class TestCalling:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("verb", ["get", "post", "put", "patch", "head", "delete"])
    async def test_verb_shortcuts(self, mock_server, verb):
        client = create({"transport": mock_server})

        await getattr(client, verb)("https://example.com/")

        assert mock_server.requests[0].method == verb.upper()

    @pytest.mark.asyncio
    async def test_options_mapping_as_first_argument(self, mock_server):
        client = create({"transport": mock_server})

        await client({"url": "https://example.com/item", "method": "PUT"})

        assert mock_server.requests[0].method == "PUT"
        assert str(mock_server.requests[0].url) == "https://example.com/item"

    @pytest.mark.asyncio
    async def test_prefix_url(self, mock_server):
        client = create({"transport": mock_server, "prefix_url": "https://api.example.com/v1"})

        await client.get("users/1", search_params={"expand": "teams"})

        assert str(mock_server.requests[0].url) == "https://api.example.com/v1/users/1?expand=teams"

    @pytest.mark.asyncio
    async def test_url_argument_and_option_conflict(self, mock_server):
        client = create({"transport": mock_server})

        with pytest.raises(OptionsError, match="mutually exclusive"):
            await client.get("https://example.com/", url="https://example.com/other")

    @pytest.mark.asyncio
    async def test_promise_mode_returns_cancelable_request(self, mock_server):
        client = create({"transport": mock_server})
        request = client.get("https://example.com/")
        assert isinstance(request, CancelableRequest)
        await request

    def test_default_instance(self):
        assert courier_package.courier.defaults.headers["user-agent"].startswith("courier/")
        assert courier_package.courier.defaults.retry.limit == 2
        assert isinstance(courier_package.courier, Courier)


class TestStreamNamespace:
    @pytest.mark.asyncio
    async def test_stream_returns_engine(self, mock_server):
        client = create({"transport": mock_server})

        stream = client.stream("https://example.com/")

        assert isinstance(stream, Request)
        assert await stream.read() == b"ok"

    @pytest.mark.asyncio
    async def test_stream_verbs(self, mock_server):
        client = create({"transport": mock_server})

        stream = client.stream.post("https://example.com/upload")
        await stream.end(b"chunk")
        await stream.read()

        assert mock_server.requests[0].method == "POST"
        assert mock_server.bodies == [b"chunk"]

    def test_unknown_stream_attribute(self):
        with pytest.raises(AttributeError):
            create().stream.fetch

    def test_invalid_options_raise_in_stream_mode(self, mock_server):
        client = create({"transport": mock_server})

        with pytest.raises(UnsupportedProtocolError):
            client.stream("ftp://example.com/")

    @pytest.mark.asyncio
    async def test_invalid_options_reject_in_promise_mode(self, mock_server):
        client = create({"transport": mock_server})

        request = client.get("ftp://example.com/")

        assert isinstance(request, RejectedRequest)
        with pytest.raises(UnsupportedProtocolError):
            await request


class TestHandlers:
    @pytest.mark.asyncio
    async def test_handlers_run_in_order(self, mock_server):
        order = []

        def first(options, next):
            order.append("first")
            options.headers["x-first"] = "1"
            return next(options)

        def second(options, next):
            order.append("second")
            assert isinstance(options, NormalizedOptions)
            return next(options)

        client = create({"transport": mock_server}, [first, second])
        await client.get("https://example.com/")

        assert order == ["first", "second"]
        assert mock_server.requests[0].headers["x-first"] == "1"

    @pytest.mark.asyncio
    async def test_handler_can_short_circuit(self, mock_server):
        client = create({"transport": mock_server}, [lambda options, next: "cached"])

        assert client.get("https://example.com/") == "cached"
        assert mock_server.call_count == 0

    @pytest.mark.asyncio
    async def test_handler_can_wrap_the_result(self, mock_server):
        async def unwrap(options, next):
            response = await next(options)
            return response.body

        client = create({"transport": mock_server}, [unwrap])

        request = client.get("https://example.com/")

        assert isinstance(request, HandledRequest)
        assert await request == "ok"
        assert request.done()

    @pytest.mark.asyncio
    async def test_cancel_through_wrapping_handler(self):
        started = asyncio.Event()

        async def hang(request, transport_options):
            started.set()
            await asyncio.sleep(5)

        async def passthrough(options, next):
            return await next(options)

        client = create({"transport": hang}, [passthrough])
        request = client.get("https://example.com/")
        await started.wait()

        request.cancel()

        with pytest.raises(CancelError):
            await request
        assert request.is_canceled
        assert all(dispatched.is_canceled for dispatched in request.requests)

    @pytest.mark.asyncio
    async def test_cancel_before_handler_dispatches(self, mock_server):
        async def passthrough(options, next):
            return await next(options)

        client = create({"transport": mock_server}, [passthrough])
        request = client.get("https://example.com/")

        request.cancel()

        with pytest.raises(CancelError):
            await request
        assert mock_server.call_count == 0

    @pytest.mark.asyncio
    async def test_shortcuts_through_wrapping_handler(self, mock_server):
        async def passthrough(options, next):
            return await next(options)

        mock_server.respond_with(MockResponseBuilder().with_json({"id": 7}))
        client = create({"transport": mock_server}, [passthrough])

        assert await client.get("https://example.com/").json() == {"id": 7}
        assert await client.get("https://example.com/").text() == '{"id": 7}'

    @pytest.mark.asyncio
    async def test_listeners_through_wrapping_handler(self, mock_server):
        async def passthrough(options, next):
            return await next(options)

        statuses = []
        client = create({"transport": mock_server}, [passthrough])

        request = client.get("https://example.com/").on(
            "response", lambda response: statuses.append(response.status_code)
        )
        await request

        assert statuses == [200]
        with pytest.raises(OptionsError, match="Unsupported event"):
            request.on("nope", print)

    def test_non_callable_handler_rejected(self):
        with pytest.raises(OptionsError, match="handlers"):
            create({}, ["nope"])

    def test_default_handler_installed(self):
        assert create().handlers == [default_handler]


class TestInitHooks:
    @pytest.mark.asyncio
    async def test_init_hooks_edit_raw_options(self, mock_server):
        def add_header(raw):
            raw.setdefault("headers", {})["x-init"] = "yes"

        client = create({"transport": mock_server, "hooks": {"init": [add_header]}})
        await client.get("https://example.com/")

        assert mock_server.requests[0].headers["x-init"] == "yes"

    @pytest.mark.asyncio
    async def test_failing_init_hook_rejects(self, mock_server):
        def explode(raw):
            raise KeyError("missing")

        client = create({"transport": mock_server, "hooks": {"init": [explode]}})

        with pytest.raises(RequestError) as excinfo:
            await client.get("https://example.com/")
        assert isinstance(excinfo.value.__cause__, KeyError)
        assert mock_server.call_count == 0


class TestDefaults:
    def test_defaults_are_frozen(self):
        client = create({"headers": {"x-a": "1"}})

        with pytest.raises(TypeError):
            client.defaults.headers["x-b"] = "2"
        with pytest.raises(FrozenInstanceError):
            client.defaults.method = "POST"

    @pytest.mark.asyncio
    async def test_mutable_defaults(self, mock_server):
        client = create({"transport": mock_server}, mutable_defaults=True)

        client.defaults.headers["x-token"] = "abc"
        await client.get("https://example.com/")

        assert mock_server.requests[0].headers["x-token"] == "abc"

    @pytest.mark.asyncio
    async def test_requests_do_not_leak_into_defaults(self, mock_server):
        client = create({"transport": mock_server, "headers": {"x-a": "1"}})

        await client.get("https://example.com/", headers={"x-b": "2"})
        await client.get("https://example.com/")

        assert "x-b" not in mock_server.requests[1].headers
        assert dict(client.defaults.headers) == {"x-a": "1"}


class TestExtend:
    @pytest.mark.asyncio
    async def test_extend_merges_options_and_hooks(self, mock_server):
        order = []
        parent = create(
            {
                "transport": mock_server,
                "headers": {"x-parent": "1", "x-shared": "parent"},
                "hooks": {"before_request": [lambda options: order.append("parent")]},
            }
        )
        child = parent.extend(
            {
                "headers": {"x-shared": "child"},
                "hooks": {"before_request": [lambda options: order.append("child")]},
            }
        )

        await child.get("https://example.com/")

        headers = mock_server.requests[0].headers
        assert headers["x-parent"] == "1"
        assert headers["x-shared"] == "child"
        assert order == ["parent", "child"]
        assert len(parent.defaults.hooks.before_request) == 1

    @pytest.mark.asyncio
    async def test_extend_with_instances_concatenates_handlers(self, mock_server):
        order = []

        def tag(name):
            def handler(options, next):
                order.append(name)
                return next(options)

            return handler

        base = create({"transport": mock_server}, [tag("base")])
        other = create({"headers": {"x-other": "1"}}, [tag("other")])

        merged = base.extend(other, {"handlers": [tag("mapping")]})
        await merged.get("https://example.com/")

        assert order == ["base", "other", "mapping"]
        assert mock_server.requests[0].headers["x-other"] == "1"

    def test_extend_drops_default_handler(self):
        merged = create().extend({"handlers": [lambda options, next: next(options)]})
        assert default_handler not in merged.handlers
        assert len(merged.handlers) == 1

    def test_extend_mutable_defaults(self):
        merged = create().extend({"mutable_defaults": True})
        merged.defaults.headers["x-a"] = "1"
        assert merged.mutable_defaults

    def test_extend_rejects_other_values(self):
        with pytest.raises(OptionsError, match="Courier instance or an options mapping"):
            create().extend("https://example.com")

    def test_merge_options(self):
        merged = Courier.merge_options({"headers": {"a": "1"}}, {"headers": {"b": "2"}, "max_redirects": 3})
        assert merged.headers == {"a": "1", "b": "2"}
        assert merged.max_redirects == 3
