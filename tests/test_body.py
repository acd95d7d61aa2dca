"""Tests for request body finalization and multipart payloads."""

import io
import itertools
import json

import pytest
from hypothesis import given
from hypothesis import strategies as st

from courier.body import CHUNK_SIZE, BodyPlan, FormData, finalize_body
from courier.errors import OptionsError
from courier.options import normalize_options

PAYLOADS = {"body": "text", "json": {"a": 1}, "form": {"a": "1"}}
PAYLOAD_COMBINATIONS = [
    combination
    for size in (2, 3)
    for combination in itertools.combinations(PAYLOADS, size)
]


def post(**options):
    return normalize_options("https://example.com/upload", {"method": "POST", **options})


class TestPayloadTypes:
    def test_json_payload(self):
        options = post(json={"name": "courier", "tags": [1, 2]})
        plan = finalize_body(options)
        assert plan.payload == b'{"name":"courier","tags":[1,2]}'
        assert options.headers["content-type"] == "application/json"
        assert options.headers["content-length"] == str(len(plan.payload))

    def test_form_payload(self):
        options = post(form={"a": "1", "b": "two"})
        plan = finalize_body(options)
        assert plan.payload == b"a=1&b=two"
        assert options.headers["content-type"] == "application/x-www-form-urlencoded"

    def test_string_body_length_counts_bytes(self):
        options = post(body="héllo")
        plan = finalize_body(options)
        assert plan.payload == "héllo".encode("utf-8")
        assert options.headers["content-length"] == "6"
        assert plan.size == 6

    def test_explicit_content_type_kept(self):
        options = post(json=[1], headers={"content-type": "application/vnd.api+json"})
        finalize_body(options)
        assert options.headers["content-type"] == "application/vnd.api+json"

    def test_seekable_file_has_size(self):
        options = post(body=io.BytesIO(b"abcdef"))
        plan = finalize_body(options)
        assert options.headers["content-length"] == "6"
        assert plan.size == 6

    def test_iterable_body_has_no_size(self):
        options = post(body=iter([b"a", b"b"]))
        plan = finalize_body(options)
        assert "content-length" not in options.headers
        assert plan.size is None

    def test_transfer_encoding_suppresses_length(self):
        options = post(body=b"abc", headers={"transfer-encoding": "chunked"})
        finalize_body(options)
        assert "content-length" not in options.headers

    def test_existing_content_length_kept(self):
        options = post(body=b"abc", headers={"content-length": "3"})
        plan = finalize_body(options)
        assert options.headers["content-length"] == "3"
        assert plan.size == 3


class TestFormData:
    def test_multipart_content_type(self):
        form = FormData({"name": "courier"})
        form.append("upload", b"binary", filename="data.bin", content_type="application/octet-stream")
        options = post(body=form)
        plan = finalize_body(options)

        content_type = options.headers["content-type"]
        assert content_type.startswith("multipart/form-data; boundary=")
        assert b'name="name"' in plan.payload
        assert b'filename="data.bin"' in plan.payload
        assert b"binary" in plan.payload
        assert options.headers["content-length"] == str(len(plan.payload))

    def test_boundary_from_header_is_reused(self):
        options = post(
            body=FormData({"a": "1"}),
            headers={"content-type": "multipart/form-data; boundary=courier-boundary"},
        )
        plan = finalize_body(options)
        assert options.headers["content-type"] == "multipart/form-data; boundary=courier-boundary"
        assert plan.payload.startswith(b"--courier-boundary")

    def test_fields_only_form_is_multipart(self):
        options = post(body=FormData({"a": "1", "b": 2, "flag": True}))
        plan = finalize_body(options)

        assert options.headers["content-type"].startswith("multipart/form-data; boundary=")
        assert b'name="a"\r\n\r\n1\r\n' in plan.payload
        assert b'name="b"\r\n\r\n2\r\n' in plan.payload
        assert b'name="flag"\r\n\r\ntrue\r\n' in plan.payload
        assert b"filename=" not in plan.payload

    def test_parts_keep_append_order(self):
        form = FormData()
        form.append("upload", b"x", filename="x.txt")
        form.append("note", "after the file")
        plan = finalize_body(post(body=form))

        assert plan.payload.index(b'name="upload"') < plan.payload.index(b'name="note"')

    def test_empty_form(self):
        options = post(body=FormData())
        plan = finalize_body(options)

        boundary = options.headers["content-type"].split("boundary=", 1)[1]
        assert plan.payload == f"--{boundary}--\r\n".encode("ascii")


class TestValidation:
    def test_no_payload_keeps_upload_open(self):
        plan = finalize_body(post())
        assert plan.is_empty
        assert not plan.cannot_have_body

    def test_get_without_payload_cannot_have_body(self):
        plan = finalize_body(normalize_options("https://example.com"))
        assert plan.cannot_have_body

    @pytest.mark.parametrize("method", ["GET", "HEAD"])
    def test_payload_on_bodyless_method_rejected(self, method):
        options = normalize_options("https://example.com", {"method": method, "body": "x"})
        with pytest.raises(OptionsError, match=f"The `{method}` method cannot be used with a body"):
            finalize_body(options)

    def test_allow_get_body(self):
        options = normalize_options("https://example.com", {"body": "x", "allow_get_body": True})
        assert finalize_body(options).payload == b"x"

    def test_form_must_be_mapping(self):
        with pytest.raises(OptionsError, match="mapping"):
            finalize_body(post(form=[("a", "1")]))

    @pytest.mark.parametrize("body", [123, {"a": 1}, 1.5])
    def test_unsupported_body_rejected(self, body):
        with pytest.raises(OptionsError, match="body"):
            finalize_body(post(body=body))

    def test_unserializable_json_rejected(self):
        with pytest.raises(OptionsError, match="json"):
            finalize_body(post(json=object()))


@given(combination=st.sampled_from(PAYLOAD_COMBINATIONS))
def test_payload_options_are_mutually_exclusive(combination):
    options = post(**{name: PAYLOADS[name] for name in combination})
    with pytest.raises(OptionsError, match="mutually exclusive"):
        finalize_body(options)


class TestChunks:
    @pytest.mark.asyncio
    async def test_bytes_split_into_chunks(self):
        plan = BodyPlan(payload=b"x" * (CHUNK_SIZE + 1))
        chunks = [chunk async for chunk in plan.chunks()]
        assert [len(chunk) for chunk in chunks] == [CHUNK_SIZE, 1]

    @pytest.mark.asyncio
    async def test_async_iterables_are_encoded(self):
        async def source():
            yield "a"
            yield b"b"

        plan = BodyPlan(payload=source())
        assert [chunk async for chunk in plan.chunks()] == [b"a", b"b"]

    @pytest.mark.asyncio
    async def test_file_objects_are_read(self):
        plan = BodyPlan(payload=io.BytesIO(json.dumps({"a": 1}).encode("utf-8")))
        assert b"".join([chunk async for chunk in plan.chunks()]) == b'{"a": 1}'
