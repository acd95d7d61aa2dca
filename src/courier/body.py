"""Request body finalization.

:func:`finalize_body` inspects the normalized options once per attempt,
serializes ``json``/``form`` payloads, fills in ``content-type`` and
``content-length`` and returns a :class:`BodyPlan` telling the engine what to
upload and whether the writable side of the request stays open.
"""

from __future__ import annotations

import io
import json
import os
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from courier.errors import OptionsError
from courier.network.policy import METHODS_WITHOUT_BODY

__all__ = [
    "BodyPlan",
    "FormData",
    "finalize_body",
    "PAYLOAD_PROVIDED_MESSAGE",
    "CHUNK_SIZE",
]

CHUNK_SIZE = 64 * 1024

PAYLOAD_PROVIDED_MESSAGE = "The payload has been already provided"

_MULTIPART_URL = "http://multipart.invalid/"


class FormData:
    """A ``multipart/form-data`` payload for the ``body`` option.

    Parts keep the order they were appended in.

    Example:
        >>> form = FormData({"name": "value"})
        >>> form.append("upload", b"data", filename="data.bin")
    """

    def __init__(self, fields: Optional[Mapping[str, Any]] = None) -> None:
        self._parts: list[tuple[str, tuple[Any, ...]]] = []
        for name, value in (fields or {}).items():
            self.append(name, value)

    def append(
        self,
        name: str,
        value: Any,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> None:
        if filename is not None or content_type is not None or _is_file(value):
            self._parts.append((name, (filename, value, content_type)))
        else:
            self._parts.append((name, (None, _field_value(value))))

    def encode(self, content_type: Optional[str] = None) -> tuple[str, bytes]:
        """Return ``(content_type, payload)``; a boundary in ``content_type`` is reused."""
        boundary = _boundary_from(content_type)
        if not self._parts:
            boundary = boundary or os.urandom(16).hex().encode("ascii")
            return (
                f"multipart/form-data; boundary={boundary.decode('ascii')}",
                b"--" + boundary + b"--\r\n",
            )
        headers = {"content-type": content_type} if boundary is not None else None
        # Plain fields travel as file parts without a filename so every part
        # is encoded as multipart in append order.
        request = httpx.Request("POST", _MULTIPART_URL, files=self._parts, headers=headers)
        return request.headers["content-type"], request.read()


@dataclass
class BodyPlan:
    """What the engine uploads for one attempt.

    Attributes:
        payload: ``bytes``, a file object or an (async) iterable; ``None``
            when the options carry no payload.
        size: Upload size taken from ``content-length``, if any.
        cannot_have_body: The method forbids a payload.
    """

    payload: Any = None
    size: Optional[int] = None
    cannot_have_body: bool = False

    @property
    def is_empty(self) -> bool:
        return self.payload is None

    async def chunks(self) -> AsyncIterator[bytes]:
        payload = self.payload
        if payload is None:
            return
        if isinstance(payload, bytes):
            for offset in range(0, len(payload), CHUNK_SIZE):
                yield payload[offset : offset + CHUNK_SIZE]
        elif _is_file(payload):
            while True:
                chunk = payload.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield _to_bytes(chunk)
        elif hasattr(payload, "__aiter__"):
            async for chunk in payload:
                yield _to_bytes(chunk)
        else:
            for chunk in payload:
                yield _to_bytes(chunk)


def finalize_body(options: Any) -> BodyPlan:
    """Validate and serialize the payload of ``options``.

    ``options.headers`` is updated in place with ``content-type`` and
    ``content-length`` where they can be determined.

    Raises:
        OptionsError: For conflicting payload options, a payload on a
            method that cannot carry one, or an unsupported payload type.
    """
    method = options.method
    cannot_have_body = method in METHODS_WITHOUT_BODY and not (
        method == "GET" and options.allow_get_body
    )
    provided = [name for name in ("body", "json", "form") if getattr(options, name) is not None]
    if not provided:
        return BodyPlan(cannot_have_body=cannot_have_body)
    if len(provided) > 1:
        raise OptionsError("The `body`, `json` and `form` options are mutually exclusive", options)
    if cannot_have_body:
        raise OptionsError(f"The `{method}` method cannot be used with a body", options)

    headers = options.headers
    no_content_type = "content-type" not in headers

    if options.body is not None:
        payload = _coerce_body(options.body, headers)
    elif options.form is not None:
        form = options.form
        if not isinstance(form, Mapping):
            raise OptionsError("The `form` option must be a mapping", options)
        if no_content_type:
            headers["content-type"] = "application/x-www-form-urlencoded"
        try:
            payload = str(httpx.QueryParams(form)).encode("ascii")
        except TypeError as exc:
            raise OptionsError(f"The `form` option has an unsupported value: {exc}", options) from exc
    else:
        if no_content_type:
            headers["content-type"] = "application/json"
        try:
            payload = json.dumps(options.json, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise OptionsError(f"The `json` option is not serializable: {exc}", options) from exc

    size = _body_size(payload)
    if "content-length" not in headers and "transfer-encoding" not in headers and size is not None:
        headers["content-length"] = str(size)

    content_length = headers.get("content-length")
    body_size = int(content_length) if content_length and content_length.isdigit() else None
    return BodyPlan(payload=payload, size=body_size or None)


def _coerce_body(body: Any, headers: dict[str, str]) -> Any:
    if isinstance(body, FormData):
        content_type, payload = body.encode(headers.get("content-type"))
        if "content-type" not in headers or "boundary=" not in headers["content-type"]:
            headers["content-type"] = content_type
        return payload
    if isinstance(body, str):
        return body.encode("utf-8")
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    if _is_file(body) or hasattr(body, "__aiter__"):
        return body
    if hasattr(body, "__iter__") and not isinstance(body, Mapping):
        return body
    raise OptionsError(
        "The `body` option must be a string, bytes, a file object, an (async) iterable "
        f"of bytes or FormData, got {type(body).__name__}"
    )


def _boundary_from(content_type: Optional[str]) -> Optional[bytes]:
    if not content_type:
        return None
    for part in content_type.split(";"):
        key, _, value = part.strip().partition("=")
        if key.lower() == "boundary" and value:
            return value.strip('"').encode("ascii")
    return None


def _is_file(value: Any) -> bool:
    return callable(getattr(value, "read", None))


def _to_bytes(chunk: Any) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    return bytes(chunk)


def _body_size(payload: Any) -> Optional[int]:
    if isinstance(payload, bytes):
        return len(payload)
    if _is_file(payload):
        try:
            if not payload.seekable():
                return None
            current = payload.tell()
            end = payload.seek(0, io.SEEK_END)
            payload.seek(current)
        except (AttributeError, OSError, ValueError):
            return None
        return end - current
    return None


def _field_value(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)
