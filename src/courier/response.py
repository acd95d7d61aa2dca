"""Response objects handed to hooks, events and promise callers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Optional

import httpx

if TYPE_CHECKING:  # pragma: no cover
    from courier.engine import Request

__all__ = ["Progress", "Timings", "Response", "is_response_ok"]


@dataclass(frozen=True)
class Progress:
    """Transfer progress; ``total`` is ``None`` when the size is unknown."""

    percent: float
    transferred: int
    total: Optional[int] = None

    @classmethod
    def compute(cls, transferred: int, total: Optional[int]) -> "Progress":
        if total:
            percent = transferred / total
        elif total == transferred:
            percent = 1.0
        else:
            percent = 0.0
        return cls(percent=percent, transferred=transferred, total=total)


@dataclass
class Timings:
    """Monotonic timestamps (seconds) for the phases of one attempt.

    ``phases`` is filled in by :meth:`finish` with the duration of each
    phase in milliseconds.
    """

    start: float = field(default_factory=time.monotonic)
    socket: Optional[float] = None
    lookup: Optional[float] = None
    connect: Optional[float] = None
    secure_connect: Optional[float] = None
    upload: Optional[float] = None
    response: Optional[float] = None
    end: Optional[float] = None
    error: Optional[float] = None
    abort: Optional[float] = None
    phases: dict[str, Optional[float]] = field(default_factory=dict)

    def mark(self, name: str) -> None:
        setattr(self, name, time.monotonic())

    def finish(self) -> None:
        def span(first: Optional[float], second: Optional[float]) -> Optional[float]:
            if first is None or second is None:
                return None
            return round((second - first) * 1000, 3)

        self.phases = {
            "wait": span(self.start, self.socket),
            "dns": span(self.socket, self.lookup),
            "tcp": span(self.lookup or self.socket, self.connect),
            "tls": span(self.connect, self.secure_connect),
            "request": span(self.secure_connect or self.connect, self.upload),
            "first_byte": span(self.upload, self.response),
            "download": span(self.response, self.end),
            "total": span(self.start, self.end or self.error or self.abort),
        }


def is_response_ok(status_code: int, follow_redirect: bool = True) -> bool:
    """2xx (3xx too when redirects are disabled) or ``304``."""
    limit = 299 if follow_redirect else 399
    return 200 <= status_code <= limit or status_code == 304


class Response:
    """An HTTP response received by the engine.

    Wraps the ``httpx.Response`` (available as :attr:`raw`) and adds the
    request lifecycle metadata: the redirect chain, the originating engine,
    cache state, peer address, timings, retry count and, once buffered, the
    raw and parsed body.
    """

    def __init__(
        self,
        raw: httpx.Response,
        *,
        request: Optional["Request"] = None,
        url: Optional[httpx.URL] = None,
        request_url: Optional[httpx.URL] = None,
        redirect_urls: Optional[list[httpx.URL]] = None,
        is_from_cache: bool = False,
        ip: Optional[str] = None,
        timings: Optional[Timings] = None,
    ) -> None:
        self.raw = raw
        self.request = request
        self.url = url if url is not None else raw.request.url
        self.request_url = request_url if request_url is not None else self.url
        self.redirect_urls = list(redirect_urls or [])
        self.is_from_cache = is_from_cache
        self.ip = ip
        self.timings = timings
        self.retry_count = 0
        self.raw_body: Optional[bytes] = None
        self.body: Any = None

    @property
    def status_code(self) -> int:
        return self.raw.status_code

    @property
    def status_message(self) -> str:
        phrase = self.raw.reason_phrase
        if phrase:
            return phrase
        try:
            return HTTPStatus(self.status_code).phrase
        except ValueError:
            return ""

    @property
    def headers(self) -> httpx.Headers:
        return self.raw.headers

    @property
    def http_version(self) -> str:
        return self.raw.http_version

    @property
    def ok(self) -> bool:
        follow_redirect = True
        if self.request is not None and self.request.options is not None:
            follow_redirect = self.request.options.follow_redirect
        return is_response_ok(self.status_code, follow_redirect)

    @property
    def options(self) -> Any:
        return self.request.options if self.request is not None else None

    def __repr__(self) -> str:
        return f"<Response [{self.status_code} {self.status_message}] {self.url}>"
