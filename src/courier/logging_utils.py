"""
Structured Logging Utilities

Helpers shared by the engine and the network layer for emitting log records
that are safe to ship: URL redaction, header and payload masking, a JSON line
formatter, and :func:`setup_logging` which attaches a console handler to the
``courier`` logger according to :class:`~courier.settings.CourierSettings`.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional
from urllib.parse import urlsplit, urlunsplit

if TYPE_CHECKING:  # pragma: no cover
    from courier.settings import CourierSettings

SENSITIVE_KEYS = frozenset(
    {"authorization", "proxy-authorization", "cookie", "set-cookie", "api_key", "apikey", "token", "secret", "password"}
)

MASK = "***masked***"


def mask_sensitive_data(payload: Mapping[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging.

    Examples:
        >>> mask_sensitive_data({"token": "secret", "status": "ok"})
        {'token': '***masked***', 'status': 'ok'}
    """
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        if key.lower() in SENSITIVE_KEYS:
            masked[key] = MASK
        elif isinstance(value, str) and "apikey" in value.lower():
            masked[key] = MASK
        else:
            masked[key] = value
    return masked


def mask_sensitive_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy of ``headers`` with credential-bearing values masked."""
    return {key: (MASK if key.lower() in SENSITIVE_KEYS else value) for key, value in headers.items()}


def redact_url(url: Any) -> str:
    """Strip userinfo, query and fragment, keeping scheme + host + path.

    Examples:
        >>> redact_url("https://user:pw@example.com/a?token=1")
        'https://example.com/a'
    """
    try:
        parsed = urlsplit(str(url))
        netloc = parsed.netloc.rsplit("@", 1)[-1]
        return urlunsplit((parsed.scheme, netloc, parsed.path, "", ""))
    except ValueError:
        return "[URL_REDACTION_FAILED]"


class JSONFormatter(logging.Formatter):
    """Formatter emitting JSON structured logs.

    Any attribute passed through ``extra={...}`` that is not a standard
    ``LogRecord`` attribute ends up in the JSON object.

    Examples:
        >>> formatter = JSONFormatter()
        >>> isinstance(formatter.format(logging.makeLogRecord({'msg': 'test'})), str)
        True
    """

    _RESERVED = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        log_obj: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in self._RESERVED and not key.startswith("_"):
                log_obj[key] = value
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj), default=str)


def setup_logging(settings: Optional["CourierSettings"] = None) -> logging.Logger:
    """Configure the ``courier`` logger.

    Handlers installed by a previous call are removed first, so calling this
    repeatedly (tests, reconfiguration) never duplicates output.

    Args:
        settings: Settings providing ``log_level`` and ``log_json``;
            defaults to :func:`courier.settings.get_settings`.

    Returns:
        The configured ``courier`` logger.
    """
    if settings is None:
        from courier.settings import get_settings

        settings = get_settings()

    logger = logging.getLogger("courier")
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_courier_managed", False):
            logger.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    if settings.log_json:
        stream_handler.setFormatter(JSONFormatter())
    else:
        stream_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    stream_handler._courier_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)
    logger.propagate = True
    return logger


__all__ = [
    "JSONFormatter",
    "mask_sensitive_data",
    "mask_sensitive_headers",
    "redact_url",
    "setup_logging",
]
