# === NAVMAP v1 ===
# {
#   "module": "courier.settings",
#   "purpose": "Environment-driven defaults for the default courier instance",
#   "sections": [
#     {"id": "courier-settings", "name": "CourierSettings", "anchor": "class-couriersettings", "kind": "class"},
#     {"id": "get-settings", "name": "get_settings", "anchor": "function-get-settings", "kind": "function"},
#     {"id": "build-default-options", "name": "build_default_options", "anchor": "function-build-default-options", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Environment-driven defaults.

:class:`CourierSettings` reads ``COURIER_*`` environment variables (case
insensitive).  :func:`build_default_options` turns them into the options
mapping the default instance is created from, so ``COURIER_RETRY_LIMIT=5``
changes the retry limit of :data:`courier.courier` without code changes.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from courier.network.policy import MAX_REDIRECTS, PROJECT_URL, RETRY_LIMIT, USER_AGENT_TEMPLATE

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

_settings: Optional["CourierSettings"] = None
_settings_lock = threading.Lock()


class CourierSettings(BaseSettings):
    """Process-wide defaults sourced from ``COURIER_*`` environment variables."""

    user_agent: str = Field(
        default=USER_AGENT_TEMPLATE.format(version=__version__, project_url=PROJECT_URL),
        description="Default User-Agent header",
    )
    retry_limit: int = Field(default=RETRY_LIMIT, ge=0, description="Retries after the first attempt")
    max_redirects: int = Field(default=MAX_REDIRECTS, ge=0, description="Redirect chain ceiling")
    http2: bool = Field(default=False, description="Negotiate HTTP/2 on the default transport")
    decompress: bool = Field(default=True, description="Decode compressed response bodies")
    connect_timeout: Optional[float] = Field(default=None, gt=0, description="Connect timeout (s)")
    request_timeout: Optional[float] = Field(default=None, gt=0, description="Overall timeout (s)")
    log_level: str = Field(default="WARNING", description="Level for the courier logger")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    model_config = SettingsConfigDict(env_prefix="COURIER_", case_sensitive=False, extra="ignore")

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        """Normalise logging levels and ensure they match the supported set."""

        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"log_level must be one of {sorted(valid_levels)}")
        return upper


def get_settings() -> CourierSettings:
    """Return the cached settings, loading them from the environment once."""
    global _settings

    if _settings is not None:
        return _settings
    with _settings_lock:
        if _settings is None:
            _settings = CourierSettings()
            overrides = _settings.model_dump(exclude_defaults=True)
            if overrides:
                logger.info("Settings overridden from environment: %s", sorted(overrides), extra={"stage": "config"})
        return _settings


def reset_settings() -> None:
    """Forget the cached settings (primarily for tests)."""
    global _settings

    with _settings_lock:
        _settings = None


def build_default_options(settings: Optional[CourierSettings] = None) -> Dict[str, Any]:
    """Options mapping used to create the default instance."""
    settings = settings or get_settings()
    timeout: Dict[str, float] = {}
    if settings.connect_timeout is not None:
        timeout["connect"] = settings.connect_timeout
    if settings.request_timeout is not None:
        timeout["request"] = settings.request_timeout

    options: Dict[str, Any] = {
        "headers": {"user-agent": settings.user_agent},
        "retry": {"limit": settings.retry_limit},
        "max_redirects": settings.max_redirects,
        "http2": settings.http2,
        "decompress": settings.decompress,
    }
    if timeout:
        options["timeout"] = timeout
    return options


__all__ = ["CourierSettings", "get_settings", "reset_settings", "build_default_options"]
