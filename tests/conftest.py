# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for the courier suite",
#   "sections": [
#     {"id": "isolate-global-state", "name": "_isolate_global_state", "anchor": "fixture-isolate-global-state", "kind": "fixture"},
#     {"id": "fast-retry", "name": "fast_retry", "anchor": "fixture-fast-retry", "kind": "fixture"}
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Shared fixtures: recording transports (``tests.fixtures.http_mocking``),
isolation of the cached settings and pooled HTTP clients, and a retry policy
that keeps backoff in the millisecond range.
"""

from __future__ import annotations

from typing import Any, Generator

import pytest
from hypothesis import settings

from courier.network.client import reset_http_clients
from courier.settings import reset_settings

from tests.fixtures.http_mocking import (  # noqa: F401
    http_mock,
    mock_server,
)

settings.register_profile("courier", max_examples=50, deadline=None)
settings.load_profile("courier")


@pytest.fixture(autouse=True)
def _isolate_global_state() -> Generator[None, None, None]:
    """Drop cached settings and pooled clients around every test."""
    reset_settings()
    reset_http_clients()
    yield
    reset_settings()
    reset_http_clients()


def _fast_delay(info: Any) -> float:
    return 0.01 if info.computed_value else 0


@pytest.fixture
def fast_retry() -> dict[str, Any]:
    """Retry options honouring the default policy with a 10ms backoff."""
    return {"calculate_delay": _fast_delay}
