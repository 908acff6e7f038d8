"""Shared test fixtures."""

from __future__ import annotations

import pytest
from sse_starlette.sse import AppStatus


@pytest.fixture(autouse=True)
def _reset_sse_app_status():
    # sse-starlette keeps a module-level exit event bound to the first event loop
    # that used it; every TestClient runs its own loop.
    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None
