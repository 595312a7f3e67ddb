"""Shared fixtures: fake WinCC backend, app context and FastMCP contexts."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from mcpWinCC.app.context import build_app_context, set_shared_context
from mcpWinCC.config import config_manager

from tests.helpers import FakeWinCC, make_config


@pytest.fixture(autouse=True)
def reset_process_state():
    """Each test starts without cached config or shared context."""
    config_manager._cached_config = None
    set_shared_context(None)
    yield
    config_manager._cached_config = None
    set_shared_context(None)


@pytest.fixture
def fake_wincc():
    return FakeWinCC()


@pytest.fixture
def app_ctx(fake_wincc):
    return build_app_context(make_config(), transport=fake_wincc)


@pytest.fixture
def mock_context(app_ctx):
    """Create mock FastMCP context."""
    ctx = MagicMock()
    ctx.info = AsyncMock()
    ctx.request_context.lifespan_context = app_ctx
    return ctx
