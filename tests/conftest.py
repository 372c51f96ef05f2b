"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from companion.config import reset_config
from companion.config.secrets import clear_secret_cache
from companion.core.tokens import invalidate_cache

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def _reset_caches(monkeypatch):
    """Keep config, secret and token caches from leaking between tests."""
    monkeypatch.delenv("COMPANION_LOG", raising=False)
    monkeypatch.delenv("COMPANION_MODEL", raising=False)
    reset_config()
    clear_secret_cache()
    invalidate_cache()
    yield
    reset_config()
    clear_secret_cache()
