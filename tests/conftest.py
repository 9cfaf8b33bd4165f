"""Pytest configuration and fixtures for cosync tests."""

import pytest
from cosync.config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    """Re-read the environment for every test.

    Settings are cached per process; tests that monkeypatch ``COSYNC_*``
    variables would otherwise see whatever the first test loaded.
    """
    get_settings.cache_clear()

    yield

    get_settings.cache_clear()
