"""Shared fixtures: isolated data directories and loopback-only channels."""

import asyncio

import pytest

from arbitra.config import ChannelSettings, StoreSettings, get_settings
from arbitra.services.storage import JsonFileRecordStore


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def run():
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run


@pytest.fixture
def store_settings(tmp_path):
    return StoreSettings(app_data_root=tmp_path, app_namespace="arbitra-test")


@pytest.fixture
def channel_settings():
    return ChannelSettings(
        host="127.0.0.1",
        oracle_port=0,
        message_port=0,
        origin_address="10.0.0.1",
        connect_timeout=5.0,
        connect_attempts=1,
    )


@pytest.fixture
def store(store_settings):
    return JsonFileRecordStore(store_settings)
