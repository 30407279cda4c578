"""Pytest configuration and shared fixtures."""

import asyncio

import pytest

from crawlstore.config import PoolSettings, StoreParameters
from crawlstore.record import CrawlRecord
from crawlstore.store import SQLiteStore


@pytest.fixture
def data_dir(tmp_path):
    """Directory holding the table files for one test."""
    return str(tmp_path / "data")


@pytest.fixture
def store(data_dir):
    return SQLiteStore(data_dir, timeout=30.0)


@pytest.fixture
def params():
    return StoreParameters()


@pytest.fixture
def pool_settings():
    return PoolSettings(max_active=4, max_wait_ms=2000)


@pytest.fixture
def run():
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run


@pytest.fixture
def make_record():
    def _make(url="http://a.com/x", content=b"hello", **kwargs):
        kwargs.setdefault("fetch_status", 200)
        kwargs.setdefault("ip", "10.0.0.1")
        return CrawlRecord(url=url, content=content, **kwargs)

    return _make
