"""
Shared fixtures for the hookd test suite.
"""

import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry

from hookd.storage.retention_models import RetentionPolicy
from hookd.storage.sqlite_store import SQLiteRecordStore
from tests.utils.memory_store import InMemoryRecordStore

# Fixed reference time for runs: 2024-07-15 12:00 UTC
NOW = datetime(2024, 7, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def policy() -> RetentionPolicy:
    return RetentionPolicy()


@pytest.fixture
def memory_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def prometheus_registry() -> CollectorRegistry:
    """A fresh registry per test so metric names never collide."""
    return CollectorRegistry()


@pytest.fixture
def temp_dir():
    path = Path(tempfile.mkdtemp())
    yield path
    shutil.rmtree(path)


@pytest.fixture
def sqlite_store(temp_dir) -> SQLiteRecordStore:
    store = SQLiteRecordStore(str(temp_dir / "hookd.db"))
    store.initialize_schema()
    return store
