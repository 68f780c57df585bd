"""
Pytest fixtures for feedpost tests.
"""

import os
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from feedpost.config import RssConfig, state
from feedpost.database import Database
from feedpost.diagnostics import IngestionDiagnostics
from feedpost.metrics import RssMetrics
from feedpost.server import app
from feedpost.services import RefreshLocks

from .helpers import FakeFetcher


@pytest.fixture
def temp_db_path():
    """Create a temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        yield Path(f.name)
    # Cleanup
    if os.path.exists(f.name):
        os.unlink(f.name)


@pytest.fixture
def test_db(temp_db_path):
    """Create a test database instance."""
    db = Database(temp_db_path)
    yield db


@pytest.fixture
def metrics():
    return RssMetrics()


@pytest.fixture
def diagnostics():
    return IngestionDiagnostics()


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def client(temp_db_path, fake_fetcher):
    """Create a test client with isolated database, metrics and fetcher."""
    # Store original state
    original = {
        name: getattr(state, name)
        for name in ("db", "rss", "fetcher", "metrics", "diagnostics", "refresh_locks")
    }

    # Set up test state with fresh instances
    state.db = Database(temp_db_path)
    state.rss = RssConfig()
    state.fetcher = fake_fetcher
    state.metrics = RssMetrics()
    state.diagnostics = IngestionDiagnostics()
    state.refresh_locks = RefreshLocks()

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    # Restore original state
    for name, value in original.items():
        setattr(state, name, value)
