"""
Pytest configuration and shared fixtures for the dashboard tests.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from bizdash.context import RequestContext
from bizdash.sources import FixtureSyncSource
from bizdash.storage import InMemoryMetricsStore, MetricsStore, SQLiteMetricsStore


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    """Return a path for a fresh SQLite database."""
    return tmp_path / "test_metrics.db"


@pytest_asyncio.fixture(params=["sqlite", "memory"])
async def store(
    request: pytest.FixtureRequest, temp_db_path: Path
) -> AsyncGenerator[MetricsStore, None]:
    """Yield an initialized store; every test using it runs on both backends."""
    if request.param == "sqlite":
        metrics_store: MetricsStore = SQLiteMetricsStore(temp_db_path)
    else:
        metrics_store = InMemoryMetricsStore()
    await metrics_store.initialize()
    yield metrics_store
    await metrics_store.close()


@pytest.fixture
def fixture_source() -> FixtureSyncSource:
    """Return the default fixture-backed sync source."""
    return FixtureSyncSource()


@pytest.fixture
def ctx() -> RequestContext:
    """Create a request context for handler tests."""
    return RequestContext(method="test.method", request_id="test-req-1")
