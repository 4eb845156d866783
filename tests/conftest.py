"""
tests/conftest.py -- Shared test fixtures for linkshelf integration tests.

This module provides:
  - make_settings(): Settings with a known admin secret and a tmp catalog path
  - _patch_lifespan(): wires isolated components into app.state, bypassing real startup
  - client_factory: builds a TestClient for custom Settings overrides
  - api_client: (client, app) with default test settings

Design: every test gets fresh components. The rate limiter's suspicious-IP
flags and the audit ring buffer would otherwise leak between tests -- one
test tripping the write limit would make every later mutation return 429.
The slowapi login limiter is module-level, so it is reset after each test.

The DEBUG env var must be set before any api/ import so get_settings() at
import time auto-generates SECRET_KEY instead of raising ValueError.
"""

from __future__ import annotations

import asyncio
import copy
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from pathlib import Path

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, attach_components
from catalog.store import CatalogStore
from core.config import Settings

TEST_SECRET = "correct-horse-battery-staple"
TEST_SECRET_KEY = "test-secret-key-0123456789abcdef0123456789"
ADMIN_HEADERS = {"Authorization": f"Bearer {TEST_SECRET}"}

SAMPLE_CATALOG = {
    "categories": ["Monitoring", "Docs"],
    "apps": [
        {
            "name": "Grafana",
            "href": "https://grafana.example.com",
            "category": "Monitoring",
            "icon": "📈",
            "description": "Dashboards for everything",
            "tags": ["metrics", "dashboards"],
        },
        {
            "name": "Handbook",
            "href": "docs.example.com/handbook",
            "category": "Docs",
            "icon": "/images/handbook.png",
            "description": "",
            "tags": [],
        },
    ],
}


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "debug": True,
        "admin_secret": TEST_SECRET,
        "secret_key": TEST_SECRET_KEY,
        "catalog_file_path": str(tmp_path / "data" / "catalog.json"),
    }
    values.update(overrides)
    return Settings(**values)


def _patch_lifespan(settings: Settings, store: CatalogStore):
    """Return an async context manager that replaces the real lifespan.

    The sweep_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_components(app, settings, catalog_store=store)
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Function-scoped fixtures -- one TestClient per test for isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def client_factory(tmp_path: Path) -> Generator[Callable[..., TestClient], None, None]:
    """Yield a factory: client_factory(**settings_overrides) -> started TestClient.

    The catalog store has no fallback paths so a catalog in the working
    directory can never leak into a test.
    """
    started: list[TestClient] = []

    def _make(**overrides) -> TestClient:
        settings = make_settings(tmp_path, **overrides)
        store = CatalogStore(settings.catalog_path)
        app.router.lifespan_context = _patch_lifespan(settings, store)
        client = TestClient(app, raise_server_exceptions=True)
        client.__enter__()
        started.append(client)
        return client

    yield _make

    for client in started:
        client.__exit__(None, None, None)
    limiter.reset()


@pytest.fixture
def api_client(client_factory) -> tuple[TestClient, object]:
    """Yield (client, app) with default test settings and an empty catalog."""
    return client_factory(), app


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return dict(ADMIN_HEADERS)


@pytest.fixture
def sample_catalog() -> dict:
    return copy.deepcopy(SAMPLE_CATALOG)


@pytest.fixture
def settings_factory(tmp_path: Path) -> Callable[..., Settings]:
    """settings_factory(**overrides) -> Settings sharing this test's tmp_path."""

    def _make(**overrides) -> Settings:
        return make_settings(tmp_path, **overrides)

    return _make
