"""Pytest configuration and fixtures for idb_query tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from idb_query.adapters.outbound import MemoryStorageEngine
from idb_query.application import Database
from idb_query.infrastructure.config import Config, EngineConfig, StoreConfig
from idb_query.infrastructure.metrics import MetricsRegistry


@pytest.fixture
def test_config() -> Config:
    """Provide a test configuration with small B+Tree nodes."""
    return Config(
        store=StoreConfig(name="test_db", version=1),
        engine=EngineConfig(btree_max_keys=4),  # Force splits early
    )


@pytest.fixture
def metrics_registry() -> MetricsRegistry:
    """Provide a fresh metrics registry for each test."""
    # Use a separate registry to avoid conflicts between tests
    registry = CollectorRegistry(auto_describe=True)
    return MetricsRegistry(registry=registry)


@pytest.fixture
def engine() -> MemoryStorageEngine:
    """Provide an empty memory storage engine."""
    return MemoryStorageEngine(btree_max_keys=4)


@pytest.fixture
def schema() -> dict[str, Any]:
    """Provide a schema with a role index and seeded users."""
    return {
        "name": "test_db",
        "version": 1,
        "schemas": [
            {
                "name": "users",
                "options": {"keyPath": "id"},
                "indexes": [
                    {"name": "byRole", "keyPath": "role", "options": {"unique": False}},
                    {"name": "byEmail", "keyPath": "email", "options": {"unique": True}},
                    {"name": "byTag", "keyPath": "tags", "options": {"multiEntry": True}},
                ],
                "data": [
                    {"id": 1, "role": "admin", "name": "Ann", "email": "ann@example.com"},
                    {"id": 2, "role": "user", "name": "Bob", "email": "bob@example.com"},
                    {"id": 3, "role": "admin", "name": "Cid", "email": "cid@example.com"},
                    {"id": 4, "role": "user", "name": "Dee", "tags": ["ops", "dev"]},
                    {"id": 5, "role": "admin", "name": "Eve", "tags": ["dev"]},
                ],
            },
            {"name": "events", "options": {"keyPath": "id", "autoIncrement": True}},
        ],
    }


@pytest_asyncio.fixture
async def database(
    schema: dict[str, Any],
    engine: MemoryStorageEngine,
    test_config: Config,
    metrics_registry: MetricsRegistry,
) -> AsyncGenerator[Database, None]:
    """Provide a connected, seeded database."""
    db = Database(schema, engine=engine, config=test_config, metrics=metrics_registry)
    await db.connect()
    yield db
    await db.close()


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
