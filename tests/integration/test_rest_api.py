"""Integration tests for the REST API."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from idb_query.adapters.inbound import create_app
from idb_query.adapters.outbound import MemoryStorageEngine
from idb_query.application import Database
from idb_query.infrastructure.config import Config
from idb_query.infrastructure.metrics import MetricsRegistry


@pytest.fixture
def client(
    schema: dict[str, Any],
    engine: MemoryStorageEngine,
    test_config: Config,
    metrics_registry: MetricsRegistry,
) -> Generator[TestClient, None, None]:
    """Serve a seeded database through a test client."""
    db = Database(schema, engine, test_config, metrics_registry)
    with TestClient(create_app(db)) as test_client:
        yield test_client


class TestRestApi:
    """Test cases for the REST API."""

    @pytest.mark.integration
    def test_health(self, client: TestClient) -> None:
        """Test the health check endpoint."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.integration
    def test_stats(self, client: TestClient) -> None:
        """Test the statistics endpoint."""
        body = client.get("/stats").json()

        assert body["database"] == "test_db"
        assert body["collections"] == ["events", "users"]
        assert body["engine"]["active_transactions"] == 0

    @pytest.mark.integration
    def test_select(self, client: TestClient) -> None:
        """Select filters and limits records."""
        response = client.post(
            "/collections/users/select", json={"where": {"role": "admin"}, "limit": 2}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 2
        assert [record["id"] for record in body["records"]] == [1, 3]

    @pytest.mark.integration
    def test_select_range(self, client: TestClient) -> None:
        """Select accepts range bounds."""
        response = client.post(
            "/collections/users/select", json={"where": {"range": {"start": 2, "end": 3}}}
        )
        assert [record["id"] for record in response.json()["records"]] == [2, 3]

    @pytest.mark.integration
    def test_select_invalid_limit(self, client: TestClient) -> None:
        """A limit below 1 is rejected."""
        response = client.post("/collections/users/select", json={"limit": 0})
        assert response.status_code == 422

    @pytest.mark.integration
    def test_insert_and_count(self, client: TestClient) -> None:
        """Insert accepts the 'set' alias and a batch."""
        response = client.post(
            "/collections/users/insert", json={"set": [{"id": 6}, {"id": 7}]}
        )

        assert response.status_code == 200
        assert response.json()["count"] == 2
        assert client.get("/collections/users/count").json() == {"count": 7}
        assert client.get("/collections/users/last").json() == {"key": 7}

    @pytest.mark.integration
    def test_insert_conflict(self, client: TestClient) -> None:
        """A duplicate key maps to 409 and writes nothing."""
        response = client.post(
            "/collections/users/insert", json={"records": [{"id": 8}, {"id": 1}]}
        )

        assert response.status_code == 409
        assert client.get("/collections/users/count").json() == {"count": 5}

    @pytest.mark.integration
    def test_insert_unsupported_payload(self, client: TestClient) -> None:
        """A payload that is not a record maps to 422."""
        response = client.post("/collections/users/insert", json={"set": "text"})
        assert response.status_code == 422

    @pytest.mark.integration
    def test_update_merge(self, client: TestClient) -> None:
        """Update merges when asked to."""
        response = client.post(
            "/collections/users/update",
            json={"where": {"id": 2}, "set": {"name": "Robert"}, "merge": True},
        )

        body = response.json()
        assert body["updated"] is True
        assert body["record"]["name"] == "Robert"
        assert body["record"]["role"] == "user"

    @pytest.mark.integration
    def test_update_without_key(self, client: TestClient) -> None:
        """An update naming no primary key writes nothing."""
        response = client.post(
            "/collections/users/update", json={"where": {"role": "admin"}, "set": {"x": 1}}
        )
        assert response.json() == {"updated": False, "record": None}

    @pytest.mark.integration
    def test_delete(self, client: TestClient) -> None:
        """Delete reports what happened."""
        first = client.post("/collections/users/delete", json={"where": {"id": 1}})
        again = client.post("/collections/users/delete", json={"where": {"id": 1}})
        no_key = client.post("/collections/users/delete", json={"where": {"role": "x"}})

        assert first.json() == {"deleted": True}
        assert again.json() == {"deleted": False}
        assert no_key.json() == {"deleted": None}

    @pytest.mark.integration
    def test_unknown_collection(self, client: TestClient) -> None:
        """An undeclared collection maps to 404."""
        response = client.get("/collections/ghosts/count")
        assert response.status_code == 404

    @pytest.mark.integration
    def test_bad_range(self, client: TestClient) -> None:
        """An inverted range maps to 400."""
        response = client.post(
            "/collections/users/select", json={"where": {"range": {"start": 3, "end": 1}}}
        )
        assert response.status_code == 400
