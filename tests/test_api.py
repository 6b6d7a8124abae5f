"""Tests for the FastAPI REST layer."""

from collections.abc import Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

import vaultrag.api.server as server_module
from vaultrag.api.server import app
from vaultrag.api.service import VaultRAGService
from vaultrag.core.exceptions import IndexingError, VectorBackendUnavailableError


@pytest.fixture
def api_service(settings, embedder, vector_store) -> VaultRAGService:
    return VaultRAGService(settings, embedding_provider=embedder, vector_store=vector_store)


@pytest.fixture
def client(monkeypatch, api_service) -> Iterator[TestClient]:
    """Client whose lifespan opens and closes the injected service."""
    monkeypatch.setattr(server_module, "_service", api_service)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def indexed(client, sample_vault):
    response = client.post("/index", json={"full": True})
    assert response.status_code == 200, response.text
    return sample_vault


class TestIndexing:
    def test_full_then_incremental(self, client, sample_vault):
        full = client.post("/index", json={"full": True})
        assert full.status_code == 200
        assert full.json()["mode"] == "full"
        assert full.json()["added"] == 4

        incremental = client.post("/index")
        assert incremental.json()["mode"] == "incremental"
        assert incremental.json()["unchanged"] == 4

    def test_cancel_when_idle(self, client):
        response = client.post("/index/cancel")
        assert response.json() == {"cancelled": False}

    def test_conflicting_pass_maps_to_409(self, client, api_service, monkeypatch):
        busy = AsyncMock(side_effect=IndexingError("An indexing pass is already running"))
        monkeypatch.setattr(api_service, "incremental_index", busy)

        response = client.post("/index")

        assert response.status_code == 409
        assert response.json() == {"detail": "An indexing pass is already running", "code": "UNKNOWN_ERROR"}

    def test_file_event_is_accepted(self, client, write_file):
        write_file("new.md", "Queued note.")

        response = client.post("/documents/events", json={"event": "changed", "path": "new.md"})

        assert response.status_code == 202
        assert response.json()["message"] == "Queued changed for new.md"

    def test_unknown_file_event_is_rejected(self, client):
        response = client.post("/documents/events", json={"event": "exploded", "path": "a.md"})
        assert response.status_code == 422


class TestQueries:
    def test_search(self, client, indexed):
        response = client.get("/search", params={"q": "engine", "top_k": 3})

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 3
        assert body["degraded"] is False
        assert {r["path"] for r in body["results"]} == {indexed["alpha"], indexed["beta"], indexed["gamma"]}

    def test_search_in_folder(self, client, indexed):
        response = client.get("/search", params={"q": "rocket", "mode": "inFolder", "scope": "projects"})
        assert [r["path"] for r in response.json()["results"]] == [indexed["gamma"]]

    def test_blank_query_maps_to_400(self, client, indexed):
        response = client.get("/search", params={"q": "   "})

        assert response.status_code == 400
        assert response.json()["code"] == "UNKNOWN_ERROR"

    @pytest.mark.parametrize("params", [{"q": "x", "mode": "everywhere"}, {"q": "x", "top_k": 0}, {}])
    def test_invalid_parameters(self, client, params):
        assert client.get("/search", params=params).status_code == 422

    def test_related(self, client, indexed):
        response = client.get("/related", params={"doc": indexed["alpha"], "limit": 2})

        assert response.status_code == 200
        assert {r["path"] for r in response.json()["results"]} == {indexed["beta"], indexed["gamma"]}

    def test_related_unknown_document(self, client, indexed):
        assert client.get("/related", params={"doc": "missing.md"}).status_code == 400

    def test_backlinks(self, client, indexed):
        response = client.get("/backlinks", params={"doc": indexed["gamma"]})
        assert response.json() == {"doc": indexed["gamma"], "backlinks": [indexed["beta"]]}

    def test_path(self, client, indexed):
        response = client.get("/path", params={"source": indexed["beta"], "target": indexed["gamma"]})

        assert response.status_code == 200
        first = response.json()["paths"][0]
        assert first["labels"] == [indexed["beta"], indexed["gamma"]]
        assert first["hops"] == 1

    def test_record_open(self, client, indexed):
        response = client.post("/documents/open", json={"path": indexed["alpha"]})

        assert response.status_code == 200
        assert response.json()["message"] == f"Recorded open of {indexed['alpha']}"


class TestMaintenance:
    def test_status_and_health(self, client, indexed):
        status = client.get("/status").json()
        assert status["indexed_docs"] == 4
        assert status["built_at"] is not None

        health = client.get("/health").json()
        assert health["ok"] is True

    def test_cleanup_orphans(self, client, indexed):
        assert client.post("/maintenance/cleanup-orphans").json() == {"found": 0, "deleted": 0}

    def test_clear(self, client, indexed):
        response = client.post("/clear")

        assert response.json()["documents_deleted"] == 4
        assert client.get("/status").json()["indexed_docs"] == 0

    def test_unavailable_backend_maps_to_503(self, client, api_service, monkeypatch):
        broken = AsyncMock(side_effect=VectorBackendUnavailableError("vector table 'chunks' does not exist"))
        monkeypatch.setattr(api_service, "status", broken)

        response = client.get("/status")

        assert response.status_code == 503
        assert response.json()["code"] == "VECTOR_BACKEND_NOT_LOADED"
