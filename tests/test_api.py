"""Tests for API endpoints."""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from argus.api.v1.endpoints.documents import get_document_service
from argus.core.exceptions import (
    DocumentNotFoundError,
    PipelineQueueFullError,
    UnknownCategoryError,
    UnknownModuleError,
    ValidationError,
)
from argus.core.pipeline_runtime import get_pipeline, get_worker_pool
from argus.main import app
from argus.schemas.api import DocumentResponse
from argus.services.pipeline.document_pipeline import BatchResult, PassResult

DOCUMENT_ID = uuid.uuid4()


@pytest.fixture
def worker_pool() -> MagicMock:
    pool = MagicMock()
    pool.submit.return_value = 1
    pool.queue_size = 0
    app.dependency_overrides[get_worker_pool] = lambda: pool
    return pool


@pytest.fixture
def pipeline() -> MagicMock:
    mock_pipeline = MagicMock()
    app.dependency_overrides[get_pipeline] = lambda: mock_pipeline
    return mock_pipeline


@pytest.fixture
def document_service() -> AsyncMock:
    service = AsyncMock()
    app.dependency_overrides[get_document_service] = lambda: service
    return service


def sample_document(**overrides) -> DocumentResponse:
    values = dict(
        id=DOCUMENT_ID,
        external_ref="file-abc",
        file_ref="file-abc",
        document_type="unclassified",
        is_active=True,
        needs_metadata=True,
        created_at=datetime(2024, 3, 5, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return DocumentResponse(**values)


class TestRootAndHealth:
    def test_root(self, test_client: TestClient) -> None:
        response = test_client.get("/")

        assert response.status_code == 200
        assert response.json()["health"] == "/api/v1/health"

    def test_health_reports_queue_size(self, test_client: TestClient, worker_pool, monkeypatch) -> None:
        """Health reflects the database check and the background queue.

        Args:
            test_client: FastAPI test client fixture
            worker_pool: Mocked worker pool fixture
            monkeypatch: pytest monkeypatch fixture
        """
        from argus.api.v1.endpoints import health

        monkeypatch.setattr(health.db_client, "health_check", AsyncMock(return_value={"status": "healthy"}))
        worker_pool.queue_size = 3

        response = test_client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["queue_size"] == 3

    def test_correlation_id_is_echoed(self, test_client: TestClient) -> None:
        response = test_client.get("/", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["X-Correlation-ID"] == "abc-123"


class TestDocumentEndpoints:
    """Document lifecycle endpoints."""

    def test_create_document_queues_first_pass(self, test_client: TestClient, document_service, worker_pool) -> None:
        document_service.create_document.return_value = sample_document()

        response = test_client.post("/api/v1/documents", json={"file_ref": "file-abc"})

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["queued"] is True
        assert data["document"]["id"] == str(DOCUMENT_ID)
        worker_pool.submit.assert_called_once_with(DOCUMENT_ID)

    def test_create_document_survives_full_queue(self, test_client: TestClient, document_service, worker_pool) -> None:
        document_service.create_document.return_value = sample_document()
        worker_pool.submit.side_effect = PipelineQueueFullError("full")

        response = test_client.post("/api/v1/documents", json={"file_ref": "file-abc"})

        assert response.status_code == 201
        assert response.json()["data"]["queued"] is False

    def test_create_document_without_pipeline(self, test_client: TestClient, document_service, worker_pool) -> None:
        document_service.create_document.return_value = sample_document()

        response = test_client.post("/api/v1/documents", json={"file_ref": "file-abc", "run_pipeline": False})

        assert response.status_code == 201
        worker_pool.submit.assert_not_called()

    def test_create_document_validation_error(self, test_client: TestClient, document_service, worker_pool) -> None:
        document_service.create_document.side_effect = ValidationError("Unknown document type: invoice")

        response = test_client.post("/api/v1/documents", json={"file_ref": "file-abc", "document_type": "invoice"})

        assert response.status_code == 400
        assert response.json()["detail"]["title"] == "Validation Error"

    def test_get_document_not_found(self, test_client: TestClient, document_service) -> None:
        document_service.get_document.side_effect = DocumentNotFoundError("missing")

        response = test_client.get(f"/api/v1/documents/{DOCUMENT_ID}")

        assert response.status_code == 404
        assert response.json()["detail"]["status"] == 404

    def test_change_document_type(self, test_client: TestClient, document_service) -> None:
        document_service.change_document_type.return_value = sample_document(document_type="lab_result")

        response = test_client.patch(f"/api/v1/documents/{DOCUMENT_ID}/type", json={"document_type": "lab_result"})

        assert response.status_code == 200
        assert response.json()["data"]["document_type"] == "lab_result"
        document_service.change_document_type.assert_awaited_once_with(DOCUMENT_ID, "lab_result")

    def test_soft_and_hard_delete(self, test_client: TestClient, document_service) -> None:
        document_service.soft_delete.return_value = sample_document(is_active=False)
        document_service.hard_delete.return_value = True

        soft = test_client.delete(f"/api/v1/documents/{DOCUMENT_ID}")
        hard = test_client.delete(f"/api/v1/documents/{DOCUMENT_ID}?hard=true")

        assert soft.json()["data"]["deleted"] is False
        assert soft.json()["data"]["document"]["is_active"] is False
        assert hard.json()["data"] == {"document_id": str(DOCUMENT_ID), "deleted": True}

    def test_invalid_document_id(self, test_client: TestClient, document_service) -> None:
        response = test_client.get("/api/v1/documents/not-a-uuid")

        assert response.status_code == 422


class TestPipelineEndpoints:
    """Run, rerun and rebuild endpoints."""

    def test_run_queues_pass(self, test_client: TestClient, pipeline, worker_pool) -> None:
        worker_pool.submit.return_value = 4

        response = test_client.post(f"/api/v1/pipeline/documents/{DOCUMENT_ID}/run")

        assert response.status_code == 202
        assert response.json()["data"] == {"document_id": str(DOCUMENT_ID), "queued": True, "queue_size": 4}
        pipeline.run_document.assert_not_called()

    def test_run_with_full_queue_returns_503(self, test_client: TestClient, pipeline, worker_pool) -> None:
        worker_pool.submit.side_effect = PipelineQueueFullError("Pipeline queue is full (100)")

        response = test_client.post(f"/api/v1/pipeline/documents/{DOCUMENT_ID}/run")

        assert response.status_code == 503
        assert response.json()["detail"]["title"] == "Pipeline Queue Full"

    def test_run_and_wait(self, test_client: TestClient, pipeline, worker_pool) -> None:
        pipeline.run_document = AsyncMock(return_value=PassResult(document_id=DOCUMENT_ID, status="completed"))

        response = test_client.post(f"/api/v1/pipeline/documents/{DOCUMENT_ID}/run?wait=true")

        assert response.status_code == 202
        assert response.json()["data"]["status"] == "completed"
        worker_pool.submit.assert_not_called()

    def test_run_and_wait_missing_document(self, test_client: TestClient, pipeline, worker_pool) -> None:
        pipeline.run_document = AsyncMock(side_effect=DocumentNotFoundError("missing"))

        response = test_client.post(f"/api/v1/pipeline/documents/{DOCUMENT_ID}/run?wait=true")

        assert response.status_code == 404

    def test_rerun_unknown_module(self, test_client: TestClient, pipeline) -> None:
        pipeline.rerun_module = AsyncMock(side_effect=UnknownModuleError("Unknown extraction module: billing"))

        response = test_client.post(f"/api/v1/pipeline/documents/{DOCUMENT_ID}/modules/billing/rerun")

        assert response.status_code == 400
        assert response.json()["detail"]["title"] == "Unknown Module"

    def test_rebuild_module_defaults(self, test_client: TestClient, pipeline) -> None:
        pipeline.rebuild_module = AsyncMock(return_value=BatchResult(requested=2, succeeded=["a", "b"]))

        response = test_client.post("/api/v1/pipeline/modules/vitals/rebuild")

        assert response.status_code == 200
        assert response.json()["data"]["requested"] == 2
        pipeline.rebuild_module.assert_awaited_once_with("vitals", scope="missing", limit=None)

    def test_rebuild_module_rejects_bad_scope(self, test_client: TestClient, pipeline) -> None:
        response = test_client.post("/api/v1/pipeline/modules/vitals/rebuild", json={"scope": "everything"})

        assert response.status_code == 422

    def test_rebuild_taxonomy_for_category(self, test_client: TestClient, pipeline) -> None:
        pipeline.rebuild_taxonomy = AsyncMock(return_value=BatchResult(requested=1, succeeded=["a"]))

        response = test_client.post("/api/v1/pipeline/taxonomy/rebuild", json={"category_id": "vitals", "limit": 10})

        assert response.status_code == 200
        pipeline.rebuild_taxonomy.assert_awaited_once_with(category_id="vitals", limit=10)

    def test_extract_unknown_category(self, test_client: TestClient, pipeline) -> None:
        pipeline.extract_taxonomy_category = AsyncMock(side_effect=UnknownCategoryError("Unknown taxonomy category: x"))

        response = test_client.post("/api/v1/pipeline/taxonomy/x/extract")

        assert response.status_code == 400
        assert response.json()["detail"]["title"] == "Unknown Category"
