"""HTTP surface tests using FastAPI's TestClient."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app import create_app
from config import Settings
from fakes import FakeDateParser, FakeEmbedder, FakeOCR
from models import ProcessingStatus
from services.capture_errors import OCRServiceError, PersistenceError
from services.temporal_extractor import TemporalExtractor


def _settings(tmp_path, environment="development"):
    return Settings(
        _env_file=None,
        db_path=tmp_path / "api.db",
        media_dir=tmp_path,
        environment=environment,
        embeddings_provider="none",
    )


def _client(tmp_path, db_manager, ocr=None, environment="development"):
    app = create_app(
        _settings(tmp_path, environment),
        db=db_manager,
        ocr=ocr or FakeOCR({"receipt.png": "Coffee receipt\nconsole.log('x')"}),
        embedder=FakeEmbedder(),
        temporal_extractor=TemporalExtractor(FakeDateParser()),
    )
    return TestClient(app)


@pytest.fixture
def client(tmp_path, db_manager):
    return _client(tmp_path, db_manager)


class TestProcessEndpoint:

    def test_success(self, client, store):
        capture = store.create_capture("user-1", media_url="receipt.png", note="Morning coffee")

        response = client.post("/api/captures/process", json={"captureId": capture.id, "userId": "user-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["captureId"] == capture.id
        assert data["status"] == "completed"
        assert data["extractedText"] == "Coffee receipt"
        assert data["hasEmbedding"] is True
        assert "temporalInfo" in data

    def test_already_completed(self, client, store):
        capture = store.create_capture("user-1", note="Morning coffee")
        client.post("/api/captures/process", json={"captureId": capture.id, "userId": "user-1"})

        response = client.post("/api/captures/process", json={"captureId": capture.id, "userId": "user-1"})

        assert response.status_code == 200
        assert response.json()["message"] == "Capture already processed"

    def test_in_progress(self, client, store):
        capture = store.create_capture("user-1", note="busy")
        store.begin_processing(capture.id, "user-1")

        response = client.post("/api/captures/process", json={"captureId": capture.id, "userId": "user-1"})

        assert response.status_code == 202
        assert response.json() == {
            "success": False,
            "captureId": capture.id,
            "message": "Capture is currently being processed",
            "status": "processing",
        }

    def test_not_found(self, client):
        response = client.post("/api/captures/process", json={"captureId": "missing", "userId": "user-1"})

        assert response.status_code == 404
        data = response.json()
        assert data["error"] == "Capture not found"
        assert data["captureId"] == "missing"

    @pytest.mark.parametrize("body,message", [
        ({"userId": "user-1"}, "Capture ID is required"),
        ({"captureId": "abc"}, "User ID is required"),
        ({}, "Capture ID is required"),
    ])
    def test_validation(self, client, body, message):
        response = client.post("/api/captures/process", json=body)
        assert response.status_code == 400
        assert response.json() == {"error": message}

    def test_accepts_snake_case_fields(self, client, store):
        capture = store.create_capture("user-1", note="snake")
        response = client.post("/api/captures/process", json={"capture_id": capture.id, "user_id": "user-1"})
        assert response.status_code == 200

    def test_processing_failure(self, tmp_path, db_manager, store):
        client = _client(tmp_path, db_manager, ocr=FakeOCR(error=OCRServiceError("OCR failed: tesseract crashed")))
        capture = store.create_capture("user-1", media_url="receipt.png")

        response = client.post("/api/captures/process", json={"captureId": capture.id, "userId": "user-1"})

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "Processing failed"
        assert "tesseract crashed" in data["details"]
        assert "stack" in data
        assert store.get_capture(capture.id, "user-1").processing_status == ProcessingStatus.FAILED

    def test_production_hides_stack(self, tmp_path, db_manager, store):
        client = _client(
            tmp_path,
            db_manager,
            ocr=FakeOCR(error=OCRServiceError("OCR failed: tesseract crashed")),
            environment="production",
        )
        capture = store.create_capture("user-1", media_url="receipt.png")

        response = client.post("/api/captures/process", json={"captureId": capture.id, "userId": "user-1"})

        assert response.status_code == 500
        assert "stack" not in response.json()


class TestProcessPendingEndpoint:

    def test_batch_summary(self, client, store):
        first = store.create_capture("user-1", media_url="receipt.png")
        second = store.create_capture("user-1", media_url="receipt.png")

        response = client.post("/api/captures/process-pending", json={"userId": "user-1"})

        assert response.status_code == 200
        data = response.json()
        assert (data["processed"], data["failed"], data["total"]) == (2, 0, 2)
        assert {item["captureId"] for item in data["results"]} == {first.id, second.id}

    def test_nothing_pending(self, client):
        response = client.post("/api/captures/process-pending", json={"userId": "user-1"})
        assert response.json()["message"] == "No pending captures to process"

    def test_requires_user(self, client):
        response = client.post("/api/captures/process-pending", json={})
        assert response.status_code == 400


class TestStatusEndpoint:

    def test_status(self, client, store):
        capture = store.create_capture("user-1", note="hello")
        response = client.get(f"/api/captures/{capture.id}/status", params={"userId": "user-1"})

        assert response.status_code == 200
        assert response.json()["status"] == "pending"

    def test_status_other_owner(self, client, store):
        capture = store.create_capture("user-1", note="hello")
        response = client.get(f"/api/captures/{capture.id}/status", params={"userId": "user-2"})
        assert response.status_code == 404

    def test_status_requires_user(self, client, store):
        capture = store.create_capture("user-1", note="hello")
        assert client.get(f"/api/captures/{capture.id}/status").status_code == 400


class TestSearchEndpoint:

    def _completed(self, client, store, note):
        capture = store.create_capture("user-1", note=note)
        client.post("/api/captures/process", json={"captureId": capture.id, "userId": "user-1"})
        return capture

    def test_hybrid_search(self, client, store):
        hit = self._completed(client, store, "Invoice from the plumber")
        self._completed(client, store, "Coffee with Sam")

        response = client.get("/api/search", params={"q": "invoice", "userId": "user-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["query"] == "invoice"
        assert data["type"] == "hybrid"
        assert data["count"] == 1
        assert data["results"][0]["id"] == hit.id
        assert data["results"][0]["searchType"] == "semantic"
        assert "embedding" not in data["results"][0]

    def test_fulltext_search(self, client, store):
        hit = self._completed(client, store, "Travel itinerary")
        response = client.get("/api/search", params={"q": "itinerary", "userId": "user-1", "type": "fulltext"})

        data = response.json()
        assert data["count"] == 1
        assert data["results"][0]["id"] == hit.id

    def test_limit_split(self, client):
        service = client.app.state.search_service
        with patch.object(service, "hybrid_search", new=AsyncMock(return_value=[])) as mock_hybrid:
            client.get("/api/search", params={"q": "x", "userId": "user-1", "limit": 7, "threshold": 0.5})

        mock_hybrid.assert_awaited_once_with(
            "x", "user-1", semantic_limit=4, full_text_limit=4, semantic_threshold=0.5
        )

    @pytest.mark.parametrize("params,message", [
        ({"userId": "user-1"}, "Query parameter is required"),
        ({"q": "coffee"}, "User ID is required"),
    ])
    def test_validation(self, client, params, message):
        response = client.get("/api/search", params=params)
        assert response.status_code == 400
        assert response.json()["error"] == message

    def test_search_failure(self, client, store):
        with patch.object(store.__class__, "lexical_search", side_effect=PersistenceError("fts5 missing")):
            response = client.get("/api/search", params={"q": "coffee", "userId": "user-1"})

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "Search failed"
        assert "results" not in data


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["database"]["connection_test"] is True
    assert data["features"]["ocr"] is True
    assert data["features"]["embeddings_provider"] == "fake"


def test_shutdown_closes_database_connections(tmp_path, db_manager):
    client = _client(tmp_path, db_manager)
    with patch.object(db_manager, "close_all_connections") as mock_close:
        with client:
            assert client.get("/api/health").status_code == 200
            mock_close.assert_not_called()
        mock_close.assert_called_once_with()


def test_search_without_limit_uses_configured_sides(tmp_path, db_manager):
    settings = _settings(tmp_path).model_copy(
        update={"semantic_limit": 2, "full_text_limit": 3, "search_default_threshold": 0.6}
    )
    app = create_app(settings, db=db_manager, ocr=FakeOCR(), embedder=FakeEmbedder())
    service = app.state.search_service

    with patch.object(service, "hybrid_search", new=AsyncMock(return_value=[])) as mock_hybrid:
        TestClient(app).get("/api/search", params={"q": "x", "userId": "user-1"})

    mock_hybrid.assert_awaited_once_with(
        "x", "user-1", semantic_limit=2, full_text_limit=3, semantic_threshold=0.6
    )
