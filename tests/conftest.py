"""
Shared fixtures for the capture pipeline test suite.

Provides a temporary SQLite capture store plus test doubles for every
external capability (OCR, embeddings, date parsing).
"""

import pytest

from database import create_test_db
from fakes import FakeEmbedder, FakeOCR
from services.capture_errors import EmbeddingServiceError, OCRServiceError
from services.capture_store import CaptureStore


@pytest.fixture
def db_manager(tmp_path):
    manager = create_test_db(str(tmp_path / "captures.db"))
    yield manager
    manager.close_all_connections()


@pytest.fixture
def store(db_manager):
    return CaptureStore(db_manager)


@pytest.fixture
def fake_ocr():
    return FakeOCR()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def failing_ocr():
    return FakeOCR(error=OCRServiceError("OCR failed: tesseract crashed"))


@pytest.fixture
def failing_embedder():
    return FakeEmbedder(error=EmbeddingServiceError("Embedding generation failed: connection refused"))
