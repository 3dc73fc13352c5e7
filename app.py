"""
Memex capture service.

FastAPI application that wires the capture store, OCR, embeddings, the
processing pipeline and hybrid search together.  Every collaborator is
built explicitly here and attached to ``app.state``; routers resolve them
through ``Depends``.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, get_settings
from database import DatabaseManager
from services.capture_processor import CaptureProcessor
from services.capture_router import router as capture_router
from services.capture_store import CaptureStore
from services.embeddings import Embeddings
from services.hybrid_search import HybridSearchService
from services.ocr_service import OCRService
from services.search_router import router as search_router
from services.temporal_extractor import TemporalExtractor
from services.text_sanitizer import TextSanitizer

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout,
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    db: Optional[DatabaseManager] = None,
    ocr: Optional[OCRService] = None,
    embedder: Optional[Embeddings] = None,
    temporal_extractor: Optional[TemporalExtractor] = None,
) -> FastAPI:
    """Build the application; any collaborator may be supplied by the caller."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    db = db or DatabaseManager.from_settings(settings)
    db.initialize_database()

    store = CaptureStore(db)
    embedder = embedder or Embeddings.from_settings(settings)
    ocr = ocr or OCRService.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        db.close_all_connections()

    app = FastAPI(title="Memex Capture Service", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.db = db
    app.state.capture_store = store
    app.state.ocr = ocr
    app.state.embedder = embedder
    app.state.capture_processor = CaptureProcessor(
        store,
        ocr,
        embedder,
        sanitizer=TextSanitizer(),
        temporal_extractor=temporal_extractor or TemporalExtractor(),
    )
    app.state.search_service = HybridSearchService.from_settings(store, embedder, settings)

    app.include_router(capture_router)
    app.include_router(search_router)

    @app.get("/api/health")
    async def health(request: Request):
        """Report storage health and which capabilities are configured."""
        state = request.app.state
        database = state.db.health_check()
        return {
            "success": database.get("connection_test", False),
            "environment": state.settings.environment,
            "database": {
                "connection_test": database.get("connection_test", False),
                "vector_extension": database.get("vector_extension", False),
            },
            "features": {
                "ocr": state.ocr.available,
                "embeddings_provider": state.embedder.provider,
                "external_ai_allowed": state.settings.ai_allow_external,
                "has_openai_key": bool(state.settings.openai_api_key),
            },
        }

    logger.info(f"Capture service ready (db={settings.db_path}, embeddings={embedder.provider})")
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8082)
