# ──────────────────────────────────────────────────────────────────────────────
# File: services/capture_processor.py
# ──────────────────────────────────────────────────────────────────────────────
"""
Capture Processing Service

Runs one capture through the enrichment pipeline and drives its status:

    pending/failed --process()--> processing --> completed | failed

Steps: claim the capture (status=processing), OCR + sanitize image captures,
extract temporal metadata from note + text, combine everything into one
text blob, embed it, then persist all derived fields in a single update.

Embedding failures are non-fatal: the capture completes without an
embedding.  Any other failure after the claim marks the capture failed and
is re-raised to the caller.  There is no internal retry; re-invoking
``process`` on a failed or pending capture starts a fresh attempt.

Collaborators are injected so every external capability can be replaced
with a test double.  Blocking calls (storage, OCR, embedding, date parsing)
run in worker threads via ``asyncio.to_thread``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from models import Capture, MediaType, ProcessingStatus
from services.capture_errors import (
    AlreadyInProgressError,
    PersistenceError,
    StatusUpdateError,
)
from services.capture_store import CaptureStore
from services.embeddings import Embeddings
from services.ocr_service import OCRService
from services.temporal_extractor import TemporalExtractor, TemporalResult
from services.text_combiner import combine_text_for_embedding
from services.text_sanitizer import TextSanitizer

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProcessingOutcome:
    """Result of a ``process`` call."""
    capture_id: str
    status: ProcessingStatus
    extracted_text: str
    has_embedding: bool
    temporal_info: Optional[TemporalResult] = None
    already_processed: bool = False

    def to_api(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": True,
            "captureId": self.capture_id,
            "status": self.status.value,
            "extractedText": self.extracted_text,
            "hasEmbedding": self.has_embedding,
        }
        if self.already_processed:
            payload["message"] = "Capture already processed"
        else:
            payload["temporalInfo"] = self.temporal_info.to_dict() if self.temporal_info else None
        return payload


@dataclass
class BatchItemResult:
    capture_id: str
    success: bool
    error: Optional[str] = None


@dataclass
class BatchResult:
    """All-settle summary of a batch run."""
    processed: int
    failed: int
    total: int
    results: List[BatchItemResult] = field(default_factory=list)
    message: Optional[str] = None

    def to_api(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "processed": self.processed,
            "failed": self.failed,
            "total": self.total,
            "results": [
                {"captureId": item.capture_id, "success": item.success, "error": item.error}
                for item in self.results
            ],
        }
        if self.message:
            payload["message"] = self.message
        return payload


class CaptureProcessor:
    """Processing state machine for captures."""

    def __init__(
        self,
        store: CaptureStore,
        ocr: OCRService,
        embedder: Embeddings,
        sanitizer: Optional[TextSanitizer] = None,
        temporal_extractor: Optional[TemporalExtractor] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.ocr = ocr
        self.embedder = embedder
        self.sanitizer = sanitizer or TextSanitizer()
        self.temporal_extractor = temporal_extractor or TemporalExtractor()
        self.clock = clock

    @staticmethod
    def _already_processed(capture: Capture) -> ProcessingOutcome:
        return ProcessingOutcome(
            capture_id=capture.id,
            status=ProcessingStatus.COMPLETED,
            extracted_text=capture.extracted_text,
            has_embedding=capture.has_embedding,
            already_processed=True,
        )

    async def process(
        self,
        capture_id: str,
        user_id: str,
        reference_time: Optional[datetime] = None,
    ) -> ProcessingOutcome:
        """Process a capture owned by ``user_id``.

        A completed capture short-circuits with its stored results; a capture
        that is already processing raises ``AlreadyInProgressError``.
        ``reference_time`` anchors relative dates ("tomorrow") and defaults
        to now.
        """
        capture = await asyncio.to_thread(self.store.get_capture, capture_id, user_id)

        if capture.processing_status == ProcessingStatus.COMPLETED:
            logger.info(f"Capture {capture_id} already processed")
            return self._already_processed(capture)
        if capture.processing_status == ProcessingStatus.PROCESSING:
            raise AlreadyInProgressError(
                f"Capture {capture_id} is currently being processed",
                details={"captureId": capture_id, "status": ProcessingStatus.PROCESSING.value},
            )

        try:
            claimed = await asyncio.to_thread(self.store.begin_processing, capture_id, user_id)
        except PersistenceError as e:
            raise StatusUpdateError(f"Failed to update processing status: {e}") from e

        if not claimed:
            # Lost the compare-and-swap to a concurrent attempt
            current = await asyncio.to_thread(self.store.get_capture, capture_id, user_id)
            if current.processing_status == ProcessingStatus.COMPLETED:
                return self._already_processed(current)
            raise AlreadyInProgressError(
                f"Capture {capture_id} is currently being processed",
                details={"captureId": capture_id, "status": current.processing_status.value},
            )

        logger.info(f"Processing capture {capture_id} ({capture.media_type.value})")
        try:
            return await self._run_pipeline(capture, reference_time or self.clock())
        except Exception as e:
            logger.error(f"Processing failed for capture {capture_id}: {e}")
            await self._mark_failed(capture_id)
            raise

    async def _run_pipeline(self, capture: Capture, reference_time: datetime) -> ProcessingOutcome:
        extracted_text = ""
        if capture.image_url:
            logger.debug(f"Extracting text from {capture.image_url}")
            raw_text = await asyncio.to_thread(self.ocr.detect_text, capture.image_url)
            extracted_text = self.sanitizer.sanitize(raw_text)
        else:
            logger.debug(f"No image for capture {capture.id}, skipping OCR")

        all_text = "\n\n".join(part for part in (capture.note, extracted_text) if part)
        temporal_info = await asyncio.to_thread(
            self.temporal_extractor.extract, all_text, reference_time
        )

        combined_text = combine_text_for_embedding(
            capture.note,
            extracted_text,
            capture.tags,
            temporal_info.temporal_context if temporal_info else None,
        )

        embedding = None
        if combined_text.strip():
            try:
                embedding = await asyncio.to_thread(self.embedder.embed, combined_text)
            except Exception as e:
                logger.warning(f"Embedding generation failed for capture {capture.id}, continuing without: {e}")
        else:
            logger.debug(f"No text content to embed for capture {capture.id}")

        update: Dict[str, Any] = {
            "extracted_text": extracted_text,
            "processing_status": ProcessingStatus.COMPLETED,
            "processed_at": self.clock(),
        }
        if embedding:
            update["embedding"] = embedding
        if temporal_info:
            if temporal_info.extracted_date:
                update["extracted_date"] = temporal_info.extracted_date
            if temporal_info.extracted_time:
                update["extracted_time"] = temporal_info.extracted_time
            if temporal_info.extracted_datetime:
                update["extracted_datetime"] = temporal_info.extracted_datetime
            if temporal_info.confidence:
                update["date_confidence"] = temporal_info.confidence
            if temporal_info.temporal_context:
                update["temporal_context"] = temporal_info.temporal_context

        await asyncio.to_thread(self.store.update_capture, capture.id, update)
        logger.info(f"Capture {capture.id} completed (embedding={'yes' if embedding else 'no'})")

        return ProcessingOutcome(
            capture_id=capture.id,
            status=ProcessingStatus.COMPLETED,
            extracted_text=extracted_text,
            has_embedding=bool(embedding),
            temporal_info=temporal_info,
        )

    async def _mark_failed(self, capture_id: str) -> None:
        try:
            await asyncio.to_thread(
                self.store.update_capture,
                capture_id,
                {"processing_status": ProcessingStatus.FAILED, "processed_at": self.clock()},
            )
        except Exception as e:
            # The original error is re-raised by the caller
            logger.error(f"Could not mark capture {capture_id} failed: {e}")

    async def process_pending(
        self,
        user_id: str,
        media_type: Optional[MediaType] = MediaType.IMAGE,
    ) -> BatchResult:
        """Process every pending capture of a user; one failure never cancels the rest."""
        pending = await asyncio.to_thread(
            self.store.list_captures_by_status, user_id, ProcessingStatus.PENDING, media_type
        )
        if not pending:
            return BatchResult(processed=0, failed=0, total=0, message="No pending captures to process")

        logger.info(f"Batch processing {len(pending)} pending captures for user {user_id}")
        outcomes = await asyncio.gather(
            *(self.process(c.id, user_id, reference_time=c.created_at) for c in pending),
            return_exceptions=True,
        )

        results = []
        for capture, outcome in zip(pending, outcomes):
            if isinstance(outcome, BaseException):
                results.append(BatchItemResult(capture.id, False, str(outcome)))
            else:
                results.append(BatchItemResult(capture.id, True))

        succeeded = sum(1 for item in results if item.success)
        return BatchResult(
            processed=succeeded,
            failed=len(results) - succeeded,
            total=len(pending),
            results=results,
        )

    async def get_processing_status(self, capture_id: str, user_id: str) -> Dict[str, Any]:
        capture = await asyncio.to_thread(self.store.get_capture, capture_id, user_id)
        return {
            "captureId": capture.id,
            "status": capture.processing_status.value,
            "processedAt": capture.processed_at.isoformat() if capture.processed_at else None,
            "hasExtractedText": bool(capture.extracted_text),
            "hasEmbedding": capture.has_embedding,
        }
