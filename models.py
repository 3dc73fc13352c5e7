from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


class ProcessingStatus(str, Enum):
    """Lifecycle of a capture inside the processing pipeline."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class SearchMode(str, Enum):
    SEMANTIC = "semantic"
    FULLTEXT = "fulltext"
    HYBRID = "hybrid"


# States from which a fresh processing attempt may start
REENTRANT_STATUSES = (ProcessingStatus.PENDING, ProcessingStatus.FAILED)


class Capture(BaseModel):
    """A single saved media item plus its user metadata and derived fields."""

    id: str
    user_id: str
    media_url: Optional[str] = None
    media_type: MediaType = MediaType.IMAGE
    note: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    # Owned by the processing pipeline
    extracted_text: str = ""
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    processed_at: Optional[datetime] = None
    extracted_date: Optional[str] = None
    extracted_time: Optional[str] = None
    extracted_datetime: Optional[datetime] = None
    date_confidence: Optional[float] = None
    temporal_context: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    embedding: Optional[List[float]] = None

    created_at: Optional[datetime] = None

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    @property
    def image_url(self) -> Optional[str]:
        """Locator to run OCR against, or None for non-image captures."""
        if self.media_type == MediaType.IMAGE and self.media_url:
            return self.media_url
        return None

    def to_api(self, include_embedding: bool = False) -> Dict[str, Any]:
        """Return a JSON-safe payload for API responses."""
        payload = self.model_dump(mode="json", exclude={"embedding"})
        payload["has_embedding"] = self.has_embedding
        if include_embedding:
            payload["embedding"] = self.embedding
        return payload
