# ──────────────────────────────────────────────────────────────────────────────
# File: services/capture_errors.py
# ──────────────────────────────────────────────────────────────────────────────
"""
Error taxonomy for the capture pipeline and search.

Every failure the pipeline surfaces is a ``CaptureError`` carrying an
``ErrorCategory``. Routers map categories onto HTTP status codes; the
processing state machine decides which categories are fatal.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    """Categories of errors for appropriate handling strategies."""
    VALIDATION = "validation"              # Missing or malformed caller input
    NOT_FOUND = "not_found"                # Capture absent or not owned by caller
    EXTERNAL_SERVICE = "external_service"  # OCR or embedding backend failure
    STORAGE = "storage"                    # Database read/write failure
    IN_PROGRESS = "in_progress"            # Capture already being processed


HTTP_STATUS_BY_CATEGORY = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.EXTERNAL_SERVICE: 500,
    ErrorCategory.STORAGE: 500,
    ErrorCategory.IN_PROGRESS: 202,
}


class CaptureError(Exception):
    """Base class for all pipeline errors."""

    category = ErrorCategory.STORAGE
    user_message = "Processing failed"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_CATEGORY[self.category]

    def to_dict(self, include_details: bool = True) -> Dict[str, Any]:
        """Serialize for an API response; production hides the details."""
        payload: Dict[str, Any] = {
            "error": self.user_message,
            "category": self.category.value,
        }
        if include_details:
            payload["details"] = self.message
            payload.update(self.details)
        return payload


class ValidationError(CaptureError):
    category = ErrorCategory.VALIDATION
    user_message = "Invalid request"


class InvalidInputError(ValidationError):
    """Raised when a component receives input it cannot work with (e.g. empty text)."""
    user_message = "Invalid input"


class NotFoundError(CaptureError):
    category = ErrorCategory.NOT_FOUND
    user_message = "Capture not found"


class ExternalServiceError(CaptureError):
    category = ErrorCategory.EXTERNAL_SERVICE
    user_message = "External service unavailable"


class OCRServiceError(ExternalServiceError):
    user_message = "Text extraction failed"


class EmbeddingServiceError(ExternalServiceError):
    user_message = "Embedding generation failed"


class PersistenceError(CaptureError):
    category = ErrorCategory.STORAGE
    user_message = "Storage error"


class StatusUpdateError(PersistenceError):
    """The initial ``processing`` status write failed; nothing else was attempted."""
    user_message = "Failed to update processing status"


class AlreadyInProgressError(CaptureError):
    """A concurrent attempt owns the capture. A retry-later signal, not a failure."""
    category = ErrorCategory.IN_PROGRESS
    user_message = "Capture is currently being processed"


class SearchError(CaptureError):
    """A sub-search failed; the whole search fails with no partial results."""
    user_message = "Search failed"

    def __init__(self, message: str, *, cause: Optional[BaseException] = None, **kwargs):
        super().__init__(message, **kwargs)
        if isinstance(cause, CaptureError):
            self.category = cause.category
