# ──────────────────────────────────────────────────────────────────────────────
# File: services/capture_router.py
# ──────────────────────────────────────────────────────────────────────────────
"""
Capture processing API Router

Thin endpoints that validate input and hand off to the CaptureProcessor
attached to ``app.state``.
"""

import logging
import traceback
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from models import MediaType
from services.capture_errors import (
    AlreadyInProgressError,
    CaptureError,
    NotFoundError,
)
from services.capture_processor import CaptureProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/captures", tags=["captures"])


class ProcessCaptureRequest(BaseModel):
    """Request to process a single capture."""
    capture_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices('captureId', 'capture_id')
    )
    user_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices('userId', 'user_id', 'ownerId')
    )


class ProcessPendingRequest(BaseModel):
    """Request to process every pending capture of a user."""
    user_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices('userId', 'user_id', 'ownerId')
    )
    media_type: Optional[MediaType] = Field(
        default=MediaType.IMAGE, validation_alias=AliasChoices('mediaType', 'media_type')
    )


def get_capture_processor(request: Request) -> CaptureProcessor:
    return request.app.state.capture_processor


def _is_production(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings and settings.is_production)


def error_response(request: Request, exc: Exception, error: str) -> JSONResponse:
    """Map an exception onto a JSON error response."""
    production = _is_production(request)
    if isinstance(exc, CaptureError):
        status_code = exc.status_code if exc.status_code >= 400 else 500
        content = exc.to_dict(include_details=True)
        if status_code >= 500:
            content["error"] = error
    else:
        status_code = 500
        content = {"error": error, "details": str(exc)}
    if status_code >= 500 and not production:
        content["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=status_code, content=content)


def _validation_error(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


@router.post("/process")
async def process_capture(
    request: Request,
    body: ProcessCaptureRequest,
    processor: CaptureProcessor = Depends(get_capture_processor),
):
    """Run the processing pipeline for one capture."""
    if not body.capture_id:
        return _validation_error("Capture ID is required")
    if not body.user_id:
        return _validation_error("User ID is required")

    logger.info(f"Process capture request: capture={body.capture_id} user={body.user_id}")
    try:
        outcome = await processor.process(body.capture_id, body.user_id)
    except AlreadyInProgressError:
        return JSONResponse(
            status_code=202,
            content={
                "success": False,
                "captureId": body.capture_id,
                "message": "Capture is currently being processed",
                "status": "processing",
            },
        )
    except NotFoundError as e:
        return JSONResponse(status_code=404, content=e.to_dict(include_details=True))
    except Exception as e:
        logger.error(f"Processing error for capture {body.capture_id}: {e}")
        return error_response(request, e, "Processing failed")

    return outcome.to_api()


@router.post("/process-pending")
async def process_pending_captures(
    request: Request,
    body: ProcessPendingRequest,
    processor: CaptureProcessor = Depends(get_capture_processor),
):
    """Process all pending captures of a user; per-item failures are reported, not raised."""
    if not body.user_id:
        return _validation_error("User ID is required")

    try:
        batch = await processor.process_pending(body.user_id, body.media_type)
    except Exception as e:
        logger.error(f"Batch processing error for user {body.user_id}: {e}")
        return error_response(request, e, "Batch processing failed")

    return batch.to_api()


@router.get("/{capture_id}/status")
async def get_capture_status(
    request: Request,
    capture_id: str,
    user_id: Optional[str] = Query(default=None, alias="userId"),
    processor: CaptureProcessor = Depends(get_capture_processor),
):
    """Report the processing status of a capture."""
    if not user_id:
        return _validation_error("User ID is required")

    try:
        return await processor.get_processing_status(capture_id, user_id)
    except NotFoundError as e:
        return JSONResponse(status_code=404, content=e.to_dict(include_details=True))
    except Exception as e:
        logger.error(f"Status check error for capture {capture_id}: {e}")
        return error_response(request, e, "Status check failed")
