# ──────────────────────────────────────────────────────────────────────────────
# File: services/search_router.py
# ──────────────────────────────────────────────────────────────────────────────
"""
Search router: semantic, full-text and hybrid search over captures.

GET /api/search?q=...&userId=...&type=hybrid|semantic|fulltext&limit=10&threshold=0.7
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from services.capture_router import error_response
from services.hybrid_search import HybridSearchService, serialize_results

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


def get_search_service(request: Request) -> HybridSearchService:
    return request.app.state.search_service


@router.get("")
async def search_captures(
    request: Request,
    q: Optional[str] = Query(default=None),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    type: str = Query(default="hybrid"),
    limit: Optional[int] = Query(default=None, ge=1),
    threshold: Optional[float] = Query(default=None, ge=0.0, le=1.0),
    service: HybridSearchService = Depends(get_search_service),
):
    """Search a user's captures and return a ranked list plus its count."""
    if not q or not q.strip():
        return JSONResponse(status_code=400, content={"error": "Query parameter is required"})
    if not user_id:
        return JSONResponse(status_code=400, content={"error": "User ID is required"})

    try:
        results = await service.search(q, user_id, mode=type, limit=limit, threshold=threshold)
    except Exception as e:
        logger.error(f"Search error for '{q}': {e}")
        return error_response(request, e, "Search failed")

    return {
        "success": True,
        "query": q,
        "type": type,
        "results": serialize_results(results),
        "count": len(results),
    }
