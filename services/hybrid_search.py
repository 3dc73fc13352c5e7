# ──────────────────────────────────────────────────────────────────────────────
# File: services/hybrid_search.py
# ──────────────────────────────────────────────────────────────────────────────
"""
Hybrid search over captures: semantic (vector) + full-text (FTS5).

Both lookups run concurrently for the same owner and both must succeed.
Results are merged by capture id with semantic hits taking priority.
Full-text hits have no native score comparable to cosine similarity, so a
positional score ``1 - index / full_text_limit`` is synthesized.  The two
scales are not calibrated against each other; the merged ranking is a
heuristic.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from models import Capture, SearchMode
from services.capture_errors import CaptureError, SearchError, ValidationError
from services.capture_store import CaptureStore, VectorMatch
from services.embeddings import Embeddings

logger = logging.getLogger(__name__)

SEMANTIC = "semantic"
FULLTEXT = "fulltext"


@dataclass
class SearchResult:
    capture: Capture
    search_type: str
    relevance_score: float

    def to_api(self) -> Dict[str, Any]:
        payload = self.capture.to_api()
        payload["searchType"] = self.search_type
        payload["relevanceScore"] = self.relevance_score
        return payload


def merge_results(
    semantic_results: Sequence[VectorMatch],
    full_text_results: Sequence[Capture],
    full_text_limit: int,
) -> List[SearchResult]:
    """Deduplicate by capture id (semantic wins) and sort by relevance, descending."""
    combined: Dict[str, SearchResult] = {}

    for match in semantic_results:
        combined[match.capture.id] = SearchResult(match.capture, SEMANTIC, match.similarity)

    for index, capture in enumerate(full_text_results[:full_text_limit]):
        if capture.id not in combined:
            combined[capture.id] = SearchResult(capture, FULLTEXT, 1 - index / full_text_limit)

    return sorted(combined.values(), key=lambda r: r.relevance_score, reverse=True)


def serialize_results(results: Sequence[Union[SearchResult, VectorMatch, Capture]]) -> List[Dict[str, Any]]:
    serialized = []
    for result in results:
        if isinstance(result, VectorMatch):
            payload = result.capture.to_api()
            payload["similarity"] = result.similarity
            serialized.append(payload)
        else:
            serialized.append(result.to_api())
    return serialized


class HybridSearchService:
    """Semantic, full-text and hybrid search for one owner's captures."""

    def __init__(
        self,
        store: CaptureStore,
        embedder: Embeddings,
        *,
        default_limit: int = 10,
        default_threshold: float = 0.7,
        semantic_limit: int = 5,
        full_text_limit: int = 5,
    ):
        self.store = store
        self.embedder = embedder
        self.default_limit = default_limit
        self.default_threshold = default_threshold
        self.semantic_limit = semantic_limit
        self.full_text_limit = full_text_limit

    @classmethod
    def from_settings(cls, store: CaptureStore, embedder: Embeddings, settings) -> "HybridSearchService":
        return cls(
            store,
            embedder,
            default_limit=settings.search_default_limit,
            default_threshold=settings.search_default_threshold,
            semantic_limit=settings.semantic_limit,
            full_text_limit=settings.full_text_limit,
        )

    async def semantic_search(
        self,
        query: str,
        user_id: str,
        limit: int = 10,
        threshold: float = 0.7,
    ) -> List[VectorMatch]:
        try:
            query_embedding = await asyncio.to_thread(self.embedder.embed, query)
            return await asyncio.to_thread(
                self.store.vector_search, query_embedding, user_id, threshold, limit
            )
        except Exception as e:
            raise SearchError(f"Semantic search failed: {e}", cause=e) from e

    async def full_text_search(self, query: str, user_id: str) -> List[Capture]:
        try:
            return await asyncio.to_thread(self.store.lexical_search, query, user_id)
        except Exception as e:
            raise SearchError(f"Full-text search failed: {e}", cause=e) from e

    async def hybrid_search(
        self,
        query: str,
        user_id: str,
        semantic_limit: Optional[int] = None,
        full_text_limit: Optional[int] = None,
        semantic_threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        semantic_limit = semantic_limit or self.semantic_limit
        full_text_limit = full_text_limit or self.full_text_limit
        if semantic_threshold is None:
            semantic_threshold = self.default_threshold
        try:
            semantic_results, full_text_results = await asyncio.gather(
                self.semantic_search(query, user_id, semantic_limit, semantic_threshold),
                self.full_text_search(query, user_id),
            )
        except CaptureError as e:
            raise SearchError(f"Hybrid search failed: {e}", cause=e) from e

        merged = merge_results(semantic_results, full_text_results, full_text_limit)
        logger.debug(
            f"Hybrid search: {len(semantic_results)} semantic, {len(full_text_results)} full-text, {len(merged)} merged"
        )
        return merged

    async def search(
        self,
        query: str,
        user_id: str,
        mode: Union[SearchMode, str] = SearchMode.HYBRID,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[Union[SearchResult, VectorMatch, Capture]]:
        """Dispatch on mode.

        An explicit ``limit`` is split evenly between the two hybrid sides;
        without one, hybrid uses the configured per-side limits.
        """
        if not query or not query.strip():
            raise ValidationError("Query parameter is required")
        if not user_id:
            raise ValidationError("User ID is required")
        if limit is not None and limit < 1:
            raise ValidationError("limit must be a positive integer")
        if threshold is None:
            threshold = self.default_threshold

        try:
            mode = SearchMode(mode)
        except ValueError:
            mode = SearchMode.HYBRID

        if mode == SearchMode.SEMANTIC:
            return await self.semantic_search(query, user_id, limit or self.default_limit, threshold)
        if mode == SearchMode.FULLTEXT:
            return await self.full_text_search(query, user_id)

        if limit is None:
            semantic_limit, full_text_limit = self.semantic_limit, self.full_text_limit
        else:
            semantic_limit = full_text_limit = math.ceil(limit / 2)
        return await self.hybrid_search(
            query,
            user_id,
            semantic_limit=semantic_limit,
            full_text_limit=full_text_limit,
            semantic_threshold=threshold,
        )
