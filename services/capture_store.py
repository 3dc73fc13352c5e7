# ──────────────────────────────────────────────────────────────────────────────
# File: services/capture_store.py
# ──────────────────────────────────────────────────────────────────────────────
"""
SQLite capture store: persistence, FTS5 lexical search and vector search.

- Every query is scoped to the owning user.
- ``update_capture`` writes a partial field set in a single statement, so a
  record is either fully updated or untouched.
- ``begin_processing`` is the compare-and-swap used as the reentrancy guard:
  only a pending or failed capture can move to processing.
- Vector search uses sqlite-vec's ``vec_distance_cosine`` when the extension
  is loaded, and a numpy scan over the owner's embeddings otherwise.
"""
from __future__ import annotations

import json
import logging
import re
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from database import DatabaseManager
from models import Capture, MediaType, ProcessingStatus, REENTRANT_STATUSES
from services.capture_errors import NotFoundError, PersistenceError

logger = logging.getLogger(__name__)

# Fields the pipeline may write; anything else is rejected by update_capture
UPDATABLE_FIELDS = {
    "extracted_text",
    "processing_status",
    "processed_at",
    "extracted_date",
    "extracted_time",
    "extracted_datetime",
    "date_confidence",
    "temporal_context",
    "embedding",
}
JSON_FIELDS = {"tags", "temporal_context", "embedding"}


@dataclass
class VectorMatch:
    capture: Capture
    similarity: float


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _encode(field_name: str, value: Any) -> Any:
    if value is None:
        return None
    if field_name in JSON_FIELDS:
        return json.dumps(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, ProcessingStatus):
        return value.value
    return value


def sanitize_fts_query(q: str) -> str:
    """Turn free text into an FTS5 query that ANDs quoted terms."""
    if not q or not q.strip():
        return ""
    terms = re.findall(r"\w+", q, flags=re.UNICODE)
    return " ".join(f'"{term}"' for term in terms)


class CaptureStore:
    """Storage collaborator for captures."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    # ─── Row mapping ────────────────────────────────────────────────────────
    def _row_to_capture(self, row: sqlite3.Row) -> Capture:
        data = dict(row)
        data.pop("seq", None)
        data.pop("similarity", None)
        for key in JSON_FIELDS:
            raw = data.get(key)
            data[key] = json.loads(raw) if raw else None
        data["tags"] = data["tags"] or []
        data["temporal_context"] = data["temporal_context"] or {}
        data["extracted_text"] = data.get("extracted_text") or ""
        return Capture(**data)

    # ─── CRUD ───────────────────────────────────────────────────────────────
    def create_capture(
        self,
        user_id: str,
        media_url: Optional[str] = None,
        media_type: MediaType = MediaType.IMAGE,
        note: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        *,
        capture_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Capture:
        """Insert a new capture in the pending state."""
        capture_id = capture_id or uuid.uuid4().hex
        created_at = created_at or _utcnow()
        try:
            with self.db.get_db_context() as conn:
                conn.execute(
                    """
                    INSERT INTO captures (id, user_id, media_url, media_type, note, tags,
                                          extracted_text, processing_status, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, '', ?, ?)
                    """,
                    (
                        capture_id,
                        user_id,
                        media_url,
                        MediaType(media_type).value,
                        note,
                        json.dumps(list(tags or [])),
                        ProcessingStatus.PENDING.value,
                        created_at.isoformat(),
                    ),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to create capture: {e}") from e
        return self.get_capture(capture_id, user_id)

    def get_capture(self, capture_id: str, user_id: str) -> Capture:
        try:
            conn = self.db.get_connection()
            row = conn.execute(
                "SELECT * FROM captures WHERE id = ? AND user_id = ?",
                (capture_id, user_id),
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to load capture {capture_id}: {e}") from e
        if not row:
            raise NotFoundError(
                "No capture found with the given ID and user ID",
                details={"captureId": capture_id, "userId": user_id},
            )
        return self._row_to_capture(row)

    def update_capture(self, capture_id: str, fields: Dict[str, Any]) -> None:
        """Write only the listed fields, atomically."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise PersistenceError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        if not fields:
            return

        columns = sorted(fields)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        values = [_encode(column, fields[column]) for column in columns]
        try:
            with self.db.get_db_context() as conn:
                cur = conn.execute(
                    f"UPDATE captures SET {assignments} WHERE id = ?",
                    (*values, capture_id),
                )
                if cur.rowcount == 0:
                    raise PersistenceError(f"Capture {capture_id} disappeared during update")
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to update capture {capture_id}: {e}") from e

    def begin_processing(self, capture_id: str, user_id: str) -> bool:
        """Atomically move a pending/failed capture to processing.

        Returns False when the capture is in any other state, i.e. another
        attempt already owns it or it has completed.
        """
        expected = [status.value for status in REENTRANT_STATUSES]
        placeholders = ", ".join("?" for _ in expected)
        try:
            with self.db.get_db_context() as conn:
                cur = conn.execute(
                    f"""
                    UPDATE captures SET processing_status = ?
                    WHERE id = ? AND user_id = ? AND processing_status IN ({placeholders})
                    """,
                    (ProcessingStatus.PROCESSING.value, capture_id, user_id, *expected),
                )
                return cur.rowcount == 1
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to mark capture {capture_id} processing: {e}") from e

    def list_captures_by_status(
        self,
        user_id: str,
        status: ProcessingStatus = ProcessingStatus.PENDING,
        media_type: Optional[MediaType] = None,
    ) -> List[Capture]:
        sql = "SELECT * FROM captures WHERE user_id = ? AND processing_status = ?"
        params: List[Any] = [user_id, ProcessingStatus(status).value]
        if media_type is not None:
            sql += " AND media_type = ?"
            params.append(MediaType(media_type).value)
        sql += " ORDER BY created_at ASC"
        try:
            rows = self.db.get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to list captures: {e}") from e
        return [self._row_to_capture(row) for row in rows]

    # ─── Search ─────────────────────────────────────────────────────────────
    def lexical_search(
        self,
        query: str,
        user_id: str,
        status: ProcessingStatus = ProcessingStatus.COMPLETED,
    ) -> List[Capture]:
        """Full-text matches for the owner, newest first."""
        fts_query = sanitize_fts_query(query)
        if not fts_query:
            return []
        try:
            rows = self.db.get_connection().execute(
                """
                SELECT c.*
                FROM captures_fts JOIN captures c ON captures_fts.rowid = c.seq
                WHERE captures_fts MATCH ?
                  AND c.user_id = ?
                  AND c.processing_status = ?
                ORDER BY c.created_at DESC
                """,
                (fts_query, user_id, ProcessingStatus(status).value),
            ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Full-text search failed: {e}") from e
        return [self._row_to_capture(row) for row in rows]

    def vector_search(
        self,
        query_embedding: Sequence[float],
        user_id: str,
        threshold: float,
        limit: int,
    ) -> List[VectorMatch]:
        """Nearest neighbours with cosine similarity above ``threshold``."""
        if limit <= 0:
            return []
        try:
            conn = self.db.get_connection()
            if self.db.vec_enabled:
                matches = self._vector_search_sql(conn, query_embedding, user_id, threshold, limit)
            else:
                matches = self._vector_search_scan(conn, query_embedding, user_id, threshold, limit)
        except sqlite3.Error as e:
            raise PersistenceError(f"Vector search failed: {e}") from e
        return matches

    def _vector_search_sql(self, conn, query_embedding, user_id, threshold, limit) -> List[VectorMatch]:
        # Embeddings of another dimension (older model or provider) get a NULL similarity
        rows = conn.execute(
            """
            SELECT * FROM (
                SELECT c.*,
                       CASE WHEN vec_length(c.embedding) = ?
                            THEN 1.0 - vec_distance_cosine(c.embedding, ?)
                       END AS similarity
                FROM captures c
                WHERE c.user_id = ? AND c.embedding IS NOT NULL
            )
            WHERE similarity > ?
            ORDER BY similarity DESC
            LIMIT ?
            """,
            (len(query_embedding), json.dumps(list(query_embedding)), user_id, threshold, limit),
        ).fetchall()
        return [VectorMatch(self._row_to_capture(row), float(row["similarity"])) for row in rows]

    def _vector_search_scan(self, conn, query_embedding, user_id, threshold, limit) -> List[VectorMatch]:
        rows = conn.execute(
            "SELECT * FROM captures WHERE user_id = ? AND embedding IS NOT NULL",
            (user_id,),
        ).fetchall()
        if not rows:
            return []

        query = np.asarray(query_embedding, dtype=np.float32)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        matches = []
        for row in rows:
            vector = np.asarray(json.loads(row["embedding"]), dtype=np.float32)
            if vector.shape != query.shape:
                logger.warning(f"Skipping capture {row['id']}: embedding dimension {vector.shape[0]} != {query.shape[0]}")
                continue
            norm = np.linalg.norm(vector)
            if norm == 0:
                continue
            similarity = float(np.dot(query, vector) / (query_norm * norm))
            if similarity > threshold:
                matches.append(VectorMatch(self._row_to_capture(row), similarity))

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]
