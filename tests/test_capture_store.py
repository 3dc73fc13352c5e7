"""Tests for the SQLite capture store."""

from datetime import datetime, timedelta, timezone

import pytest

from models import MediaType, ProcessingStatus
from services.capture_errors import NotFoundError, PersistenceError
from services.capture_store import sanitize_fts_query

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _completed(store, user_id, note, text="", embedding=None, minutes=0, capture_id=None):
    capture = store.create_capture(
        user_id,
        note=note,
        capture_id=capture_id,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )
    fields = {"extracted_text": text, "processing_status": ProcessingStatus.COMPLETED}
    if embedding is not None:
        fields["embedding"] = embedding
    store.update_capture(capture.id, fields)
    return store.get_capture(capture.id, user_id)


class TestCrud:

    def test_create_starts_pending(self, store):
        capture = store.create_capture(
            "user-1", media_url="receipt.png", note="Lunch", tags=["food", "receipts"]
        )
        assert capture.processing_status == ProcessingStatus.PENDING
        assert capture.extracted_text == ""
        assert capture.tags == ["food", "receipts"]
        assert capture.embedding is None
        assert capture.image_url == "receipt.png"
        assert capture.created_at is not None

    def test_get_is_owner_scoped(self, store):
        capture = store.create_capture("user-1", note="private")
        with pytest.raises(NotFoundError) as exc_info:
            store.get_capture(capture.id, "user-2")
        assert exc_info.value.details == {"captureId": capture.id, "userId": "user-2"}
        assert exc_info.value.status_code == 404

    def test_get_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.get_capture("nope", "user-1")

    def test_update_writes_only_given_fields(self, store):
        capture = store.create_capture("user-1", note="Standup")
        processed_at = BASE_TIME + timedelta(hours=1)
        store.update_capture(capture.id, {
            "extracted_text": "agenda",
            "processing_status": ProcessingStatus.COMPLETED,
            "processed_at": processed_at,
            "temporal_context": {"tomorrow": {"text": "tomorrow", "index": 0}},
            "embedding": [0.5, 0.5],
        })

        updated = store.get_capture(capture.id, "user-1")
        assert updated.note == "Standup"
        assert updated.extracted_text == "agenda"
        assert updated.processing_status == ProcessingStatus.COMPLETED
        assert updated.processed_at == processed_at
        assert updated.temporal_context == {"tomorrow": {"text": "tomorrow", "index": 0}}
        assert updated.embedding == [0.5, 0.5]
        assert updated.has_embedding

    def test_update_rejects_user_fields(self, store):
        capture = store.create_capture("user-1", note="Standup")
        with pytest.raises(PersistenceError):
            store.update_capture(capture.id, {"note": "rewritten", "extracted_text": "x"})
        assert store.get_capture(capture.id, "user-1").extracted_text == ""

    def test_update_missing_capture(self, store):
        with pytest.raises(PersistenceError):
            store.update_capture("ghost", {"extracted_text": "x"})

    def test_non_image_has_no_image_url(self, store):
        capture = store.create_capture("user-1", media_url="memo.m4a", media_type=MediaType.AUDIO)
        assert capture.image_url is None


class TestBeginProcessing:

    @pytest.mark.parametrize("status", [ProcessingStatus.PENDING, ProcessingStatus.FAILED])
    def test_reentrant_states_can_be_claimed(self, store, status):
        capture = store.create_capture("user-1")
        store.update_capture(capture.id, {"processing_status": status})

        assert store.begin_processing(capture.id, "user-1") is True
        assert store.get_capture(capture.id, "user-1").processing_status == ProcessingStatus.PROCESSING

    def test_second_claim_loses(self, store):
        capture = store.create_capture("user-1")
        assert store.begin_processing(capture.id, "user-1") is True
        assert store.begin_processing(capture.id, "user-1") is False

    def test_completed_cannot_be_claimed(self, store):
        capture = _completed(store, "user-1", "done")
        assert store.begin_processing(capture.id, "user-1") is False

    def test_other_owner_cannot_claim(self, store):
        capture = store.create_capture("user-1")
        assert store.begin_processing(capture.id, "user-2") is False
        assert store.get_capture(capture.id, "user-1").processing_status == ProcessingStatus.PENDING


class TestListByStatus:

    def test_filters_and_orders_oldest_first(self, store):
        newer = store.create_capture("user-1", created_at=BASE_TIME + timedelta(minutes=5))
        older = store.create_capture("user-1", created_at=BASE_TIME)
        store.create_capture("user-1", media_type=MediaType.AUDIO, created_at=BASE_TIME)
        store.create_capture("user-2", created_at=BASE_TIME)
        _completed(store, "user-1", "done")

        pending = store.list_captures_by_status("user-1", ProcessingStatus.PENDING, MediaType.IMAGE)
        assert [c.id for c in pending] == [older.id, newer.id]

        assert len(store.list_captures_by_status("user-1", ProcessingStatus.PENDING)) == 3


class TestLexicalSearch:

    def test_matches_note_and_text_newest_first(self, store):
        old = _completed(store, "user-1", "Coffee with Sam", minutes=0)
        new = _completed(store, "user-1", "Receipt", text="flat white coffee", minutes=10)

        results = store.lexical_search("coffee", "user-1")
        assert [c.id for c in results] == [new.id, old.id]

    def test_only_completed_and_owned(self, store):
        store.create_capture("user-1", note="coffee pending")
        _completed(store, "user-2", "coffee elsewhere")
        assert store.lexical_search("coffee", "user-1") == []

    def test_terms_are_anded(self, store):
        both = _completed(store, "user-1", "doctor appointment")
        _completed(store, "user-1", "doctor only")
        assert [c.id for c in store.lexical_search("doctor appointment", "user-1")] == [both.id]

    def test_fts_syntax_is_neutralized(self, store):
        _completed(store, "user-1", "quarterly report")
        assert len(store.lexical_search('(report*" -', "user-1")) == 1

    def test_index_follows_updates(self, store):
        capture = store.create_capture("user-1", note="scan")
        store.update_capture(capture.id, {
            "extracted_text": "boarding pass",
            "processing_status": ProcessingStatus.COMPLETED,
        })
        assert [c.id for c in store.lexical_search("boarding", "user-1")] == [capture.id]

    @pytest.mark.parametrize("query,expected", [
        ("coffee", '"coffee"'),
        ("doctor appointment", '"doctor" "appointment"'),
        ('a "b" OR c*', '"a" "b" "OR" "c"'),
        ("   ", ""),
        ("", ""),
    ])
    def test_sanitize_fts_query(self, query, expected):
        assert sanitize_fts_query(query) == expected


class TestVectorSearch:

    def test_threshold_order_and_limit(self, store):
        exact = _completed(store, "user-1", "a", embedding=[1.0, 0.0, 0.0])
        close = _completed(store, "user-1", "b", embedding=[0.9, 0.1, 0.0])
        _completed(store, "user-1", "c", embedding=[0.0, 1.0, 0.0])
        _completed(store, "user-2", "d", embedding=[1.0, 0.0, 0.0])

        matches = store.vector_search([1.0, 0.0, 0.0], "user-1", threshold=0.5, limit=5)
        assert [m.capture.id for m in matches] == [exact.id, close.id]
        assert matches[0].similarity == pytest.approx(1.0, abs=1e-5)
        assert matches[0].similarity > matches[1].similarity > 0.5

        limited = store.vector_search([1.0, 0.0, 0.0], "user-1", threshold=0.5, limit=1)
        assert [m.capture.id for m in limited] == [exact.id]

    def test_threshold_is_strict(self, store):
        _completed(store, "user-1", "a", embedding=[1.0, 0.0])
        assert store.vector_search([1.0, 0.0], "user-1", threshold=1.0, limit=5) == []

    def test_captures_without_embedding_are_skipped(self, store):
        _completed(store, "user-1", "no vector")
        assert store.vector_search([1.0, 0.0], "user-1", threshold=0.0, limit=5) == []

    def test_scan_skips_other_dimensions(self, store, db_manager):
        db_manager.get_connection()
        db_manager.vec_enabled = False
        same = _completed(store, "user-1", "a", embedding=[1.0, 0.0, 0.0])
        _completed(store, "user-1", "b", embedding=[1.0, 0.0])

        matches = store.vector_search([1.0, 0.0, 0.0], "user-1", threshold=0.5, limit=5)
        assert [m.capture.id for m in matches] == [same.id]

    def test_sqlite_vec_skips_other_dimensions(self, store, db_manager):
        pytest.importorskip("sqlite_vec")
        db_manager.get_connection()
        if not db_manager.vec_enabled:
            pytest.skip("sqlite-vec extension could not be loaded")
        same = _completed(store, "user-1", "a", embedding=[1.0, 0.0, 0.0])
        _completed(store, "user-1", "b", embedding=[1.0, 0.0])

        matches = store.vector_search([1.0, 0.0, 0.0], "user-1", threshold=0.5, limit=5)
        assert [m.capture.id for m in matches] == [same.id]

    def test_zero_limit(self, store):
        _completed(store, "user-1", "a", embedding=[1.0, 0.0])
        assert store.vector_search([1.0, 0.0], "user-1", threshold=0.0, limit=0) == []
