"""
Database connection management and schema for the capture store.

This module provides:
- Per-thread SQLite connections (pipeline work runs in worker threads)
- Optional sqlite-vec extension loading for vector distance functions
- The captures schema with an FTS5 index kept in sync by triggers
- Connection health monitoring
"""

import sqlite3
import threading
import time
import logging
import os
from typing import Optional, Dict, Any
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS captures (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL,
    media_url TEXT,
    media_type TEXT NOT NULL DEFAULT 'image',
    note TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    extracted_text TEXT NOT NULL DEFAULT '',
    processing_status TEXT NOT NULL DEFAULT 'pending',
    processed_at TEXT,
    extracted_date TEXT,
    extracted_time TEXT,
    extracted_datetime TEXT,
    date_confidence REAL,
    temporal_context TEXT,
    embedding TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_captures_user_status
    ON captures (user_id, processing_status, created_at DESC);

CREATE VIRTUAL TABLE IF NOT EXISTS captures_fts USING fts5(
    note, extracted_text, tags,
    content='captures', content_rowid='seq'
);

CREATE TRIGGER IF NOT EXISTS captures_fts_ai AFTER INSERT ON captures BEGIN
    INSERT INTO captures_fts (rowid, note, extracted_text, tags)
    VALUES (new.seq, new.note, new.extracted_text, new.tags);
END;

CREATE TRIGGER IF NOT EXISTS captures_fts_ad AFTER DELETE ON captures BEGIN
    INSERT INTO captures_fts (captures_fts, rowid, note, extracted_text, tags)
    VALUES ('delete', old.seq, old.note, old.extracted_text, old.tags);
END;

CREATE TRIGGER IF NOT EXISTS captures_fts_au AFTER UPDATE OF note, extracted_text, tags ON captures BEGIN
    INSERT INTO captures_fts (captures_fts, rowid, note, extracted_text, tags)
    VALUES ('delete', old.seq, old.note, old.extracted_text, old.tags);
    INSERT INTO captures_fts (rowid, note, extracted_text, tags)
    VALUES (new.seq, new.note, new.extracted_text, new.tags);
END;
"""


class DatabaseManager:
    """Database connection manager with per-thread connections and health monitoring."""

    def __init__(self, db_path: str, vec_ext_path: Optional[str] = None):
        self.db_path = str(db_path)
        self.vec_ext_path = vec_ext_path
        self.vec_enabled = False
        self._connections = {}
        self._lock = threading.RLock()
        self._health_stats = {
            'total_connections': 0,
            'active_connections': 0,
            'failed_connections': 0,
            'last_health_check': None
        }

    @classmethod
    def from_settings(cls, settings) -> "DatabaseManager":
        return cls(str(settings.db_path), vec_ext_path=settings.sqlite_vec_path)

    def _load_vec_extension(self, conn: sqlite3.Connection) -> bool:
        """Load sqlite-vec; returns False when it is not available."""
        try:
            conn.enable_load_extension(True)
        except (AttributeError, sqlite3.Error) as e:
            logger.info(f"sqlite extension loading not supported: {e}")
            return False

        try:
            path = self.vec_ext_path
            if path:
                try:
                    conn.load_extension(path)
                    return True
                except sqlite3.Error as e:
                    logger.warning(f"sqlite-vec load failed for {path}: {e}")

            try:
                import sqlite_vec
                sqlite_vec.load(conn)
                return True
            except (ImportError, sqlite3.Error) as e:
                logger.info(f"sqlite-vec not enabled: {e}")
                return False
        finally:
            conn.enable_load_extension(False)

    def get_connection(self) -> sqlite3.Connection:
        """Get the connection owned by the calling thread."""
        thread_id = threading.get_ident()

        with self._lock:
            try:
                if thread_id in self._connections:
                    conn = self._connections[thread_id]
                    try:
                        conn.execute("SELECT 1")
                        return conn
                    except sqlite3.Error:
                        del self._connections[thread_id]
                        self._health_stats['active_connections'] -= 1

                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(self.db_path, timeout=30.0)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
                conn.execute("PRAGMA temp_store=memory")
                self.vec_enabled = self._load_vec_extension(conn)

                self._connections[thread_id] = conn
                self._health_stats['total_connections'] += 1
                self._health_stats['active_connections'] += 1

                logger.debug(f"Created new database connection for thread {thread_id}")
                return conn

            except sqlite3.Error as e:
                self._health_stats['failed_connections'] += 1
                logger.error(f"Failed to create database connection: {e}")
                raise

    @contextmanager
    def get_db_context(self):
        """Context manager that commits on success and rolls back on error."""
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def close_all_connections(self):
        """Close all active connections."""
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error:
                    pass
            self._connections.clear()
            self._health_stats['active_connections'] = 0
            logger.info("Closed all database connections")

    def health_check(self) -> Dict[str, Any]:
        """Perform health check and return statistics."""
        health_info = {
            'database_exists': os.path.exists(self.db_path),
            'database_size_mb': 0,
            'connection_test': False,
            'vector_extension': False,
            'stats': self._health_stats.copy()
        }

        try:
            if health_info['database_exists']:
                health_info['database_size_mb'] = round(
                    os.path.getsize(self.db_path) / (1024 * 1024), 2
                )

            with self.get_db_context() as conn:
                conn.execute("SELECT 1")
                health_info['connection_test'] = True
            health_info['vector_extension'] = self.vec_enabled

            self._health_stats['last_health_check'] = time.time()

        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            health_info['error'] = str(e)

        return health_info

    def initialize_database(self):
        """Create the captures schema if needed."""
        try:
            with self.get_db_context() as conn:
                conn.executescript(SCHEMA)
            logger.info("Database initialization completed")
        except sqlite3.Error as e:
            logger.error(f"Database initialization failed: {e}")
            raise


def create_test_db(test_db_path: str) -> DatabaseManager:
    """Create a fresh database manager for testing."""
    Path(test_db_path).parent.mkdir(parents=True, exist_ok=True)

    if os.path.exists(test_db_path):
        os.remove(test_db_path)

    test_manager = DatabaseManager(test_db_path)
    test_manager.initialize_database()
    return test_manager


__all__ = [
    'DatabaseManager',
    'SCHEMA',
    'create_test_db',
]
