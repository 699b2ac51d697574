"""SQLite database shared by all stores.

One file, WAL mode, a short-lived connection per call. Every sqlite3 error
surfaces as PersistenceError.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from healthwatch.health.errors import PersistenceError

logger = logging.getLogger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS services (
        id                TEXT PRIMARY KEY,
        name              TEXT NOT NULL DEFAULT '',
        endpoint          TEXT NOT NULL DEFAULT '{}',
        importance        TEXT NOT NULL DEFAULT 'medium',
        importance_pinned INTEGER NOT NULL DEFAULT 0,
        state             TEXT NOT NULL DEFAULT 'operational',
        active            INTEGER NOT NULL DEFAULT 1,
        maintenance_mode  INTEGER NOT NULL DEFAULT 0,
        manual_override   INTEGER NOT NULL DEFAULT 0,
        chain             TEXT NOT NULL DEFAULT '',
        restaurant        TEXT NOT NULL DEFAULT '',
        created_at        TEXT NOT NULL,
        updated_at        TEXT NOT NULL,
        deleted_at        TEXT
    );

    CREATE TABLE IF NOT EXISTS health_checks (
        id               INTEGER PRIMARY KEY AUTOINCREMENT,
        service_id       TEXT NOT NULL,
        state            TEXT NOT NULL,
        response_time_ms REAL,
        response_code    INTEGER,
        message          TEXT,
        importance       TEXT,
        timestamp        TEXT NOT NULL,
        chain            TEXT,
        restaurant       TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_checks_service
        ON health_checks (service_id, timestamp DESC);

    CREATE TABLE IF NOT EXISTS incidents (
        id          TEXT PRIMARY KEY,
        service_id  TEXT NOT NULL,
        title       TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        severity    TEXT NOT NULL,
        state       TEXT NOT NULL,
        started_at  TEXT NOT NULL,
        resolved_at TEXT,
        updates     TEXT NOT NULL DEFAULT '[]',
        chain       TEXT,
        restaurant  TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_incidents_service
        ON incidents (service_id, started_at DESC);

    CREATE TABLE IF NOT EXISTS maintenance (
        id         TEXT PRIMARY KEY,
        service_id TEXT NOT NULL,
        title      TEXT NOT NULL DEFAULT '',
        start      TEXT NOT NULL,
        "end"      TEXT,
        active     INTEGER NOT NULL DEFAULT 1,
        mode       TEXT,
        multiplier REAL,
        status     TEXT NOT NULL DEFAULT 'scheduled',
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_maintenance_service
        ON maintenance (service_id);

    CREATE TABLE IF NOT EXISTS settings (
        id                             TEXT PRIMARY KEY,
        operando_s                     REAL,
        degradado_s                    REAL,
        interval_high_s                REAL,
        interval_medium_s              REAL,
        interval_low_s                 REAL,
        jitter_max_s                   REAL,
        timeout_ms                     INTEGER,
        maintenance_default_mode       TEXT,
        maintenance_default_multiplier REAL,
        auto_incident_creation         INTEGER
    );
"""


class Database:
    """Connection factory + schema bootstrap for the healthwatch SQLite file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success, roll back on error, always close."""
        try:
            conn = sqlite3.connect(str(self.path))
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not open {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self.connect() as conn:
            conn.executescript(SCHEMA)
        logger.debug("Database ready at %s", self.path)
