"""Health check record store — append-only time series of probe results."""

from __future__ import annotations

import logging
from typing import Any

from healthwatch.health.models import HealthCheckRecord, ServiceState
from healthwatch.storage.db import Database

logger = logging.getLogger(__name__)


class CheckStore:
    """SQLite-backed storage for HealthCheckRecords."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def append(self, record: HealthCheckRecord) -> HealthCheckRecord:
        """Insert a record and return it with its row id set."""
        with self._db.connect() as conn:
            cursor = conn.execute(
                "INSERT INTO health_checks "
                "(service_id, state, response_time_ms, response_code, message, importance, timestamp, chain, restaurant) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.service_id, record.state.value, record.response_time_ms,
                    record.response_code, record.message, record.importance.value,
                    record.timestamp, record.chain, record.restaurant,
                ),
            )
        record.id = cursor.lastrowid
        return record

    def recent(self, service_id: str, limit: int = 5) -> list[HealthCheckRecord]:
        """The `limit` most recent records for a service, newest first."""
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM health_checks WHERE service_id = ? "
                "ORDER BY timestamp DESC, id DESC LIMIT ?",
                (service_id, limit),
            ).fetchall()
        return [HealthCheckRecord.from_row(dict(r)) for r in rows]

    def list(
        self,
        service_id: str | None = None,
        state: ServiceState | str | None = None,
        since: str | None = None,
        until: str | None = None,
        chain: str | None = None,
        restaurant: str | None = None,
        limit: int = 50,
    ) -> list[HealthCheckRecord]:
        clauses: list[str] = []
        params: list[Any] = []
        if service_id:
            clauses.append("service_id = ?")
            params.append(service_id)
        if state:
            clauses.append("state = ?")
            params.append(state.value if isinstance(state, ServiceState) else state)
        if since:
            clauses.append("timestamp >= ?")
            params.append(since)
        if until:
            clauses.append("timestamp <= ?")
            params.append(until)
        if chain:
            clauses.append("chain = ?")
            params.append(chain)
        if restaurant:
            clauses.append("restaurant = ?")
            params.append(restaurant)

        sql = "SELECT * FROM health_checks"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        with self._db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [HealthCheckRecord.from_row(dict(r)) for r in rows]

    def delete_by_service(self, service_id: str) -> int:
        with self._db.connect() as conn:
            cursor = conn.execute("DELETE FROM health_checks WHERE service_id = ?", (service_id,))
        logger.info("Deleted %d health checks for service %s", cursor.rowcount, service_id)
        return cursor.rowcount
