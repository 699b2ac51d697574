"""Service store — the monitored fleet."""

from __future__ import annotations

import json
import logging
import secrets
import string
from dataclasses import asdict
from typing import Any

from healthwatch.health.models import (
    Endpoint,
    Importance,
    Service,
    ServiceState,
    utcnow_iso,
)
from healthwatch.storage.db import Database

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits

# Columns callers may change through update()
UPDATABLE = {
    "name", "endpoint", "importance", "importance_pinned", "state", "active",
    "maintenance_mode", "manual_override", "chain", "restaurant", "deleted_at",
}

# Columns the dashboard filters on
DISTINCT_COLUMNS = ("state", "chain", "restaurant")


def new_service_id() -> str:
    return "srv-" + "".join(secrets.choice(_ID_ALPHABET) for _ in range(8))


def _to_column(key: str, value: Any) -> Any:
    if key == "endpoint":
        if isinstance(value, Endpoint):
            value = asdict(value)
        return json.dumps(value)
    if key in ("importance", "state"):
        return value.value if hasattr(value, "value") else str(value)
    if isinstance(value, bool):
        return int(value)
    return value


class ServiceStore:
    """SQLite-backed storage for services."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, service: Service) -> Service:
        now = utcnow_iso()
        service.created_at = service.created_at or now
        service.updated_at = now
        row = {k: _to_column(k, v) for k, v in asdict(service).items()}
        columns = ", ".join(row)
        params = ", ".join(f":{k}" for k in row)
        with self._db.connect() as conn:
            conn.execute(f"INSERT INTO services ({columns}) VALUES ({params})", row)
        return service

    def get(self, service_id: str) -> Service | None:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM services WHERE id = ?", (service_id,)).fetchone()
        return Service.from_row(dict(row)) if row else None

    def list(
        self,
        active: bool | None = None,
        state: ServiceState | str | None = None,
        importance: Importance | str | None = None,
        chain: str | None = None,
        restaurant: str | None = None,
    ) -> list[Service]:
        """List services, newest update first, with optional filters."""
        clauses: list[str] = []
        params: list[Any] = []
        if active is not None:
            clauses.append("active = ?")
            params.append(int(active))
        if state is not None:
            clauses.append("state = ?")
            params.append(_to_column("state", state))
        if importance is not None:
            clauses.append("importance = ?")
            params.append(_to_column("importance", importance))
        if chain:
            clauses.append("chain = ?")
            params.append(chain)
        if restaurant:
            clauses.append("restaurant = ?")
            params.append(restaurant)

        sql = "SELECT * FROM services"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY updated_at DESC"

        with self._db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Service.from_row(dict(r)) for r in rows]

    def update(self, service_id: str, **fields: Any) -> Service | None:
        """Update specific fields and stamp updated_at."""
        updates = {k: _to_column(k, v) for k, v in fields.items() if k in UPDATABLE}
        if not updates:
            return self.get(service_id)

        updates["updated_at"] = utcnow_iso()
        set_clause = ", ".join(f"{k} = :{k}" for k in updates)
        updates["id"] = service_id
        with self._db.connect() as conn:
            cursor = conn.execute(f"UPDATE services SET {set_clause} WHERE id = :id", updates)
        if cursor.rowcount == 0:
            return None
        return self.get(service_id)

    def delete(self, service_id: str) -> bool:
        with self._db.connect() as conn:
            cursor = conn.execute("DELETE FROM services WHERE id = ?", (service_id,))
        return cursor.rowcount > 0

    def summary(self) -> dict[str, int]:
        """Count active services per state."""
        counts = {s.value: 0 for s in ServiceState}
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT state, COUNT(*) AS total FROM services WHERE active = 1 GROUP BY state"
            ).fetchall()
        for r in rows:
            if r["state"] in counts:
                counts[r["state"]] = r["total"]
        return counts

    def distinct(self, column: str) -> list[str]:
        """Sorted non-empty values of one filter column."""
        if column not in DISTINCT_COLUMNS:
            raise ValueError(f"Not a filter column: {column}")
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT DISTINCT {column} AS value FROM services WHERE {column} != '' ORDER BY {column}"
            ).fetchall()
        return [r["value"] for r in rows]
