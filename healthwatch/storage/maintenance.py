"""Maintenance window store."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from healthwatch.health.models import MaintenanceWindow
from healthwatch.storage.db import Database

UPDATABLE = {"title", "start", "end", "active", "mode", "multiplier", "status"}


def _to_column(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


class MaintenanceStore:
    """SQLite-backed storage for maintenance windows."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, window: MaintenanceWindow) -> MaintenanceWindow:
        row = {k: _to_column(v) for k, v in asdict(window).items()}
        columns = ", ".join(f'"{k}"' for k in row)
        params = ", ".join(f":{k}" for k in row)
        with self._db.connect() as conn:
            conn.execute(f"INSERT INTO maintenance ({columns}) VALUES ({params})", row)
        return window

    def get(self, window_id: str) -> MaintenanceWindow | None:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM maintenance WHERE id = ?", (window_id,)).fetchone()
        return MaintenanceWindow.from_row(dict(row)) if row else None

    def list(self, service_id: str | None = None, active: bool | None = None) -> list[MaintenanceWindow]:
        clauses: list[str] = []
        params: list[Any] = []
        if service_id:
            clauses.append("service_id = ?")
            params.append(service_id)
        if active is not None:
            clauses.append("active = ?")
            params.append(int(active))

        sql = "SELECT * FROM maintenance"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY start"

        with self._db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [MaintenanceWindow.from_row(dict(r)) for r in rows]

    def by_service(self, service_id: str) -> list[MaintenanceWindow]:
        return self.list(service_id=service_id)

    def find_active_by_title(self, title: str) -> MaintenanceWindow | None:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM maintenance WHERE title = ? AND active = 1 LIMIT 1", (title,),
            ).fetchone()
        return MaintenanceWindow.from_row(dict(row)) if row else None

    def update(self, window_id: str, **fields: Any) -> MaintenanceWindow | None:
        updates = {k: _to_column(v) for k, v in fields.items() if k in UPDATABLE}
        if not updates:
            return self.get(window_id)
        set_clause = ", ".join(f'"{k}" = :{k}' for k in updates)
        updates["id"] = window_id
        with self._db.connect() as conn:
            cursor = conn.execute(f"UPDATE maintenance SET {set_clause} WHERE id = :id", updates)
        if cursor.rowcount == 0:
            return None
        return self.get(window_id)

    def delete(self, window_id: str) -> bool:
        with self._db.connect() as conn:
            cursor = conn.execute("DELETE FROM maintenance WHERE id = ?", (window_id,))
        return cursor.rowcount > 0
