"""Incident store."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

from healthwatch.health.models import Incident, IncidentState, IncidentUpdate, Severity
from healthwatch.storage.db import Database

UPDATABLE = {"title", "description", "severity", "state", "resolved_at", "chain", "restaurant"}


def _to_column(key: str, value: Any) -> Any:
    if key == "updates":
        return json.dumps([asdict(u) if isinstance(u, IncidentUpdate) else u for u in value])
    if hasattr(value, "value"):
        return value.value
    return value


class IncidentStore:
    """SQLite-backed storage for incidents and their update log."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, incident: Incident) -> Incident:
        row = {k: _to_column(k, v) for k, v in asdict(incident).items()}
        columns = ", ".join(row)
        params = ", ".join(f":{k}" for k in row)
        with self._db.connect() as conn:
            conn.execute(f"INSERT INTO incidents ({columns}) VALUES ({params})", row)
        return incident

    def get(self, incident_id: str) -> Incident | None:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM incidents WHERE id = ?", (incident_id,)).fetchone()
        return Incident.from_row(dict(row)) if row else None

    def list(
        self,
        service_id: str | None = None,
        state: IncidentState | str | None = None,
        severity: Severity | str | None = None,
    ) -> list[Incident]:
        """List incidents, most recently started first."""
        clauses: list[str] = []
        params: list[Any] = []
        if service_id:
            clauses.append("service_id = ?")
            params.append(service_id)
        if state:
            clauses.append("state = ?")
            params.append(_to_column("state", state))
        if severity:
            clauses.append("severity = ?")
            params.append(_to_column("severity", severity))

        sql = "SELECT * FROM incidents"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY started_at DESC"

        with self._db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Incident.from_row(dict(r)) for r in rows]

    def by_service(self, service_id: str) -> list[Incident]:
        return self.list(service_id=service_id)

    def open_for_service(self, service_id: str) -> list[Incident]:
        """Non-resolved incidents of a service, most recent first."""
        return [i for i in self.by_service(service_id) if i.is_open]

    def find_open_by_title(self, title: str) -> Incident | None:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM incidents WHERE title = ? AND state != ? LIMIT 1",
                (title, IncidentState.RESOLVED.value),
            ).fetchone()
        return Incident.from_row(dict(row)) if row else None

    def update(self, incident_id: str, **fields: Any) -> Incident | None:
        updates = {k: _to_column(k, v) for k, v in fields.items() if k in UPDATABLE}
        if not updates:
            return self.get(incident_id)
        set_clause = ", ".join(f"{k} = :{k}" for k in updates)
        updates["id"] = incident_id
        with self._db.connect() as conn:
            cursor = conn.execute(f"UPDATE incidents SET {set_clause} WHERE id = :id", updates)
        if cursor.rowcount == 0:
            return None
        return self.get(incident_id)

    def add_update(self, incident_id: str, update: IncidentUpdate) -> Incident | None:
        """Append an entry to the incident's update log."""
        incident = self.get(incident_id)
        if incident is None:
            return None
        incident.updates.append(update)
        with self._db.connect() as conn:
            conn.execute(
                "UPDATE incidents SET updates = ? WHERE id = ?",
                (_to_column("updates", incident.updates), incident_id),
            )
        return incident

    def delete(self, incident_id: str) -> bool:
        with self._db.connect() as conn:
            cursor = conn.execute("DELETE FROM incidents WHERE id = ?", (incident_id,))
        return cursor.rowcount > 0
