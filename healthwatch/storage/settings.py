"""Global settings store — a single row keyed 'global'."""

from __future__ import annotations

from typing import Any

from healthwatch.health.models import GlobalSettings
from healthwatch.storage.db import Database

SINGLETON_ID = "global"

FIELDS = (
    "operando_s", "degradado_s", "interval_high_s", "interval_medium_s",
    "interval_low_s", "jitter_max_s", "timeout_ms", "maintenance_default_mode",
    "maintenance_default_multiplier", "auto_incident_creation",
)


class SettingsStore:
    """SQLite-backed storage for the settings singleton."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self) -> GlobalSettings | None:
        """The stored settings, or None when nobody has saved any yet."""
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM settings WHERE id = ?", (SINGLETON_ID,)).fetchone()
        return GlobalSettings.from_row(dict(row)) if row else None

    def upsert(self, **fields: Any) -> GlobalSettings:
        updates = {k: (v.value if hasattr(v, "value") else v) for k, v in fields.items() if k in FIELDS}
        if isinstance(updates.get("auto_incident_creation"), bool):
            updates["auto_incident_creation"] = int(updates["auto_incident_creation"])

        with self._db.connect() as conn:
            conn.execute("INSERT OR IGNORE INTO settings (id) VALUES (?)", (SINGLETON_ID,))
            if updates:
                set_clause = ", ".join(f"{k} = :{k}" for k in updates)
                updates["id"] = SINGLETON_ID
                conn.execute(f"UPDATE settings SET {set_clause} WHERE id = :id", updates)

        stored = self.get()
        assert stored is not None
        return stored
