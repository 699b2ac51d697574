"""SQLite persistence for services, probe records, incidents, maintenance and settings."""

from healthwatch.storage.checks import CheckStore
from healthwatch.storage.db import Database
from healthwatch.storage.incidents import IncidentStore
from healthwatch.storage.maintenance import MaintenanceStore
from healthwatch.storage.services import ServiceStore, new_service_id
from healthwatch.storage.settings import SettingsStore

__all__ = [
    "CheckStore",
    "Database",
    "IncidentStore",
    "MaintenanceStore",
    "ServiceStore",
    "SettingsStore",
    "new_service_id",
]
