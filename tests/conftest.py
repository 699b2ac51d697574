"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import random
from datetime import timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest

from healthwatch.config import ConfigProvider, Settings
from healthwatch.health.models import (
    Endpoint,
    HealthCheckRecord,
    Importance,
    Service,
    ServiceState,
    utcnow,
)
from healthwatch.monitor import Monitor
from healthwatch.storage import (
    CheckStore,
    Database,
    IncidentStore,
    MaintenanceStore,
    ServiceStore,
    SettingsStore,
)


async def park(_seconds: float) -> None:
    """Sleep replacement that never wakes up, so chains stay scheduled."""
    await asyncio.Event().wait()


def ts(offset_s: float = 0) -> str:
    """ISO timestamp relative to now."""
    return (utcnow() + timedelta(seconds=offset_s)).isoformat()


@pytest.fixture
def env() -> Settings:
    return Settings(
        _env_file=None,
        health_check_operando_s=1,
        health_check_degradado_s=7,
        health_check_interval_high_s=30,
        health_check_interval_medium_s=60,
        health_check_interval_low_s=300,
        health_check_jitter_max_s=60,
        health_check_timeout_ms=10_000,
        health_check_run_immediate_on_create=True,
        health_check_simulated=False,
    )


@pytest.fixture
def db(tmp_path: Path) -> Database:
    return Database(tmp_path / "healthwatch.db")


@pytest.fixture
def services(db: Database) -> ServiceStore:
    return ServiceStore(db)


@pytest.fixture
def checks(db: Database) -> CheckStore:
    return CheckStore(db)


@pytest.fixture
def incidents(db: Database) -> IncidentStore:
    return IncidentStore(db)


@pytest.fixture
def windows(db: Database) -> MaintenanceStore:
    return MaintenanceStore(db)


@pytest.fixture
def settings_store(db: Database) -> SettingsStore:
    return SettingsStore(db)


@pytest.fixture
def config(settings_store: SettingsStore, env: Settings) -> ConfigProvider:
    return ConfigProvider(settings_store, env)


@pytest.fixture
def make_service(services: ServiceStore):
    """Factory storing a service with sensible defaults."""

    def _make(service_id: str = "srv-test0001", **overrides: Any) -> Service:
        fields: dict[str, Any] = {
            "name": "POS Gateway",
            "endpoint": Endpoint(url="http://pos.test/health"),
            "importance": Importance.MEDIUM,
        }
        fields.update(overrides)
        return services.create(Service(id=service_id, **fields))

    return _make


@pytest.fixture
def add_records(checks: CheckStore):
    """Append records oldest first; returns them newest first."""

    def _add(service_id: str, states: list[ServiceState]) -> list[HealthCheckRecord]:
        added = []
        for i, state in enumerate(states):
            added.append(checks.append(HealthCheckRecord(
                service_id=service_id, state=state, response_time_ms=100.0,
                timestamp=ts(-100 + i),
            )))
        return list(reversed(added))

    return _add


def status_transport(status_code: int = 200) -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(status_code))


@pytest.fixture
def monitor(tmp_path: Path, env: Settings) -> Monitor:
    """Monitor over a temp database whose probes always answer 200."""
    return Monitor(
        db_path=tmp_path / "monitor.db",
        env=env,
        transport=status_transport(200),
        rng=random.Random(7),
        sleep=park,
        seed_path=tmp_path / "services.yaml",
    )
