"""Tests for the SQLite stores."""

from __future__ import annotations

import re

import pytest

from conftest import ts
from healthwatch.health.errors import PersistenceError
from healthwatch.health.models import (
    Endpoint,
    HealthCheckRecord,
    Importance,
    Incident,
    IncidentState,
    IncidentUpdate,
    MaintenanceMode,
    MaintenanceWindow,
    Service,
    ServiceState,
    Severity,
)
from healthwatch.storage import Database, new_service_id


class TestDatabase:
    def test_creates_parent_dirs(self, tmp_path) -> None:
        db = Database(tmp_path / "nested" / "dir" / "hw.db")
        assert db.path.exists()

    def test_sqlite_errors_become_persistence_errors(self, db) -> None:
        with pytest.raises(PersistenceError):
            with db.connect() as conn:
                conn.execute("SELECT * FROM no_such_table")


class TestServiceStore:
    def test_id_format(self) -> None:
        assert re.fullmatch(r"srv-[a-z0-9]{8}", new_service_id())

    def test_create_and_get(self, services) -> None:
        services.create(Service(
            id="srv-abc12345", name="Kitchen Display",
            endpoint=Endpoint(url="http://kds.test/status", method="HEAD", expected_code=204, timeout_ms=5000),
            importance=Importance.HIGH, chain="burgerhaus",
        ))
        fetched = services.get("srv-abc12345")
        assert fetched.name == "Kitchen Display"
        assert fetched.endpoint.method == "HEAD"
        assert fetched.endpoint.expected_code == 204
        assert fetched.endpoint.timeout_ms == 5000
        assert fetched.importance == Importance.HIGH
        assert fetched.created_at and fetched.updated_at

    def test_get_missing(self, services) -> None:
        assert services.get("srv-nothere0") is None

    def test_list_filters(self, make_service, services) -> None:
        make_service("srv-a0000001", importance=Importance.HIGH, chain="burgerhaus")
        make_service("srv-a0000002", importance=Importance.LOW, chain="pizzaria")
        make_service("srv-a0000003", active=False, chain="burgerhaus")

        assert {s.id for s in services.list(active=True)} == {"srv-a0000001", "srv-a0000002"}
        assert [s.id for s in services.list(importance=Importance.HIGH)] == ["srv-a0000001"]
        assert {s.id for s in services.list(chain="burgerhaus")} == {"srv-a0000001", "srv-a0000003"}

    def test_update(self, make_service, services) -> None:
        before = make_service()
        updated = services.update(before.id, state=ServiceState.DEGRADED, manual_override=True, bogus=1)
        assert updated.state == ServiceState.DEGRADED
        assert updated.manual_override is True
        assert updated.updated_at >= before.updated_at

    def test_update_missing(self, services) -> None:
        assert services.update("srv-nothere0", state=ServiceState.DEGRADED) is None

    def test_summary_counts_active(self, make_service, services) -> None:
        make_service("srv-a0000001", state=ServiceState.INTERRUPTED)
        make_service("srv-a0000002")
        make_service("srv-a0000003", state=ServiceState.INTERRUPTED, active=False)
        counts = services.summary()
        assert counts["interrupted"] == 1
        assert counts["operational"] == 1
        assert counts["degraded"] == 0

    def test_distinct_filter_values(self, make_service, services) -> None:
        make_service("srv-a0000001", chain="pizzaria", restaurant="Centro")
        make_service("srv-a0000002", chain="burgerhaus", restaurant="Centro")
        make_service("srv-a0000003", chain="burgerhaus", state=ServiceState.DEGRADED)

        assert services.distinct("chain") == ["burgerhaus", "pizzaria"]
        assert services.distinct("restaurant") == ["Centro"]
        assert services.distinct("state") == ["degraded", "operational"]
        with pytest.raises(ValueError):
            services.distinct("name; DROP TABLE services")

    def test_delete(self, make_service, services) -> None:
        make_service()
        assert services.delete("srv-test0001") is True
        assert services.delete("srv-test0001") is False


class TestCheckStore:
    def test_recent_newest_first(self, add_records, checks) -> None:
        add_records("srv-test0001", [ServiceState.OPERATIONAL, ServiceState.DEGRADED, ServiceState.INTERRUPTED])
        recent = checks.recent("srv-test0001", 2)
        assert [r.state for r in recent] == [ServiceState.INTERRUPTED, ServiceState.DEGRADED]

    def test_unknown_state_reads_as_degraded(self, db, checks) -> None:
        with db.connect() as conn:
            conn.execute(
                "INSERT INTO health_checks (service_id, state, timestamp) VALUES (?, ?, ?)",
                ("srv-test0001", "exploded", ts()),
            )
        assert checks.recent("srv-test0001")[0].state == ServiceState.DEGRADED

    def test_list_filters(self, checks) -> None:
        checks.append(HealthCheckRecord(
            service_id="srv-a0000001", state=ServiceState.OPERATIONAL, response_time_ms=10,
            timestamp=ts(-3600), chain="burgerhaus",
        ))
        checks.append(HealthCheckRecord(
            service_id="srv-a0000002", state=ServiceState.INTERRUPTED, response_time_ms=10,
            timestamp=ts(-10), chain="pizzaria",
        ))

        assert len(checks.list()) == 2
        assert [r.service_id for r in checks.list(state="interrupted")] == ["srv-a0000002"]
        assert [r.service_id for r in checks.list(since=ts(-60))] == ["srv-a0000002"]
        assert [r.service_id for r in checks.list(until=ts(-60))] == ["srv-a0000001"]
        assert [r.service_id for r in checks.list(chain="burgerhaus")] == ["srv-a0000001"]

    def test_delete_by_service(self, add_records, checks) -> None:
        add_records("srv-test0001", [ServiceState.OPERATIONAL] * 3)
        add_records("srv-other001", [ServiceState.OPERATIONAL])
        assert checks.delete_by_service("srv-test0001") == 3
        assert checks.recent("srv-test0001") == []
        assert len(checks.recent("srv-other001")) == 1


class TestIncidentStore:
    def test_roundtrip_with_updates(self, incidents) -> None:
        incident = incidents.create(Incident(service_id="srv-test0001", title="Printer offline"))
        incidents.add_update(incident.id, IncidentUpdate(message="Technician on site"))

        fetched = incidents.get(incident.id)
        assert fetched.severity == Severity.HIGH
        assert [u.message for u in fetched.updates] == ["Technician on site"]

    def test_open_queries(self, incidents) -> None:
        incidents.create(Incident(service_id="srv-test0001", title="A"))
        incidents.create(Incident(service_id="srv-test0001", title="B", state=IncidentState.RESOLVED))

        assert [i.title for i in incidents.open_for_service("srv-test0001")] == ["A"]
        assert incidents.find_open_by_title("A") is not None
        assert incidents.find_open_by_title("B") is None

    def test_update_and_delete(self, incidents) -> None:
        incident = incidents.create(Incident(service_id="srv-test0001", title="A"))
        updated = incidents.update(incident.id, state=IncidentState.IN_PROGRESS)
        assert updated.state == IncidentState.IN_PROGRESS
        assert incidents.delete(incident.id) is True
        assert incidents.get(incident.id) is None


class TestMaintenanceStore:
    def test_roundtrip(self, windows) -> None:
        window = windows.create(MaintenanceWindow(
            service_id="srv-test0001", start=ts(), end=None, mode=MaintenanceMode.REDUCE, multiplier=2.5,
        ))
        fetched = windows.get(window.id)
        assert fetched.mode == MaintenanceMode.REDUCE
        assert fetched.multiplier == 2.5
        assert fetched.end is None

    def test_list_ordered_by_start(self, windows) -> None:
        windows.create(MaintenanceWindow(service_id="srv-test0001", start=ts(600), title="second"))
        windows.create(MaintenanceWindow(service_id="srv-test0001", start=ts(-600), title="first"))
        assert [w.title for w in windows.by_service("srv-test0001")] == ["first", "second"]

    def test_update_quoted_end_column(self, windows) -> None:
        window = windows.create(MaintenanceWindow(service_id="srv-test0001", start=ts(-600)))
        end = ts(-60)
        updated = windows.update(window.id, end=end, status="finished", active=False)
        assert updated.end == end
        assert updated.status == "finished"
        assert updated.active is False

    def test_find_active_by_title(self, windows) -> None:
        window = windows.create(MaintenanceWindow(service_id="srv-test0001", start=ts(), title="Firmware update"))
        assert windows.find_active_by_title("Firmware update").id == window.id
        windows.update(window.id, active=False)
        assert windows.find_active_by_title("Firmware update") is None


class TestSettingsStore:
    def test_empty_until_saved(self, settings_store) -> None:
        assert settings_store.get() is None

    def test_upsert_merges(self, settings_store) -> None:
        settings_store.upsert(interval_high_s=20)
        stored = settings_store.upsert(maintenance_default_mode=MaintenanceMode.PAUSE, auto_incident_creation=False)
        assert stored.interval_high_s == 20
        assert stored.maintenance_default_mode == MaintenanceMode.PAUSE
        assert stored.auto_incident_creation is False
