"""Tests for the Monitor: service lifecycle, incidents, maintenance, settings, seed."""

from __future__ import annotations

import asyncio
import random
import re

import httpx
import pytest

from conftest import park, status_transport, ts
from healthwatch.config import Settings
from healthwatch.health.errors import ConflictError, NotFoundError, ValidationError
from healthwatch.health.models import (
    Importance,
    IncidentState,
    MaintenanceMode,
    ServiceState,
)
from healthwatch.monitor import Monitor

POS = {"name": "POS Gateway", "endpoint": {"url": "http://pos.test/health"}, "chain": "burgerhaus"}


def run(coro):
    return asyncio.run(coro)


# ── Services ─────────────────────────────────────────────────────────────────


class TestCreateService:
    def test_defaults_and_first_probe(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            scheduled = monitor.scheduler.is_scheduled(service.id)
            await monitor.stop()
            return service, scheduled

        service, scheduled = run(scenario())
        assert re.fullmatch(r"srv-[a-z0-9]{8}", service.id)
        assert service.endpoint.method == "GET"
        assert service.endpoint.expected_code == 200
        assert service.endpoint.timeout_ms == 10_000
        assert service.importance == Importance.MEDIUM
        assert service.state == ServiceState.OPERATIONAL
        assert scheduled is True
        assert len(monitor.recent_checks(service.id)) == 1

    def test_first_probe_does_not_escalate(self, tmp_path, env) -> None:
        monitor = Monitor(
            db_path=tmp_path / "m.db", env=env, transport=status_transport(503),
            sleep=park, seed_path=tmp_path / "none.yaml",
        )

        async def scenario():
            service = await monitor.create_service({**POS, "importance": "low"})
            await monitor.stop()
            return service

        service = run(scenario())
        assert service.importance == Importance.LOW
        assert service.state == ServiceState.INTERRUPTED

    def test_immediate_probe_can_be_disabled(self, tmp_path) -> None:
        env = Settings(_env_file=None, health_check_run_immediate_on_create=False)
        monitor = Monitor(db_path=tmp_path / "m.db", env=env, transport=status_transport(200), sleep=park)

        async def scenario():
            service = await monitor.create_service(POS)
            await monitor.stop()
            return service

        service = run(scenario())
        assert monitor.recent_checks(service.id) == []

    def test_name_required(self, monitor: Monitor) -> None:
        with pytest.raises(ValidationError):
            run(monitor.create_service({"endpoint": {"url": "http://pos.test"}}))

    def test_bad_importance(self, monitor: Monitor) -> None:
        with pytest.raises(ValidationError):
            run(monitor.create_service({**POS, "importance": "urgent"}))


class TestUpdateService:
    def test_importance_change_pins_and_reregisters(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            before = monitor.scheduler.generation_of(service.id)
            updated = await monitor.update_service(service.id, {"importance": "high"})
            after = monitor.scheduler.generation_of(service.id)
            await monitor.stop()
            return updated, before, after

        updated, before, after = run(scenario())
        assert updated.importance == Importance.HIGH
        assert updated.importance_pinned is True
        assert after > before
        assert len(monitor.recent_checks(updated.id)) == 2

    def test_explicit_pin_is_respected(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            updated = await monitor.update_service(service.id, {"importance": "low", "importance_pinned": False})
            await monitor.stop()
            return updated

        assert run(scenario()).importance_pinned is False

    def test_override_only_change_keeps_chain(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            before = monitor.scheduler.generation_of(service.id)
            await monitor.update_service(service.id, {"manual_override": True})
            after = monitor.scheduler.generation_of(service.id)
            await monitor.stop()
            return service, before, after

        service, before, after = run(scenario())
        assert before == after
        assert len(monitor.recent_checks(service.id)) == 1
        assert monitor.get_service(service.id).manual_override is True

    def test_endpoint_merge(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            updated = await monitor.update_service(service.id, {"endpoint": {"timeout_ms": 2000}})
            await monitor.stop()
            return updated

        updated = run(scenario())
        assert updated.endpoint.url == "http://pos.test/health"
        assert updated.endpoint.timeout_ms == 2000

    def test_deactivate_and_restore(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            await monitor.update_service(service.id, {"active": False})
            off = monitor.scheduler.is_scheduled(service.id)
            restored = await monitor.update_service(service.id, {"active": True})
            on = monitor.scheduler.is_scheduled(service.id)
            await monitor.stop()
            return restored, off, on

        restored, off, on = run(scenario())
        assert (off, on) == (False, True)
        assert restored.deleted_at is None
        # neither deactivation nor restore probes
        assert len(monitor.recent_checks(restored.id)) == 1

    def test_missing_service(self, monitor: Monitor) -> None:
        with pytest.raises(NotFoundError):
            run(monitor.update_service("srv-nothere0", {"name": "x"}))


class TestRemoveService:
    def test_soft_delete(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            removed = await monitor.remove_service(service.id)
            scheduled = monitor.scheduler.is_scheduled(service.id)
            await monitor.stop()
            return removed, scheduled

        removed, scheduled = run(scenario())
        assert scheduled is False
        stored = monitor.get_service(removed.id)
        assert stored.active is False
        assert stored.deleted_at
        assert len(monitor.recent_checks(removed.id)) == 1

    def test_hard_delete_drops_records(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            monitor.create_incident(service.id, "Card terminal down")
            await monitor.create_maintenance(service.id, start=ts(3600))
            await monitor.remove_service(service.id, hard=True)
            await monitor.stop()
            return service

        service = run(scenario())
        with pytest.raises(NotFoundError):
            monitor.get_service(service.id)
        assert monitor.checks.recent(service.id) == []
        assert monitor.list_incidents(service_id=service.id) == []
        assert monitor.list_maintenance(service_id=service.id) == []


class TestOnDemandCheck:
    def test_run_check(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            record = await monitor.run_check_for_service(service.id)
            await monitor.stop()
            return record

        record = run(scenario())
        assert record.state == ServiceState.OPERATIONAL
        assert record.chain == "burgerhaus"

    def test_unknown_service(self, monitor: Monitor) -> None:
        with pytest.raises(NotFoundError):
            run(monitor.run_check_for_service("srv-nothere0"))


# ── Incidents ────────────────────────────────────────────────────────────────


class TestIncidents:
    def test_lifecycle(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            await monitor.stop()
            return service

        service = run(scenario())
        incident = monitor.create_incident(service.id, "Card terminal down", severity="medium")
        assert monitor.get_service(service.id).manual_override is True

        with pytest.raises(ConflictError):
            monitor.create_incident(service.id, "Card terminal down")

        monitor.add_incident_update(incident.id, "Vendor contacted")
        resolved = monitor.set_incident_state(incident.id, "resolved")
        assert resolved.state == IncidentState.RESOLVED
        assert monitor.get_service(service.id).manual_override is False
        assert [u.message for u in monitor.get_incident(incident.id).updates] == ["Vendor contacted"]

    def test_validation(self, monitor: Monitor) -> None:
        with pytest.raises(NotFoundError):
            monitor.create_incident("srv-nothere0", "x")


# ── Maintenance ──────────────────────────────────────────────────────────────


class TestMaintenance:
    def test_pause_window_lifecycle(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            window = await monitor.create_maintenance(service.id, start=ts(-60), end=ts(3600))
            flagged = monitor.get_service(service.id).maintenance_mode
            paused = monitor.scheduler.is_paused(service.id)
            skipped = await monitor.run_check_for_service(service.id)

            finished = await monitor.finish_maintenance(window.id)
            cleared = monitor.get_service(service.id).maintenance_mode
            scheduled = monitor.scheduler.is_scheduled(service.id)
            await monitor.stop()
            return window, flagged, paused, skipped, finished, cleared, scheduled

        window, flagged, paused, skipped, finished, cleared, scheduled = run(scenario())
        assert window.mode == MaintenanceMode.PAUSE
        assert flagged is True
        assert paused is True
        assert skipped is None
        assert finished.status == "finished"
        assert cleared is False
        assert scheduled is True

    def test_reduce_window_slows_chain(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service({**POS, "importance": "high"})
            await monitor.create_maintenance(service.id, start=ts(-60), mode="reduce", multiplier=2)
            snap = monitor.scheduler_snapshot()
            await monitor.stop()
            return snap

        (chain,) = run(scenario())["scheduled"]
        assert chain["interval_ms"] == 60_000
        assert chain["multiplier"] == 2.0

    def test_expired_window_clears_flag_on_next_check(self, tmp_path, env) -> None:
        codes = [200]
        monitor = Monitor(
            db_path=tmp_path / "m.db", env=env,
            transport=httpx.MockTransport(lambda request: httpx.Response(codes[-1])),
            sleep=park, seed_path=tmp_path / "none.yaml",
        )

        async def scenario():
            service = await monitor.create_service(POS)
            window = await monitor.create_maintenance(service.id, start=ts(-60), end=ts(3600), mode="reduce")
            flagged = monitor.get_service(service.id).maintenance_mode
            # The window runs out without anyone touching it
            monitor.maintenance.update(window.id, end=ts(-1))
            codes.append(503)
            for _ in range(5):
                await monitor.run_check_for_service(service.id)
            await monitor.stop()
            return flagged, monitor.get_service(service.id)

        flagged, service = run(scenario())
        assert flagged is True
        assert service.maintenance_mode is False
        assert service.state == ServiceState.INTERRUPTED

    def test_future_window_leaves_flag_unset(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            await monitor.create_maintenance(service.id, start=ts(600), end=ts(3600))
            flagged = monitor.get_service(service.id).maintenance_mode
            paused = monitor.scheduler.is_paused(service.id)
            await monitor.run_check_for_service(service.id)
            await monitor.stop()
            return flagged, paused, monitor.get_service(service.id).maintenance_mode

        flagged, paused, after_check = run(scenario())
        assert flagged is False
        assert paused is False
        assert after_check is False

    def test_sweep_resume_clears_flag(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            window = await monitor.create_maintenance(service.id, start=ts(-60), end=ts(3600))
            monitor.maintenance.update(window.id, end=ts(-1))
            resumed = monitor.scheduler.sweep_paused()
            await monitor.stop()
            return service, resumed

        service, resumed = run(scenario())
        assert resumed == [service.id]
        assert monitor.get_service(service.id).maintenance_mode is False

    def test_duplicate_active_title(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            first = await monitor.create_maintenance(service.id, title="Firmware update", start=ts(-60))
            try:
                with pytest.raises(ConflictError):
                    await monitor.create_maintenance(service.id, title="Firmware update", start=ts(600))
                await monitor.remove_maintenance(first.id)
                again = await monitor.create_maintenance(service.id, title="Firmware update", start=ts(600))
            finally:
                await monitor.stop()
            return first, again

        first, again = run(scenario())
        assert again.id != first.id
        assert again.title == "Firmware update"

    @pytest.mark.parametrize("kwargs", [
        {"start": ts(600), "end": ts(60)},
        {"start": ts(), "multiplier": 0},
        {"start": ts(), "mode": "sleep"},
        {"start": "yesterday-ish"},
    ])
    def test_validation(self, monitor: Monitor, kwargs) -> None:
        async def scenario():
            service = await monitor.create_service(POS)
            try:
                await monitor.create_maintenance(service.id, **kwargs)
            finally:
                await monitor.stop()

        with pytest.raises(ValidationError):
            run(scenario())

    def test_unknown_service(self, monitor: Monitor) -> None:
        with pytest.raises(NotFoundError):
            run(monitor.create_maintenance("srv-nothere0", start=ts()))

    def test_remove_and_bulk(self, monitor: Monitor) -> None:
        async def scenario():
            a = await monitor.create_service(POS)
            b = await monitor.create_service({**POS, "name": "Kitchen Display"})
            wa = await monitor.create_maintenance(a.id, start=ts(-60))
            await monitor.create_maintenance(b.id, start=ts(-60))
            removed = await monitor.remove_maintenance(wa.id)
            finished = await monitor.finish_all_maintenance()
            hard = await monitor.remove_all_maintenance(hard=True)
            await monitor.stop()
            return a, b, removed, finished, hard

        a, b, removed, finished, hard = run(scenario())
        assert removed.active is False
        assert finished == 1
        assert hard == 2
        assert monitor.list_maintenance() == []
        assert monitor.get_service(a.id).maintenance_mode is False
        assert monitor.get_service(b.id).maintenance_mode is False


# ── Settings ─────────────────────────────────────────────────────────────────


class TestSettings:
    def test_defaults(self, monitor: Monitor) -> None:
        current = monitor.get_settings()
        assert current["interval_high_s"] == 30
        assert current["source"] == "env"

    def test_update_refreshes_chains(self, monitor: Monitor) -> None:
        async def scenario():
            service = await monitor.create_service({**POS, "importance": "high"})
            before = monitor.scheduler.generation_of(service.id)
            effective = await monitor.update_settings({"interval_high_s": 10, "jitter_max_s": 1})
            after = monitor.scheduler.generation_of(service.id)
            snap = monitor.scheduler_snapshot()
            await monitor.stop()
            return effective, before, after, snap

        effective, before, after, snap = run(scenario())
        assert effective["interval_high_s"] == 10
        assert effective["source"] == "settings"
        assert after > before
        assert snap["scheduled"][0]["interval_ms"] == 10_000

    def test_rejects_non_positive(self, monitor: Monitor) -> None:
        with pytest.raises(ValidationError):
            run(monitor.update_settings({"interval_low_s": 0}))


# ── Seed + lifecycle ─────────────────────────────────────────────────────────


class TestSeed:
    def test_start_seeds_and_schedules(self, tmp_path, env) -> None:
        seed = tmp_path / "services.yaml"
        seed.write_text(
            "services:\n"
            "  - id: srv-pos00001\n"
            "    name: POS Gateway\n"
            "    url: http://pos.test/health\n"
            "    importance: high\n"
            "  - name: Kitchen Display\n"
            "    endpoint:\n"
            "      url: http://kds.test/status\n"
            "      expected_code: 204\n"
            "  - just a string\n",
            encoding="utf-8",
        )
        monitor = Monitor(
            db_path=tmp_path / "m.db", env=env, transport=status_transport(200),
            rng=random.Random(1), sleep=park, seed_path=seed,
        )

        async def scenario():
            count = await monitor.start()
            again = monitor.load_seed()
            await monitor.stop()
            return count, again

        count, again = run(scenario())
        assert count == 2
        assert again == []
        pos = monitor.get_service("srv-pos00001")
        assert pos.importance == Importance.HIGH
        kds = next(s for s in monitor.list_services() if s.name == "Kitchen Display")
        assert kds.endpoint.expected_code == 204
        # seeding never probes
        assert monitor.list_checks() == []

    def test_missing_seed_file(self, monitor: Monitor) -> None:
        assert monitor.load_seed() == []
