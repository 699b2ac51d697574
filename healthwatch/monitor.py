"""Monitor — the application object behind the API and the CLI.

Owns the SQLite stores and the engine components and wires them together:

    SchedulerRegistry -> ProbeExecutor -> CheckStore
                                       -> StatusAggregator
                                       -> EscalationEngine -> IncidentDesk

Every mutation that changes how a service should be scheduled (create,
edit, delete, maintenance, settings) goes through here so the registry
stays in sync with the stores.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import asdict
from pathlib import Path
from typing import Any

import httpx
import yaml

from healthwatch.config import ConfigProvider, EngineConfig, Settings, settings
from healthwatch.health.aggregator import StatusAggregator
from healthwatch.health.errors import ConflictError, NotFoundError, ValidationError
from healthwatch.health.escalation import EscalationEngine
from healthwatch.health.incidents import IncidentDesk
from healthwatch.health.maintenance import MaintenanceOverlay
from healthwatch.health.models import (
    Endpoint,
    HealthCheckRecord,
    Importance,
    Incident,
    IncidentState,
    MaintenanceMode,
    MaintenanceWindow,
    Service,
    Severity,
    parse_ts,
    utcnow_iso,
)
from healthwatch.health.probe import ProbeExecutor
from healthwatch.health.scheduler import SchedulerRegistry
from healthwatch.storage import (
    CheckStore,
    Database,
    IncidentStore,
    MaintenanceStore,
    ServiceStore,
    SettingsStore,
    new_service_id,
)

logger = logging.getLogger(__name__)

# Fields a user may change on a service
SERVICE_FIELDS = {
    "name", "endpoint", "importance", "importance_pinned", "active",
    "maintenance_mode", "manual_override", "chain", "restaurant",
}


class Monitor:
    """Stores plus engine, with the operations the CRUD layer calls."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        env: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        on_result: Callable[[HealthCheckRecord], Any] | None = None,
        seed_path: str | Path | None = None,
    ) -> None:
        self.env = env or settings
        self.db = Database(db_path or self.env.db_path)
        self.seed_path = Path(seed_path or self.env.seed_file)

        self.services = ServiceStore(self.db)
        self.checks = CheckStore(self.db)
        self.incidents = IncidentStore(self.db)
        self.maintenance = MaintenanceStore(self.db)
        self.settings_store = SettingsStore(self.db)

        self.config = ConfigProvider(self.settings_store, self.env)
        self.overlay = MaintenanceOverlay(self.maintenance, self.config)
        self.aggregator = StatusAggregator(self.services, self.checks)
        self.desk = IncidentDesk(self.incidents, self.services, self.aggregator)
        self.scheduler = SchedulerRegistry(
            self.services,
            self.overlay,
            self.config,
            check=self._scheduled_check,
            rng=rng,
            sleep=sleep,
            sweep_interval_s=self.env.maintenance_sweep_s,
            on_resume=self._refresh_maintenance_flag,
        )
        self.escalation = EscalationEngine(
            self.services,
            self.checks,
            self.desk,
            self.config,
            on_importance_change=self.scheduler.reregister,
        )
        self.executor = ProbeExecutor(
            self.checks,
            self.overlay,
            self.config,
            aggregator=self.aggregator,
            escalation=self.escalation,
            simulated=self.env.health_check_simulated,
            transport=transport,
            rng=rng,
            on_result=on_result,
        )

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> int:
        """Seed the fleet, then register a chain for every active service."""
        self.load_seed()
        return await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()

    async def _scheduled_check(self, service: Service) -> HealthCheckRecord | None:
        return await self._check(service)

    # ── Seed ─────────────────────────────────────────────────────────────

    def load_seed(self) -> list[Service]:
        """Create services listed in the YAML seed file that do not exist yet."""
        if not self.seed_path.exists():
            logger.debug("Seed file not found: %s", self.seed_path)
            return []

        try:
            raw = yaml.safe_load(self.seed_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to parse %s: %s", self.seed_path, e)
            return []

        existing = {s.id for s in self.services.list()}
        names = {s.name for s in self.services.list()}
        created = []
        for entry in raw.get("services", []) or []:
            try:
                if entry.get("id") in existing or (not entry.get("id") and entry.get("name") in names):
                    continue
                created.append(self._build_and_store(_seed_entry(entry)))
            except (AttributeError, KeyError, TypeError, ValueError, ValidationError) as e:
                logger.warning("Skipping malformed seed entry: %s", e)

        if created:
            logger.info("Seeded %d services from %s", len(created), self.seed_path)
        return created

    # ── Services ─────────────────────────────────────────────────────────

    def list_services(self, **filters: Any) -> list[Service]:
        return self.services.list(**filters)

    def get_service(self, service_id: str) -> Service:
        service = self.services.get(service_id)
        if service is None:
            raise NotFoundError(f"Service not found: {service_id}")
        return service

    def summary(self) -> dict[str, int]:
        return self.services.summary()

    def service_filters(self) -> dict[str, list[str]]:
        """Distinct states, chains and restaurants across the fleet."""
        return {
            "states": self.services.distinct("state"),
            "chains": self.services.distinct("chain"),
            "restaurants": self.services.distinct("restaurant"),
        }

    async def create_service(self, data: dict[str, Any]) -> Service:
        """Persist a new service, optionally probe it once, and register its chain."""
        service = self._build_and_store(data)

        if self.env.health_check_run_immediate_on_create and service.active:
            await self._check(service, skip_escalation=True)
            self.aggregator.recompute(service.id)
            service = self.get_service(service.id)

        self.scheduler.register(service)
        return service

    def _build_and_store(self, data: dict[str, Any]) -> Service:
        if not data.get("name"):
            raise ValidationError("Service name is required")

        config = self.config()
        raw_endpoint = dict(data.get("endpoint") or {})
        endpoint = Endpoint(
            url=raw_endpoint.get("url", ""),
            method=(raw_endpoint.get("method") or "GET").upper(),
            expected_code=int(raw_endpoint.get("expected_code") or self.env.health_check_expected_code_default),
            timeout_ms=int(raw_endpoint.get("timeout_ms") or config.timeout_ms),
        )
        importance = _parse_importance(data.get("importance", Importance.MEDIUM))

        service = Service(
            id=data.get("id") or new_service_id(),
            name=data["name"],
            endpoint=endpoint,
            importance=importance,
            importance_pinned=bool(data.get("importance_pinned", False)),
            active=bool(data.get("active", True)),
            chain=data.get("chain") or "",
            restaurant=data.get("restaurant") or "",
        )
        self.services.create(service)
        logger.info("Created service %s (%s, importance=%s)", service.id, service.name, importance.value)
        return service

    async def update_service(self, service_id: str, changes: dict[str, Any]) -> Service:
        """Apply a user edit and bring the schedule in line with it."""
        current = self.get_service(service_id)
        changes = {k: v for k, v in changes.items() if k in SERVICE_FIELDS and v is not None}
        if not changes:
            return current

        if "endpoint" in changes:
            merged = asdict(current.endpoint)
            merged.update({k: v for k, v in dict(changes["endpoint"]).items() if v is not None})
            changes["endpoint"] = Endpoint.from_dict(merged)
        if "importance" in changes:
            changes["importance"] = _parse_importance(changes["importance"])
            # A user-chosen importance sticks unless the pin is set explicitly
            changes.setdefault("importance_pinned", True)

        restoring = changes.get("active") is True and not current.active
        if restoring:
            changes["deleted_at"] = None
        toggles_maintenance = (
            "maintenance_mode" in changes and bool(changes["maintenance_mode"]) != current.maintenance_mode
        )
        only_override = set(changes) == {"manual_override"}

        service = self.services.update(service_id, **changes)
        if service is None:
            raise NotFoundError(f"Service not found: {service_id}")

        if not service.active:
            self.scheduler.unregister(service_id)
            return service

        if current.manual_override and not service.manual_override:
            service = self.aggregator.recompute(service_id) or service

        if not (restoring or toggles_maintenance or only_override):
            await self._check(service)
            service = self.get_service(service_id)

        if not only_override:
            self.scheduler.register(service)
        return service

    async def remove_service(self, service_id: str, hard: bool = False) -> Service:
        """Soft delete deactivates; hard delete also drops every record of the service."""
        service = self.get_service(service_id)
        self.scheduler.unregister(service_id)

        if not hard:
            updated = self.services.update(service_id, active=False, deleted_at=utcnow_iso())
            logger.info("Deactivated service %s", service_id)
            return updated or service

        self.checks.delete_by_service(service_id)
        for incident in self.incidents.by_service(service_id):
            self.incidents.delete(incident.id)
        for window in self.maintenance.by_service(service_id):
            self.maintenance.delete(window.id)
        self.services.delete(service_id)
        logger.info("Deleted service %s and its records", service_id)
        return service

    async def run_check_for_service(
        self, service_id: str, skip_escalation: bool = False,
    ) -> HealthCheckRecord | None:
        """On-demand probe; None when maintenance or a missing URL skipped it."""
        service = self.get_service(service_id)
        return await self._check(service, skip_escalation=skip_escalation)

    def recent_checks(self, service_id: str, limit: int = 5) -> list[HealthCheckRecord]:
        self.get_service(service_id)
        return self.checks.recent(service_id, limit)

    def list_checks(self, **filters: Any) -> list[HealthCheckRecord]:
        return self.checks.list(**filters)

    # ── Incidents ────────────────────────────────────────────────────────

    def list_incidents(self, **filters: Any) -> list[Incident]:
        return self.incidents.list(**filters)

    def get_incident(self, incident_id: str) -> Incident:
        incident = self.incidents.get(incident_id)
        if incident is None:
            raise NotFoundError(f"Incident not found: {incident_id}")
        return incident

    def create_incident(
        self,
        service_id: str,
        title: str,
        severity: Severity | str = Severity.HIGH,
        description: str = "",
        state: IncidentState | str = IncidentState.OPEN,
        started_at: str | None = None,
    ) -> Incident:
        self.get_service(service_id)
        if not title:
            raise ValidationError("Incident title is required")
        return self.desk.open(
            service_id=service_id,
            title=title,
            severity=_parse_enum(Severity, severity, "severity"),
            description=description,
            state=_parse_enum(IncidentState, state, "state"),
            started_at=started_at,
        )

    def set_incident_state(
        self, incident_id: str, state: IncidentState | str, resolved_at: str | None = None,
    ) -> Incident:
        return self.desk.set_state(incident_id, _parse_enum(IncidentState, state, "state"), resolved_at)

    def add_incident_update(self, incident_id: str, message: str) -> Incident:
        if not message:
            raise ValidationError("Update message is required")
        return self.desk.add_update(incident_id, message)

    def remove_incident(self, incident_id: str) -> Incident:
        return self.desk.remove(incident_id)

    # ── Maintenance ──────────────────────────────────────────────────────

    def list_maintenance(self, **filters: Any) -> list[MaintenanceWindow]:
        return self.maintenance.list(**filters)

    def get_maintenance(self, window_id: str) -> MaintenanceWindow:
        window = self.maintenance.get(window_id)
        if window is None:
            raise NotFoundError(f"Maintenance window not found: {window_id}")
        return window

    async def create_maintenance(
        self,
        service_id: str,
        start: str,
        end: str | None = None,
        mode: MaintenanceMode | str | None = MaintenanceMode.PAUSE,
        multiplier: float | None = None,
        title: str = "",
        active: bool = True,
    ) -> MaintenanceWindow:
        """Open a window; the service is in maintenance mode while it is in effect."""
        self.get_service(service_id)
        if title and self.maintenance.find_active_by_title(title):
            raise ConflictError(f'A maintenance window titled "{title}" already exists')
        start_ts, end_ts = _validate_range(start, end)
        window = MaintenanceWindow(
            service_id=service_id,
            title=title,
            start=start_ts,
            end=end_ts,
            active=active,
            mode=_parse_enum(MaintenanceMode, mode or MaintenanceMode.PAUSE, "mode"),
            multiplier=_validate_multiplier(multiplier),
            created_at=utcnow_iso(),
        )
        self.maintenance.create(window)
        logger.info(
            "Maintenance %s for %s (%s, %s -> %s)",
            window.id, service_id, window.mode.value, window.start, window.end or "open",
        )
        self._sync_maintenance_mode(service_id)
        return window

    async def update_maintenance(self, window_id: str, changes: dict[str, Any]) -> MaintenanceWindow:
        window = self.get_maintenance(window_id)
        changes = {k: v for k, v in changes.items() if v is not None}
        if "start" in changes or "end" in changes:
            start, end = _validate_range(changes.get("start", window.start), changes.get("end", window.end))
            changes["start"], changes["end"] = start, end
        if "mode" in changes:
            changes["mode"] = _parse_enum(MaintenanceMode, changes["mode"], "mode")
        if "multiplier" in changes:
            changes["multiplier"] = _validate_multiplier(changes["multiplier"])

        updated = self.maintenance.update(window_id, **changes) or window
        self._sync_maintenance_mode(window.service_id)
        return updated

    async def finish_maintenance(self, window_id: str) -> MaintenanceWindow:
        """End a window now."""
        window = self.get_maintenance(window_id)
        updated = self.maintenance.update(window_id, end=utcnow_iso(), status="finished") or window
        self._sync_maintenance_mode(window.service_id)
        logger.info("Finished maintenance %s for %s", window_id, window.service_id)
        return updated

    async def remove_maintenance(self, window_id: str, hard: bool = False) -> MaintenanceWindow:
        window = self.get_maintenance(window_id)
        if hard:
            self.maintenance.delete(window_id)
        else:
            window = self.maintenance.update(window_id, active=False) or window
        self._sync_maintenance_mode(window.service_id)
        return window

    async def finish_all_maintenance(self) -> int:
        windows = [w for w in self.maintenance.list(active=True) if w.status != "finished"]
        for w in windows:
            await self.finish_maintenance(w.id)
        return len(windows)

    async def remove_all_maintenance(self, hard: bool = False) -> int:
        windows = self.maintenance.list()
        for w in windows:
            await self.remove_maintenance(w.id, hard=hard)
        return len(windows)

    def _sync_maintenance_mode(self, service_id: str) -> None:
        """Refresh the service's maintenance flag and reschedule it."""
        service = self.services.get(service_id)
        if service is None:
            return
        service = self._refresh_maintenance_flag(service)
        if service.active:
            # register() pauses, reduces or restores depending on the windows now in effect
            self.scheduler.register(service)

    def _refresh_maintenance_flag(self, service: Service) -> Service:
        """Set maintenance_mode to whether a window is in effect now.

        Windows start and expire on their own, so this runs before every
        probe as well as after every window edit.
        """
        enabled = self.overlay.active_window_for(service.id) is not None
        if enabled == service.maintenance_mode:
            return service
        updated = self.services.update(service.id, maintenance_mode=enabled) or service
        logger.info("Maintenance mode for %s %s", service.id, "enabled" if enabled else "cleared")
        if not enabled:
            updated = self.aggregator.recompute(service.id) or updated
        return updated

    async def _check(self, service: Service, skip_escalation: bool = False) -> HealthCheckRecord | None:
        service = self._refresh_maintenance_flag(service)
        return await self.executor.run(service, skip_escalation=skip_escalation)

    # ── Settings ─────────────────────────────────────────────────────────

    def get_settings(self) -> dict[str, Any]:
        """Effective settings, in the units they are edited in."""
        return _settings_view(self.config())

    async def update_settings(self, changes: dict[str, Any]) -> dict[str, Any]:
        """Store new settings and re-register every chain under them."""
        changes = {k: v for k, v in changes.items() if v is not None}
        for key in ("operando_s", "degradado_s", "interval_high_s", "interval_medium_s",
                    "interval_low_s", "timeout_ms", "maintenance_default_multiplier"):
            if key in changes and float(changes[key]) <= 0:
                raise ValidationError(f"{key} must be greater than 0")
        if "jitter_max_s" in changes and float(changes["jitter_max_s"]) < 0:
            raise ValidationError("jitter_max_s must not be negative")
        if "maintenance_default_mode" in changes:
            changes["maintenance_default_mode"] = _parse_enum(
                MaintenanceMode, changes["maintenance_default_mode"], "maintenance_default_mode",
            )

        self.settings_store.upsert(**changes)
        count = self.scheduler.refresh_all()
        logger.info("Settings updated (%s), %d chains re-registered", ", ".join(sorted(changes)), count)
        return self.get_settings()

    def scheduler_snapshot(self) -> dict[str, Any]:
        return self.scheduler.snapshot()


# ── Helpers ──────────────────────────────────────────────────────────────────


def _parse_importance(value: Any) -> Importance:
    return _parse_enum(Importance, value, "importance")


def _parse_enum(enum_cls: Any, value: Any, name: str) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {name}: {value!r} (expected one of {allowed})") from None


def _validate_range(start: Any, end: Any) -> tuple[str, str | None]:
    try:
        start_dt = parse_ts(start)
        end_dt = parse_ts(end)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid maintenance timestamp: {e}") from e
    if start_dt is None:
        raise ValidationError("Maintenance start is required")
    if end_dt is not None and end_dt <= start_dt:
        raise ValidationError("Maintenance end must be after start")
    return start_dt.isoformat(), end_dt.isoformat() if end_dt else None


def _validate_multiplier(value: Any) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid multiplier: {value!r}") from e
    if number <= 0:
        raise ValidationError("Multiplier must be greater than 0")
    return number


def _seed_entry(raw: dict[str, Any]) -> dict[str, Any]:
    """Seed entries may list endpoint fields at the top level."""
    endpoint = dict(raw.get("endpoint") or {})
    for key in ("url", "method", "expected_code", "timeout_ms"):
        if key in raw:
            endpoint.setdefault(key, raw[key])
    return {
        "id": raw.get("id"),
        "name": raw.get("name", raw.get("id")),
        "endpoint": endpoint,
        "importance": raw.get("importance", "medium"),
        "importance_pinned": raw.get("importance_pinned", False),
        "chain": raw.get("chain", ""),
        "restaurant": raw.get("restaurant", ""),
    }


def _settings_view(config: EngineConfig) -> dict[str, Any]:
    return {
        "operando_s": config.operando_ms / 1000,
        "degradado_s": config.degradado_ms / 1000,
        "interval_high_s": config.interval_high_ms / 1000,
        "interval_medium_s": config.interval_medium_ms / 1000,
        "interval_low_s": config.interval_low_ms / 1000,
        "jitter_max_s": config.jitter_max_ms / 1000,
        "timeout_ms": config.timeout_ms,
        "maintenance_default_mode": (
            config.maintenance_default_mode.value if config.maintenance_default_mode else None
        ),
        "maintenance_default_multiplier": config.maintenance_default_multiplier,
        "auto_incident_creation": config.auto_incident_creation,
        "source": config.source,
    }
