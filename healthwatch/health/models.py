"""Domain models for the monitoring engine.

Services, probe records, maintenance windows, incidents and the stored
global settings row. All timestamps are ISO-8601 strings in UTC.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_iso() -> str:
    return utcnow().isoformat()


def parse_ts(value: str | datetime | None) -> datetime | None:
    """Parse an ISO timestamp into an aware UTC datetime (None passes through)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def short_id() -> str:
    return uuid.uuid4().hex[:12]


# ── Enums ────────────────────────────────────────────────────────────────────


class ServiceState(str, Enum):
    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    IMPACTED = "impacted"
    INTERRUPTED = "interrupted"


class Importance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _IMPORTANCE_RANK[self]

    @classmethod
    def parse(cls, value: Any, default: "Importance | None" = None) -> "Importance":
        try:
            return cls(str(value).lower())
        except ValueError:
            return default or cls.MEDIUM


_IMPORTANCE_RANK = {Importance.LOW: 0, Importance.MEDIUM: 1, Importance.HIGH: 2}


class MaintenanceMode(str, Enum):
    PAUSE = "pause"
    REDUCE = "reduce"


class IncidentState(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


# ── Service ──────────────────────────────────────────────────────────────────


@dataclass
class Endpoint:
    """Where and how a service is probed."""

    url: str = ""
    method: str = "GET"
    expected_code: int = 200
    timeout_ms: int | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> "Endpoint":
        raw = raw or {}
        return cls(
            url=raw.get("url", ""),
            method=(raw.get("method") or "GET").upper(),
            expected_code=int(raw.get("expected_code") or 200),
            timeout_ms=raw.get("timeout_ms"),
        )


@dataclass
class Service:
    """A monitored unit of the fleet."""

    id: str
    name: str = ""
    endpoint: Endpoint = field(default_factory=Endpoint)
    importance: Importance = Importance.MEDIUM
    importance_pinned: bool = False
    state: ServiceState = ServiceState.OPERATIONAL
    active: bool = True
    maintenance_mode: bool = False
    manual_override: bool = False
    chain: str = ""  # restaurant chain the service belongs to
    restaurant: str = ""
    created_at: str = ""
    updated_at: str = ""
    deleted_at: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Service":
        endpoint = row.get("endpoint") or "{}"
        if isinstance(endpoint, str):
            endpoint = json.loads(endpoint)
        return cls(
            id=row["id"],
            name=row.get("name") or "",
            endpoint=Endpoint.from_dict(endpoint),
            importance=Importance.parse(row.get("importance")),
            importance_pinned=bool(row.get("importance_pinned", 0)),
            state=ServiceState(row.get("state") or ServiceState.OPERATIONAL.value),
            active=bool(row.get("active", 1)),
            maintenance_mode=bool(row.get("maintenance_mode", 0)),
            manual_override=bool(row.get("manual_override", 0)),
            chain=row.get("chain") or "",
            restaurant=row.get("restaurant") or "",
            created_at=row.get("created_at") or "",
            updated_at=row.get("updated_at") or "",
            deleted_at=row.get("deleted_at"),
        )


# ── Probe records ────────────────────────────────────────────────────────────


@dataclass
class HealthCheckRecord:
    """Immutable result of one probe."""

    service_id: str
    state: ServiceState
    response_time_ms: float
    response_code: int = 0
    message: str = ""
    importance: Importance = Importance.MEDIUM
    timestamp: str = ""
    chain: str = ""
    restaurant: str = ""
    id: int | None = None

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = utcnow_iso()

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "HealthCheckRecord":
        raw_state = row.get("state") or ""
        try:
            state = ServiceState(raw_state)
        except ValueError:
            # Unknown persisted states are read as degraded
            state = ServiceState.DEGRADED
        return cls(
            id=row.get("id"),
            service_id=row["service_id"],
            state=state,
            response_time_ms=row.get("response_time_ms") or 0.0,
            response_code=row.get("response_code") or 0,
            message=row.get("message") or "",
            importance=Importance.parse(row.get("importance")),
            timestamp=row.get("timestamp") or "",
            chain=row.get("chain") or "",
            restaurant=row.get("restaurant") or "",
        )


# ── Maintenance ──────────────────────────────────────────────────────────────


@dataclass
class MaintenanceWindow:
    """A time range during which probing is paused or slowed."""

    service_id: str
    start: str
    end: str | None = None
    active: bool = True
    mode: MaintenanceMode | None = None
    multiplier: float | None = None
    title: str = ""
    status: str = "scheduled"  # scheduled | finished
    created_at: str = ""
    id: str = field(default_factory=short_id)

    def in_effect(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        start = parse_ts(self.start)
        if not self.active or self.status == "finished" or start is None or start > now:
            return False
        end = parse_ts(self.end)
        return end is None or end >= now

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "MaintenanceWindow":
        mode = row.get("mode")
        return cls(
            id=row["id"],
            service_id=row["service_id"],
            title=row.get("title") or "",
            start=row.get("start") or "",
            end=row.get("end"),
            active=bool(row.get("active", 1)),
            mode=MaintenanceMode(mode) if mode else None,
            multiplier=row.get("multiplier"),
            status=row.get("status") or "scheduled",
            created_at=row.get("created_at") or "",
        )


# ── Incidents ────────────────────────────────────────────────────────────────


@dataclass
class IncidentUpdate:
    message: str
    timestamp: str = field(default_factory=utcnow_iso)


@dataclass
class Incident:
    """An open or resolved outage report for a service."""

    service_id: str
    title: str
    severity: Severity = Severity.HIGH
    state: IncidentState = IncidentState.OPEN
    description: str = ""
    started_at: str = field(default_factory=utcnow_iso)
    resolved_at: str | None = None
    updates: list[IncidentUpdate] = field(default_factory=list)
    chain: str = ""
    restaurant: str = ""
    id: str = field(default_factory=short_id)

    @property
    def is_open(self) -> bool:
        return self.state != IncidentState.RESOLVED

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Incident":
        updates = row.get("updates") or "[]"
        if isinstance(updates, str):
            updates = json.loads(updates)
        return cls(
            id=row["id"],
            service_id=row["service_id"],
            title=row.get("title") or "",
            description=row.get("description") or "",
            severity=Severity(row.get("severity") or Severity.HIGH.value),
            state=IncidentState(row.get("state") or IncidentState.OPEN.value),
            started_at=row.get("started_at") or "",
            resolved_at=row.get("resolved_at"),
            updates=[IncidentUpdate(**u) for u in updates],
            chain=row.get("chain") or "",
            restaurant=row.get("restaurant") or "",
        )


# ── Stored global settings ───────────────────────────────────────────────────


@dataclass
class GlobalSettings:
    """The persisted settings singleton. Unset fields fall back to env defaults."""

    operando_s: float | None = None
    degradado_s: float | None = None
    interval_high_s: float | None = None
    interval_medium_s: float | None = None
    interval_low_s: float | None = None
    jitter_max_s: float | None = None
    timeout_ms: int | None = None
    maintenance_default_mode: MaintenanceMode | None = None
    maintenance_default_multiplier: float | None = None
    auto_incident_creation: bool = True

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "GlobalSettings":
        mode = row.get("maintenance_default_mode")
        auto = row.get("auto_incident_creation")
        return cls(
            operando_s=row.get("operando_s"),
            degradado_s=row.get("degradado_s"),
            interval_high_s=row.get("interval_high_s"),
            interval_medium_s=row.get("interval_medium_s"),
            interval_low_s=row.get("interval_low_s"),
            jitter_max_s=row.get("jitter_max_s"),
            timeout_ms=row.get("timeout_ms"),
            maintenance_default_mode=MaintenanceMode(mode) if mode else None,
            maintenance_default_multiplier=row.get("maintenance_default_multiplier"),
            auto_incident_creation=True if auto is None else bool(auto),
        )
