"""Escalation engine — reacts to each new probe record.

Two independent reactions:

- Importance escalation: a failing probe raises the service's importance
  tier (and so its probe frequency). Importance only ever goes up
  automatically; pinned services are never touched.
- Auto-incident: after three consecutive non-operational probes, open an
  incident (or append a note to the one already open).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from healthwatch.config import EngineConfig
from healthwatch.health.errors import HealthwatchError
from healthwatch.health.incidents import IncidentDesk
from healthwatch.health.models import (
    HealthCheckRecord,
    Importance,
    Incident,
    Service,
    ServiceState,
    Severity,
)

logger = logging.getLogger(__name__)

FAILURE_STREAK = 3

DESIRED_IMPORTANCE = {
    ServiceState.INTERRUPTED: Importance.HIGH,
    ServiceState.IMPACTED: Importance.HIGH,
    ServiceState.DEGRADED: Importance.MEDIUM,
    ServiceState.OPERATIONAL: Importance.LOW,
}

INCIDENT_SEVERITY = {
    ServiceState.INTERRUPTED: Severity.HIGH,
    ServiceState.IMPACTED: Severity.HIGH,
    ServiceState.DEGRADED: Severity.MEDIUM,
}


def desired_importance(state: ServiceState) -> Importance:
    return DESIRED_IMPORTANCE.get(state, Importance.MEDIUM)


@dataclass
class EscalationResult:
    importance: Importance | None = None  # set when importance was raised
    incident: Incident | None = None  # set when an incident was opened or updated
    incident_created: bool = False


class EscalationEngine:
    """Importance bumps and auto-incidents driven by new probe records."""

    def __init__(
        self,
        services: Any,
        checks: Any,
        desk: IncidentDesk,
        config: Callable[[], EngineConfig],
        on_importance_change: Callable[[Service], Any] | None = None,
    ) -> None:
        self._services = services
        self._checks = checks
        self._desk = desk
        self._config = config
        self.on_importance_change = on_importance_change

    def on_record_created(
        self, service: Service, record: HealthCheckRecord, skip_escalation: bool = False,
    ) -> EscalationResult:
        result = EscalationResult()
        try:
            result.importance = self.escalate_importance(service, record, skip_escalation)
        except HealthwatchError as e:
            logger.warning("Error escalating importance for %s: %s", service.id, e)
        try:
            result.incident, result.incident_created = self.maybe_report_incident(service, record)
        except HealthwatchError as e:
            logger.warning("Error reporting incident for %s: %s", service.id, e)
        return result

    def escalate_importance(
        self, service: Service, record: HealthCheckRecord, skip_escalation: bool = False,
    ) -> Importance | None:
        """Raise importance toward what the record's state calls for. Never lowers it."""
        if skip_escalation:
            logger.debug("Skipping auto-escalation for %s (skip_escalation)", service.id)
            return None
        if service.importance_pinned:
            logger.debug("Skipping auto-escalation for %s (importance pinned)", service.id)
            return None

        desired = desired_importance(record.state)
        if desired.rank <= service.importance.rank:
            return None

        updated = self._services.update(service.id, importance=desired)
        logger.info("Increased importance of %s from %s to %s", service.id, service.importance.value, desired.value)
        if updated is not None and self.on_importance_change:
            self.on_importance_change(updated)
        return desired

    def maybe_report_incident(
        self, service: Service, record: HealthCheckRecord,
    ) -> tuple[Incident | None, bool]:
        """Open or update an incident after a sustained failure streak."""
        if not self._config().auto_incident_creation:
            logger.debug("Auto incident creation is disabled by settings")
            return None, False
        if record.state == ServiceState.OPERATIONAL:
            return None, False

        recent = self._checks.recent(service.id, FAILURE_STREAK)
        failures = [r for r in recent if r.state != ServiceState.OPERATIONAL]
        if len(failures) < FAILURE_STREAK:
            return None, False

        open_incidents = self._desk.incidents.open_for_service(service.id)
        if open_incidents:
            incident = self._desk.add_update(
                open_incidents[0].id,
                f"Auto-update: {len(failures)} consecutive failing checks",
            )
            return incident, False

        incident = self._desk.open(
            service_id=service.id,
            title=f"Auto: {service.display_name} - {record.state.value}",
            severity=INCIDENT_SEVERITY.get(record.state, Severity.HIGH),
            description=(
                f"Auto-detected {len(failures)} consecutive failing health checks. "
                f"Last message: {record.message}"
            ),
        )
        logger.info("Auto-created incident for %s after %d failed checks", service.id, len(failures))
        return incident, True
