"""Incident bookkeeping and the manual-override freeze it implies.

Opening an incident for a service sets its manual_override flag, which
freezes automatic state recomputation. Once no unresolved incident remains,
whether by resolution or removal, the flag is cleared and the state resynced.
"""

from __future__ import annotations

import logging
from typing import Any

from healthwatch.health.aggregator import StatusAggregator
from healthwatch.health.errors import ConflictError, NotFoundError
from healthwatch.health.models import (
    Incident,
    IncidentState,
    IncidentUpdate,
    Severity,
    utcnow_iso,
)

logger = logging.getLogger(__name__)


class IncidentDesk:
    """Creates, updates and closes incidents, keeping the service override in sync."""

    def __init__(self, incidents: Any, services: Any, aggregator: StatusAggregator) -> None:
        self.incidents = incidents
        self._services = services
        self._aggregator = aggregator

    def open(
        self,
        service_id: str,
        title: str,
        severity: Severity = Severity.HIGH,
        description: str = "",
        state: IncidentState = IncidentState.OPEN,
        started_at: str | None = None,
    ) -> Incident:
        """Create an incident; an open one with the same title is a conflict."""
        if title and self.incidents.find_open_by_title(title):
            raise ConflictError(f'An open incident titled "{title}" already exists')

        service = self._services.get(service_id)
        incident = Incident(
            service_id=service_id,
            title=title,
            severity=severity,
            state=state,
            description=description,
            started_at=started_at or utcnow_iso(),
            chain=service.chain if service else "",
            restaurant=service.restaurant if service else "",
        )
        self.incidents.create(incident)

        # Freeze automatic state changes but keep the current state
        if service is not None:
            self._services.update(service_id, manual_override=True)
        logger.info("Opened incident %s for %s: %s", incident.id, service_id, title)
        return incident

    def add_update(self, incident_id: str, message: str) -> Incident:
        incident = self.incidents.add_update(incident_id, IncidentUpdate(message=message))
        if incident is None:
            raise NotFoundError(f"Incident not found: {incident_id}")
        return incident

    def set_state(
        self, incident_id: str, state: IncidentState, resolved_at: str | None = None,
    ) -> Incident:
        """Move an incident to a new state; resolving lifts the service freeze."""
        incident = self.incidents.get(incident_id)
        if incident is None:
            raise NotFoundError(f"Incident not found: {incident_id}")

        fields: dict[str, Any] = {"state": state}
        if state == IncidentState.RESOLVED:
            fields["resolved_at"] = resolved_at or utcnow_iso()
        updated = self.incidents.update(incident_id, **fields)

        if state == IncidentState.RESOLVED and not self.incidents.open_for_service(incident.service_id):
            self._release(incident.service_id)
        return updated or incident

    def remove(self, incident_id: str) -> Incident:
        incident = self.incidents.get(incident_id)
        if incident is None:
            raise NotFoundError(f"Incident not found: {incident_id}")
        self.incidents.delete(incident_id)

        if not self.incidents.open_for_service(incident.service_id):
            self._release(incident.service_id)
        return incident

    def _release(self, service_id: str) -> None:
        if self._services.get(service_id) is None:
            return
        self._services.update(service_id, manual_override=False)
        self._aggregator.recompute(service_id)
        logger.info("Manual override cleared for %s, state resynchronized", service_id)
