"""Incident API routes.

Opening an incident freezes the service's state; resolving it, or
removing the last open one, lets the aggregator take over again.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from healthwatch.api.deps import get_monitor, http_error
from healthwatch.health.errors import HealthwatchError

logger = logging.getLogger(__name__)

incident_router = APIRouter(prefix="/incidents", tags=["incidents"])


# ── Request models ───────────────────────────────────────────────────────

class CreateIncidentBody(BaseModel):
    service_id: str
    title: str
    severity: str = "high"
    description: str = ""
    state: str = "open"
    started_at: str | None = None


class IncidentStateBody(BaseModel):
    state: str
    resolved_at: str | None = None


class IncidentUpdateBody(BaseModel):
    message: str


# ── Endpoints ────────────────────────────────────────────────────────────

@incident_router.get("")
def list_incidents(
    request: Request,
    service_id: str | None = None,
    state: str | None = None,
    severity: str | None = None,
) -> dict[str, Any]:
    incidents = get_monitor(request).list_incidents(service_id=service_id, state=state, severity=severity)
    return {
        "incidents": [i.to_dict() for i in incidents],
        "open": sum(1 for i in incidents if i.is_open),
    }


@incident_router.post("")
def create_incident(body: CreateIncidentBody, request: Request) -> dict[str, Any]:
    try:
        incident = get_monitor(request).create_incident(**body.model_dump())
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"incident": incident.to_dict(), "status": "created"}


@incident_router.get("/{incident_id}")
def get_incident(incident_id: str, request: Request) -> dict[str, Any]:
    try:
        incident = get_monitor(request).get_incident(incident_id)
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"incident": incident.to_dict()}


@incident_router.patch("/{incident_id}/state")
def set_incident_state(incident_id: str, body: IncidentStateBody, request: Request) -> dict[str, Any]:
    """Move an incident to open, in-progress or resolved."""
    try:
        incident = get_monitor(request).set_incident_state(incident_id, body.state, body.resolved_at)
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"incident": incident.to_dict(), "status": "updated"}


@incident_router.post("/{incident_id}/updates")
def add_incident_update(incident_id: str, body: IncidentUpdateBody, request: Request) -> dict[str, Any]:
    try:
        incident = get_monitor(request).add_incident_update(incident_id, body.message)
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"incident": incident.to_dict(), "status": "updated"}


@incident_router.delete("/{incident_id}")
def delete_incident(incident_id: str, request: Request) -> dict[str, Any]:
    try:
        get_monitor(request).remove_incident(incident_id)
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"incident_id": incident_id, "status": "deleted"}
