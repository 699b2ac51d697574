"""Service API routes — fleet CRUD, on-demand checks, per-service history.

Endpoints:
  GET    /api/services                 — list services (filters: active, state, importance, chain, restaurant)
  POST   /api/services                 — register a service
  GET    /api/services/summary         — count of active services per state
  GET    /api/services/filters         — distinct states, chains and restaurants
  GET    /api/services/{id}            — service detail + recent checks
  PATCH  /api/services/{id}            — edit a service
  DELETE /api/services/{id}?hard=true  — deactivate (or delete) a service
  POST   /api/services/{id}/check      — run one probe now
  GET    /api/services/{id}/checks     — most recent checks
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from healthwatch.api.deps import get_monitor, http_error
from healthwatch.health.errors import HealthwatchError

logger = logging.getLogger(__name__)

service_router = APIRouter(prefix="/services", tags=["services"])


# ── Request models ───────────────────────────────────────────────────────

class EndpointBody(BaseModel):
    url: str
    method: str = "GET"
    expected_code: int | None = None
    timeout_ms: int | None = None


class UpdateEndpointBody(BaseModel):
    url: str | None = None
    method: str | None = None
    expected_code: int | None = None
    timeout_ms: int | None = None


class CreateServiceBody(BaseModel):
    name: str
    endpoint: EndpointBody
    importance: str = "medium"
    importance_pinned: bool = False
    active: bool = True
    chain: str = ""
    restaurant: str = ""


class UpdateServiceBody(BaseModel):
    name: str | None = None
    endpoint: UpdateEndpointBody | None = None
    importance: str | None = None
    importance_pinned: bool | None = None
    active: bool | None = None
    maintenance_mode: bool | None = None
    manual_override: bool | None = None
    chain: str | None = None
    restaurant: str | None = None


# ── Endpoints ────────────────────────────────────────────────────────────

@service_router.get("")
def list_services(
    request: Request,
    active: bool | None = None,
    state: str | None = None,
    importance: str | None = None,
    chain: str | None = None,
    restaurant: str | None = None,
) -> dict[str, Any]:
    """List services, optionally filtered."""
    services = get_monitor(request).list_services(
        active=active, state=state, importance=importance, chain=chain, restaurant=restaurant,
    )
    return {"services": [s.to_dict() for s in services], "count": len(services)}


@service_router.post("")
async def create_service(body: CreateServiceBody, request: Request) -> dict[str, Any]:
    """Register a new service and start probing it."""
    try:
        service = await get_monitor(request).create_service(body.model_dump())
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"service": service.to_dict(), "status": "created"}


@service_router.get("/summary")
def services_summary(request: Request) -> dict[str, Any]:
    """Count of active services per state."""
    counts = get_monitor(request).summary()
    return {"summary": counts, "total": sum(counts.values())}


@service_router.get("/filters")
def service_filters(request: Request) -> dict[str, Any]:
    """Distinct values for the dashboard filters."""
    return get_monitor(request).service_filters()


@service_router.get("/{service_id}")
def get_service(service_id: str, request: Request) -> dict[str, Any]:
    """Service detail with its latest checks and open incidents."""
    monitor = get_monitor(request)
    try:
        service = monitor.get_service(service_id)
    except HealthwatchError as e:
        raise http_error(e) from e

    data = service.to_dict()
    data["checks"] = [r.to_dict() for r in monitor.recent_checks(service_id)]
    data["open_incidents"] = [i.to_dict() for i in monitor.incidents.open_for_service(service_id)]
    data["scheduled"] = monitor.scheduler.is_scheduled(service_id)
    data["paused"] = monitor.scheduler.is_paused(service_id)
    return data


@service_router.patch("/{service_id}")
async def update_service(service_id: str, body: UpdateServiceBody, request: Request) -> dict[str, Any]:
    """Edit a service; the schedule follows the change."""
    try:
        service = await get_monitor(request).update_service(service_id, body.model_dump(exclude_none=True))
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"service": service.to_dict(), "status": "updated"}


@service_router.delete("/{service_id}")
async def delete_service(service_id: str, request: Request, hard: bool = False) -> dict[str, Any]:
    try:
        service = await get_monitor(request).remove_service(service_id, hard=hard)
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"service_id": service.id, "status": "deleted" if hard else "deactivated"}


@service_router.post("/{service_id}/check")
async def trigger_check(service_id: str, request: Request) -> dict[str, Any]:
    """Run one probe immediately."""
    try:
        record = await get_monitor(request).run_check_for_service(service_id)
    except HealthwatchError as e:
        raise http_error(e) from e
    if record is None:
        return {"service_id": service_id, "status": "skipped", "check": None}
    return {"service_id": service_id, "status": "checked", "check": record.to_dict()}


@service_router.get("/{service_id}/checks")
def service_checks(service_id: str, request: Request, limit: int = 5) -> dict[str, Any]:
    try:
        records = get_monitor(request).recent_checks(service_id, limit)
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"service_id": service_id, "checks": [r.to_dict() for r in records]}
