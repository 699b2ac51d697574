"""Maintenance window API routes."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from healthwatch.api.deps import get_monitor, http_error
from healthwatch.health.errors import HealthwatchError

logger = logging.getLogger(__name__)

maintenance_router = APIRouter(prefix="/maintenance", tags=["maintenance"])


# ── Request models ───────────────────────────────────────────────────────

class CreateMaintenanceBody(BaseModel):
    service_id: str
    start: str
    end: str | None = None
    mode: str | None = "pause"
    multiplier: float | None = None
    title: str = ""
    active: bool = True


class UpdateMaintenanceBody(BaseModel):
    title: str | None = None
    start: str | None = None
    end: str | None = None
    mode: str | None = None
    multiplier: float | None = None
    active: bool | None = None


# ── Endpoints ────────────────────────────────────────────────────────────

@maintenance_router.get("")
def list_maintenance(
    request: Request, service_id: str | None = None, active: bool | None = None,
) -> dict[str, Any]:
    windows = get_monitor(request).list_maintenance(service_id=service_id, active=active)
    return {"maintenance": [w.to_dict() for w in windows], "count": len(windows)}


@maintenance_router.post("")
async def create_maintenance(body: CreateMaintenanceBody, request: Request) -> dict[str, Any]:
    """Schedule a window; the service is paused or slowed while it is in effect."""
    try:
        window = await get_monitor(request).create_maintenance(**body.model_dump())
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"maintenance": window.to_dict(), "status": "created"}


@maintenance_router.post("/finish-all")
async def finish_all_maintenance(request: Request) -> dict[str, Any]:
    count = await get_monitor(request).finish_all_maintenance()
    return {"finished": count}


@maintenance_router.delete("")
async def remove_all_maintenance(request: Request, hard: bool = False) -> dict[str, Any]:
    count = await get_monitor(request).remove_all_maintenance(hard=hard)
    return {"removed": count, "hard": hard}


@maintenance_router.get("/{window_id}")
def get_maintenance(window_id: str, request: Request) -> dict[str, Any]:
    try:
        window = get_monitor(request).get_maintenance(window_id)
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"maintenance": window.to_dict()}


@maintenance_router.patch("/{window_id}")
async def update_maintenance(window_id: str, body: UpdateMaintenanceBody, request: Request) -> dict[str, Any]:
    try:
        window = await get_monitor(request).update_maintenance(window_id, body.model_dump(exclude_none=True))
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"maintenance": window.to_dict(), "status": "updated"}


@maintenance_router.post("/{window_id}/finish")
async def finish_maintenance(window_id: str, request: Request) -> dict[str, Any]:
    """End a window now and resume normal probing."""
    try:
        window = await get_monitor(request).finish_maintenance(window_id)
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"maintenance": window.to_dict(), "status": "finished"}


@maintenance_router.delete("/{window_id}")
async def delete_maintenance(window_id: str, request: Request, hard: bool = False) -> dict[str, Any]:
    try:
        await get_monitor(request).remove_maintenance(window_id, hard=hard)
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"maintenance_id": window_id, "status": "deleted" if hard else "deactivated"}
