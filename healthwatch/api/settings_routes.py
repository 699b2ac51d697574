"""Global settings and scheduler introspection."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from healthwatch.api.deps import get_monitor, http_error
from healthwatch.health.errors import HealthwatchError

settings_router = APIRouter(tags=["settings"])


class UpdateSettingsBody(BaseModel):
    operando_s: float | None = None
    degradado_s: float | None = None
    interval_high_s: float | None = None
    interval_medium_s: float | None = None
    interval_low_s: float | None = None
    jitter_max_s: float | None = None
    timeout_ms: int | None = None
    maintenance_default_mode: str | None = None
    maintenance_default_multiplier: float | None = None
    auto_incident_creation: bool | None = None


@settings_router.get("/settings")
def get_settings(request: Request) -> dict[str, Any]:
    """Effective settings: stored values over environment defaults."""
    return {"settings": get_monitor(request).get_settings()}


@settings_router.put("/settings")
async def update_settings(body: UpdateSettingsBody, request: Request) -> dict[str, Any]:
    """Save settings; every chain is re-registered under the new values."""
    try:
        effective = await get_monitor(request).update_settings(body.model_dump(exclude_none=True))
    except HealthwatchError as e:
        raise http_error(e) from e
    return {"settings": effective, "status": "updated"}


@settings_router.get("/scheduler")
def scheduler_state(request: Request) -> dict[str, Any]:
    return get_monitor(request).scheduler_snapshot()
