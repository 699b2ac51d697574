"""Shared helpers for the route modules."""

from __future__ import annotations

from fastapi import HTTPException, Request

from healthwatch.health.errors import ConflictError, HealthwatchError, NotFoundError, ValidationError
from healthwatch.monitor import Monitor


def get_monitor(request: Request) -> Monitor:
    return request.app.state.monitor  # type: ignore[no-any-return]


def http_error(e: HealthwatchError) -> HTTPException:
    """Map an engine error onto an HTTP status."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (ConflictError, ValidationError)):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
