"""Probe record routes and the live result stream.

Endpoints:
  GET /api/checks         — probe records (filters: service_id, state, since, until, chain, restaurant)
  GET /api/checks/stream  — SSE stream of live probe results
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from healthwatch.api.deps import get_monitor
from healthwatch.health.models import HealthCheckRecord

logger = logging.getLogger(__name__)

check_router = APIRouter(prefix="/checks", tags=["checks"])

# ── SSE subscriber list (in-memory) ──────────────────────────────────────────

_sse_queues: list[asyncio.Queue[dict[str, Any]]] = []


def broadcast_result(record: HealthCheckRecord) -> None:
    """Push a probe record to all SSE subscribers."""
    data = record.to_dict()
    for q in _sse_queues:
        try:
            q.put_nowait(data)
        except asyncio.QueueFull:
            pass  # slow consumer, drop


@check_router.get("")
def list_checks(
    request: Request,
    service_id: str | None = None,
    state: str | None = None,
    since: str | None = None,
    until: str | None = None,
    chain: str | None = None,
    restaurant: str | None = None,
    limit: int = 50,
) -> dict[str, Any]:
    records = get_monitor(request).list_checks(
        service_id=service_id, state=state, since=since, until=until,
        chain=chain, restaurant=restaurant, limit=limit,
    )
    return {"checks": [r.to_dict() for r in records], "count": len(records)}


@check_router.get("/stream")
async def check_stream(request: Request) -> StreamingResponse:
    """Server-Sent Events stream of probe results as they are recorded."""
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=50)
    _sse_queues.append(queue)

    async def event_generator():
        try:
            summary = get_monitor(request).summary()
            yield f"event: init\ndata: {json.dumps(summary)}\n\n"

            while True:
                if await request.is_disconnected():
                    break
                try:
                    data = await asyncio.wait_for(queue.get(), timeout=30)
                    yield f"event: check\ndata: {json.dumps(data)}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            _sse_queues.remove(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
