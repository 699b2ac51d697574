"""FastAPI server for the monitoring engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from healthwatch import __version__
from healthwatch.api.check_routes import broadcast_result, check_router
from healthwatch.api.incident_routes import incident_router
from healthwatch.api.maintenance_routes import maintenance_router
from healthwatch.api.service_routes import service_router
from healthwatch.api.settings_routes import settings_router
from healthwatch.monitor import Monitor

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the monitor on startup, stop every chain on shutdown."""
    monitor = getattr(app.state, "monitor", None)
    if monitor is None:
        monitor = Monitor(on_result=broadcast_result)
        app.state.monitor = monitor

    try:
        count = await monitor.start()
        logger.info("Monitor started with %d scheduled services", count)
    except Exception:
        logger.exception("Monitor failed to start")

    yield

    await monitor.stop()


def create_app(monitor: Monitor | None = None) -> FastAPI:
    app = FastAPI(
        title="Healthwatch - Service Health Monitor",
        version=__version__,
        lifespan=lifespan,
    )
    if monitor is not None:
        app.state.monitor = monitor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(service_router, prefix="/api")
    app.include_router(check_router, prefix="/api")
    app.include_router(incident_router, prefix="/api")
    app.include_router(maintenance_router, prefix="/api")
    app.include_router(settings_router, prefix="/api")

    return app


app = create_app()
