"""Maintenance overlay — is a service under maintenance right now, and how?

A window is in effect when it is active, unfinished, has started and has not ended
(an open-ended window stays in effect until finished or deactivated).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from healthwatch.config import DEFAULT_MAINTENANCE_MULTIPLIER, EngineConfig
from healthwatch.health.errors import HealthwatchError
from healthwatch.health.models import MaintenanceMode, MaintenanceWindow

logger = logging.getLogger(__name__)


class MaintenanceOverlay:
    """Resolves the active maintenance window and its scheduling mode."""

    def __init__(self, windows: Any, config: Callable[[], EngineConfig]) -> None:
        self._windows = windows  # anything with by_service(service_id)
        self._config = config

    def active_window_for(
        self, service_id: str, now: datetime | None = None,
    ) -> MaintenanceWindow | None:
        """First window in effect for the service, or None."""
        try:
            windows = self._windows.by_service(service_id)
        except HealthwatchError as e:
            logger.warning("Could not read maintenance windows for %s: %s", service_id, e)
            return None
        return next((w for w in windows if w.in_effect(now)), None)

    def effective_mode(self, window: MaintenanceWindow | None) -> MaintenanceMode | None:
        if window is None:
            return None
        if window.mode:
            return window.mode
        return self._config().maintenance_default_mode

    def effective_multiplier(self, window: MaintenanceWindow | None) -> float:
        if window is not None and window.multiplier:
            return float(window.multiplier)
        default = self._config().maintenance_default_multiplier
        return float(default) if default else DEFAULT_MAINTENANCE_MULTIPLIER

    def mode_for(self, service_id: str, now: datetime | None = None) -> MaintenanceMode | None:
        """Effective mode of the service's active window, None when not under maintenance."""
        return self.effective_mode(self.active_window_for(service_id, now))

    def is_paused(self, service_id: str, now: datetime | None = None) -> bool:
        return self.mode_for(service_id, now) == MaintenanceMode.PAUSE
