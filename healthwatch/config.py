from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic_settings import BaseSettings

from healthwatch.health.errors import ConfigurationError, HealthwatchError
from healthwatch.health.models import GlobalSettings, Importance, MaintenanceMode

logger = logging.getLogger(__name__)

DEFAULT_MAINTENANCE_MULTIPLIER = 3.0


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Classification thresholds (seconds)
    health_check_operando_s: float = 1
    health_check_degradado_s: float = 7

    # Base polling interval per importance tier (seconds)
    health_check_interval_high_s: float = 30
    health_check_interval_medium_s: float = 60
    health_check_interval_low_s: float = 300
    health_check_jitter_max_s: float = 60

    # Probe defaults
    health_check_timeout_ms: int = 10_000
    health_check_expected_code_default: int = 200

    # Run one probe right after a service is registered
    health_check_run_immediate_on_create: bool = True
    # Fabricate probe results instead of calling real endpoints
    health_check_simulated: bool = False

    # How often paused services are re-evaluated (seconds)
    maintenance_sweep_s: float = 60

    # Storage
    db_path: str = "data/healthwatch.db"
    seed_file: str = "services.yaml"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"


settings = Settings()


@dataclass(frozen=True)
class EngineConfig:
    """Effective engine parameters: stored Settings row over env defaults.

    All durations are milliseconds.
    """

    operando_ms: float
    degradado_ms: float
    interval_high_ms: float
    interval_medium_ms: float
    interval_low_ms: float
    jitter_max_ms: float
    timeout_ms: int
    maintenance_default_mode: MaintenanceMode | None = None
    maintenance_default_multiplier: float | None = None
    auto_incident_creation: bool = True
    source: str = "env"  # env | settings

    def interval_for(self, importance: Importance) -> float:
        if importance == Importance.HIGH:
            return self.interval_high_ms
        if importance == Importance.LOW:
            return self.interval_low_ms
        return self.interval_medium_ms

    @classmethod
    def resolve(cls, env: Settings | None = None, stored: GlobalSettings | None = None) -> "EngineConfig":
        """Merge the stored settings over the environment defaults, field by field."""
        env = env or settings
        base = cls(
            operando_ms=_positive(env.health_check_operando_s, 1, "health_check_operando_s") * 1000,
            degradado_ms=_positive(env.health_check_degradado_s, 7, "health_check_degradado_s") * 1000,
            interval_high_ms=_positive(env.health_check_interval_high_s, 30, "health_check_interval_high_s") * 1000,
            interval_medium_ms=_positive(env.health_check_interval_medium_s, 60, "health_check_interval_medium_s") * 1000,
            interval_low_ms=_positive(env.health_check_interval_low_s, 300, "health_check_interval_low_s") * 1000,
            jitter_max_ms=_non_negative(env.health_check_jitter_max_s, 60, "health_check_jitter_max_s") * 1000,
            timeout_ms=int(_positive(env.health_check_timeout_ms, 10_000, "health_check_timeout_ms")),
        )
        if stored is None:
            return base

        return cls(
            operando_ms=_override_s(stored.operando_s, base.operando_ms, "operando_s"),
            degradado_ms=_override_s(stored.degradado_s, base.degradado_ms, "degradado_s"),
            interval_high_ms=_override_s(stored.interval_high_s, base.interval_high_ms, "interval_high_s"),
            interval_medium_ms=_override_s(stored.interval_medium_s, base.interval_medium_ms, "interval_medium_s"),
            interval_low_ms=_override_s(stored.interval_low_s, base.interval_low_ms, "interval_low_s"),
            jitter_max_ms=_override_s(stored.jitter_max_s, base.jitter_max_ms, "jitter_max_s"),
            timeout_ms=int(_override(stored.timeout_ms, base.timeout_ms, "timeout_ms")),
            maintenance_default_mode=stored.maintenance_default_mode,
            maintenance_default_multiplier=_override(
                stored.maintenance_default_multiplier, None, "maintenance_default_multiplier",
            ),
            auto_incident_creation=stored.auto_incident_creation,
            source="settings",
        )


def _number(value: Any, name: str, allow_zero: bool = False) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid {name}={value!r}") from e
    if number < 0 or (number == 0 and not allow_zero):
        raise ConfigurationError(f"Out of range {name}={value!r}")
    return number


def _positive(value: float, fallback: float, name: str) -> float:
    try:
        return _number(value, name)
    except ConfigurationError as e:
        logger.warning("%s, using %s", e, fallback)
        return fallback


def _non_negative(value: float, fallback: float, name: str) -> float:
    try:
        return _number(value, name, allow_zero=True)
    except ConfigurationError as e:
        logger.warning("%s, using %s", e, fallback)
        return fallback


def _override(value: float | None, fallback: float | None, name: str) -> float | None:
    # Unset or zero stored fields keep the fallback
    if not value:
        return fallback
    try:
        return _number(value, name)
    except ConfigurationError as e:
        logger.warning("Ignoring stored setting: %s", e)
        return fallback


def _override_s(value: float | None, fallback_ms: float, name: str) -> float:
    seconds = _override(value, None, name)
    return fallback_ms if seconds is None else seconds * 1000


class ConfigProvider:
    """Callable that returns the current EngineConfig.

    Reads the stored settings on every call so edits apply on the next
    cycle; a store failure falls back to the environment defaults.
    """

    def __init__(self, store: Any | None = None, env: Settings | None = None) -> None:
        self._store = store
        self._env = env or settings

    def __call__(self) -> EngineConfig:
        stored = None
        if self._store is not None:
            try:
                stored = self._store.get()
            except HealthwatchError as e:
                logger.warning("Could not read stored settings, using env defaults: %s", e)
        return EngineConfig.resolve(self._env, stored)
