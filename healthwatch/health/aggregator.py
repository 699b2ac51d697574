"""Status aggregator — rolling service state from the most recent probes.

The newest record weighs most: the i-th newest (0-indexed) of a window of
`limit` records weighs `limit - i`. Shares are the normalized weight per
state bucket. Resolution, most severe first:

    interrupted >= 0.5  -> interrupted
    impacted    >= 0.5  -> impacted
    degraded    >= 0.5  -> degraded
    operational >= 0.6  -> operational
    otherwise the largest share wins (ties go to the more severe state)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from healthwatch.health.errors import HealthwatchError
from healthwatch.health.models import ServiceState, Service

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 5

# Most severe first; also the tie-break order
SEVERITY_ORDER = (
    ServiceState.INTERRUPTED,
    ServiceState.IMPACTED,
    ServiceState.DEGRADED,
    ServiceState.OPERATIONAL,
)

MAJORITY = 0.5
OPERATIONAL_MAJORITY = 0.6


def _bucket(state: ServiceState | str) -> ServiceState:
    if isinstance(state, ServiceState):
        return state
    try:
        return ServiceState(str(state))
    except ValueError:
        # Unknown states count as a mild problem
        return ServiceState.DEGRADED


def weighted_pairs(states: Sequence[ServiceState | str], limit: int = DEFAULT_WINDOW) -> list[tuple[ServiceState, int]]:
    """Pair each of the newest `limit` states (newest first) with its weight."""
    return [(_bucket(s), limit - i) for i, s in enumerate(states[:limit])]


def shares(pairs: Iterable[tuple[ServiceState, int]]) -> dict[ServiceState, float]:
    """Normalized weight per state bucket; all zero for an empty input."""
    totals = {s: 0 for s in ServiceState}
    for state, weight in pairs:
        totals[_bucket(state)] += weight
    weight_sum = sum(totals.values())
    if weight_sum <= 0:
        return {s: 0.0 for s in ServiceState}
    return {s: w / weight_sum for s, w in totals.items()}


def resolve(bucket_shares: dict[ServiceState, float]) -> ServiceState:
    """Pick the aggregate state from bucket shares."""
    if bucket_shares.get(ServiceState.INTERRUPTED, 0.0) >= MAJORITY:
        return ServiceState.INTERRUPTED
    if bucket_shares.get(ServiceState.IMPACTED, 0.0) >= MAJORITY:
        return ServiceState.IMPACTED
    if bucket_shares.get(ServiceState.DEGRADED, 0.0) >= MAJORITY:
        return ServiceState.DEGRADED
    if bucket_shares.get(ServiceState.OPERATIONAL, 0.0) >= OPERATIONAL_MAJORITY:
        return ServiceState.OPERATIONAL

    top = max(bucket_shares.get(s, 0.0) for s in SEVERITY_ORDER)
    if top <= 0:
        return ServiceState.DEGRADED
    return next(s for s in SEVERITY_ORDER if bucket_shares.get(s, 0.0) == top)


def aggregate(states: Sequence[ServiceState | str], limit: int = DEFAULT_WINDOW) -> ServiceState:
    """Aggregate state for a newest-first sequence of probe states."""
    return resolve(shares(weighted_pairs(states, limit)))


class StatusAggregator:
    """Recomputes and stores a service's state from its recent records."""

    def __init__(self, services: Any, checks: Any, limit: int = DEFAULT_WINDOW) -> None:
        self._services = services
        self._checks = checks
        self.limit = limit

    def recompute(self, service_id: str, limit: int | None = None) -> Service | None:
        """Write the aggregate state back to the service if it changed.

        Frozen (returned unchanged) while the service has a manual override
        or is in maintenance mode, or when it has no records yet.
        """
        limit = limit or self.limit
        service = self._services.get(service_id)
        if service is None:
            return None
        if service.manual_override or service.maintenance_mode:
            logger.debug(
                "State of %s frozen (manual_override=%s maintenance_mode=%s)",
                service_id, service.manual_override, service.maintenance_mode,
            )
            return service

        try:
            records = self._checks.recent(service_id, limit)
        except HealthwatchError as e:
            logger.warning("Could not read recent checks for %s: %s", service_id, e)
            return service
        if not records:
            return service

        bucket_shares = shares(weighted_pairs([r.state for r in records], limit))
        new_state = resolve(bucket_shares)
        logger.debug(
            "Weighted checks for %s: %s -> %s",
            service_id, {s.value: round(v, 3) for s, v in bucket_shares.items()}, new_state.value,
        )

        if service.state != new_state:
            logger.info("State of %s: %s -> %s", service_id, service.state.value, new_state.value)
            return self._services.update(service_id, state=new_state) or service
        return service
