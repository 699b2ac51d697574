"""Scheduler registry — one probe chain per active service.

Each registered service gets one asyncio task that sleeps an initial
jitter, probes, then sleeps `interval + fresh jitter` and probes again,
until its registry entry is replaced or removed.

Every registration takes a new generation number. A chain only acts while
the registry still holds its generation, so a re-registration never leaves
two live chains for the same service: the old chain is cancelled if it is
sleeping, or finishes its in-flight probe and then exits.

Per-service lifecycle:

    unregistered -> scheduled -> probing -> scheduled -> ... -> unregistered
    unregistered -> paused (pause-mode maintenance) -> register() again
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from healthwatch.config import EngineConfig
from healthwatch.health.errors import HealthwatchError
from healthwatch.health.maintenance import MaintenanceOverlay
from healthwatch.health.models import MaintenanceMode, Service

logger = logging.getLogger(__name__)


class ChainPhase(str, Enum):
    SCHEDULED = "scheduled"
    PROBING = "probing"


@dataclass
class SchedulePlan:
    """Effective timing for one service chain (milliseconds)."""

    base_interval_ms: float
    interval_ms: float
    jitter_max_ms: float
    multiplier: float = 1.0
    source: str = "env"


@dataclass
class _Chain:
    service_id: str
    generation: int
    plan: SchedulePlan
    phase: ChainPhase = ChainPhase.SCHEDULED
    next_delay_ms: float = 0.0
    cycles: int = 0
    task: asyncio.Task[None] | None = field(default=None, repr=False)


class SchedulerRegistry:
    """Owns the per-service probe chains. Lifecycle bound to start()/stop()."""

    def __init__(
        self,
        services: Any,
        overlay: MaintenanceOverlay,
        config: Callable[[], EngineConfig],
        check: Callable[[Service], Awaitable[Any]],
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        sweep_interval_s: float = 60.0,
        on_resume: Callable[[Service], Any] | None = None,
    ) -> None:
        self._services = services
        self._overlay = overlay
        self._config = config
        self._check = check
        self._rng = rng or random.Random()
        self._sleep = sleep
        self.sweep_interval_s = sweep_interval_s
        self.on_resume = on_resume

        self._chains: dict[str, _Chain] = {}
        self._paused: set[str] = set()
        self._generations = itertools.count(1)
        self._sweep_task: asyncio.Task[None] | None = None
        self._running = False

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> int:
        """Register every active service and start the maintenance sweep."""
        if self._running:
            return len(self._chains)
        self._running = True

        count = self.refresh_all()
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="healthwatch-sweep")
        logger.info("Scheduler started: %d chains, %d paused", count, len(self._paused))
        return count

    async def stop(self) -> None:
        """Cancel every chain, including in-flight probes, and the sweep."""
        self._running = False
        tasks = [c.task for c in self._chains.values() if c.task]
        if self._sweep_task:
            tasks.append(self._sweep_task)
            self._sweep_task = None
        self._chains.clear()
        self._paused.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler stopped")

    # ── Planning ─────────────────────────────────────────────────────────

    def plan(self, service: Service) -> SchedulePlan | None:
        """Compute the chain timing for a service; None when maintenance pauses it."""
        window = self._overlay.active_window_for(service.id)
        mode = self._overlay.effective_mode(window)
        if window is not None and mode == MaintenanceMode.PAUSE:
            return None

        config = self._config()
        base = config.interval_for(service.importance)
        multiplier = 1.0
        if window is not None and mode == MaintenanceMode.REDUCE:
            multiplier = self._overlay.effective_multiplier(window)
            logger.debug("Reduced frequency for %s due to maintenance (multiplier=%s)", service.id, multiplier)

        return SchedulePlan(
            base_interval_ms=base,
            interval_ms=base * multiplier,
            jitter_max_ms=config.jitter_max_ms,
            multiplier=multiplier,
            source=config.source,
        )

    def draw_jitter(self, plan: SchedulePlan) -> float:
        """Uniform jitter in [0, min(jitter_max, interval)] milliseconds."""
        upper = max(0.0, min(plan.jitter_max_ms, plan.interval_ms))
        return self._rng.uniform(0, upper)

    # ── Registration ─────────────────────────────────────────────────────

    def register(self, service: Service) -> bool:
        """(Re)start the chain for a service. Returns True when a chain is scheduled."""
        self.unregister(service.id)
        if not service.active:
            return False

        plan = self.plan(service)
        if plan is None:
            self._paused.add(service.id)
            logger.info("Service %s is under maintenance (pause mode): chain not registered", service.id)
            return False

        chain = _Chain(service_id=service.id, generation=next(self._generations), plan=plan)
        chain.next_delay_ms = self.draw_jitter(plan)
        self._chains[service.id] = chain
        chain.task = asyncio.create_task(
            self._run_chain(chain), name=f"health-{service.id}-g{chain.generation}",
        )
        logger.info(
            "Registered chain for %s | importance=%s | interval=%.1fs | jitter=%.1fs | source=%s",
            service.id, service.importance.value, plan.interval_ms / 1000,
            chain.next_delay_ms / 1000, plan.source,
        )
        return True

    def reregister(self, service: Service) -> bool:
        """Re-register only if the service currently has a live chain."""
        if service.id not in self._chains:
            return False
        return self.register(service)

    def unregister(self, service_id: str) -> bool:
        """Stop a chain. Idempotent; an in-flight probe is left to finish."""
        self._paused.discard(service_id)
        chain = self._chains.pop(service_id, None)
        if chain is None:
            return False
        if chain.task and chain.phase == ChainPhase.SCHEDULED and chain.task is not asyncio.current_task():
            chain.task.cancel()
        logger.debug("Unregistered chain for %s (generation %d)", service_id, chain.generation)
        return True

    def refresh_all(self) -> int:
        """Re-register every active service, e.g. after a settings change."""
        try:
            services = self._services.list(active=True)
        except HealthwatchError as e:
            logger.warning("Could not list services for refresh: %s", e)
            return len(self._chains)

        scheduled = 0
        for service in services:
            try:
                if self.register(service):
                    scheduled += 1
            except HealthwatchError as e:
                logger.warning("Error re-registering chain for %s: %s", service.id, e)
        return scheduled

    # ── Introspection ────────────────────────────────────────────────────

    def is_scheduled(self, service_id: str) -> bool:
        return service_id in self._chains

    def is_paused(self, service_id: str) -> bool:
        return service_id in self._paused

    def generation_of(self, service_id: str) -> int | None:
        chain = self._chains.get(service_id)
        return chain.generation if chain else None

    def snapshot(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "scheduled": [
                {
                    "service_id": c.service_id,
                    "generation": c.generation,
                    "phase": c.phase.value,
                    "interval_ms": c.plan.interval_ms,
                    "multiplier": c.plan.multiplier,
                    "next_delay_ms": round(c.next_delay_ms, 1),
                    "cycles": c.cycles,
                }
                for c in self._chains.values()
            ],
            "paused": sorted(self._paused),
        }

    # ── Chains ───────────────────────────────────────────────────────────

    def _is_current(self, chain: _Chain) -> bool:
        current = self._chains.get(chain.service_id)
        return current is not None and current.generation == chain.generation

    async def _run_chain(self, chain: _Chain) -> None:
        """Sleep, probe, reschedule; exits as soon as the chain is stale."""
        while True:
            await self._sleep(chain.next_delay_ms / 1000)
            if not self._is_current(chain):
                logger.debug("Chain for %s (generation %d) is stale, stopping", chain.service_id, chain.generation)
                return

            chain.phase = ChainPhase.PROBING
            service = None
            try:
                service = await self._cycle(chain)
            except Exception:
                logger.exception("Scheduled check error for %s", chain.service_id)
            chain.phase = ChainPhase.SCHEDULED
            chain.cycles += 1

            if not self._is_current(chain):
                logger.debug("Chain for %s was unregistered, stopping", chain.service_id)
                return
            if service is not None:
                self._replan(chain, service)
                if not self._is_current(chain):
                    return
            chain.next_delay_ms = chain.plan.interval_ms + self.draw_jitter(chain.plan)

    async def _cycle(self, chain: _Chain) -> Service | None:
        service = self._services.get(chain.service_id)
        if service is None or not service.active:
            logger.info("Service %s is gone or inactive, stopping its chain", chain.service_id)
            if self._is_current(chain):
                self._chains.pop(chain.service_id, None)
            return None
        await self._check(service)
        return service

    def _replan(self, chain: _Chain, service: Service) -> None:
        """Pick up maintenance windows that started or ended since the last cycle."""
        try:
            plan = self.plan(service)
        except HealthwatchError as e:
            logger.warning("Could not re-plan chain for %s, keeping interval: %s", service.id, e)
            return
        if plan is None:
            self._chains.pop(service.id, None)
            self._paused.add(service.id)
            logger.info("Service %s entered pause-mode maintenance, chain stopped", service.id)
            return
        if plan.interval_ms != chain.plan.interval_ms:
            logger.info(
                "Interval for %s changed: %.1fs -> %.1fs",
                service.id, chain.plan.interval_ms / 1000, plan.interval_ms / 1000,
            )
        chain.plan = plan

    # ── Maintenance sweep ────────────────────────────────────────────────

    async def _sweep_loop(self) -> None:
        while self._running:
            await self._sleep(self.sweep_interval_s)
            try:
                self.sweep_paused()
            except Exception:
                logger.exception("Maintenance sweep error")

    def sweep_paused(self) -> list[str]:
        """Re-register paused services whose pause window is over."""
        resumed = []
        for service_id in list(self._paused):
            service = self._services.get(service_id)
            if service is None or not service.active:
                self._paused.discard(service_id)
                continue
            if not self._overlay.is_paused(service_id) and self.register(service):
                resumed.append(service_id)
                if self.on_resume:
                    self.on_resume(service)
        if resumed:
            logger.info("Resumed %d services after maintenance: %s", len(resumed), ", ".join(resumed))
        return resumed
