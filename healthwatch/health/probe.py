"""Probe executor — one HTTP health probe, classified into a service state.

Outcomes are recorded as data, never raised:

- bad URL / non-http(s) scheme   -> interrupted, code 0, no network call
- timeout                        -> retried once with min(timeout*2, 30s);
                                    a second timeout records degraded
- connection error, no response  -> interrupted
- HTTP response                  -> classify(code, elapsed, expected)

After persisting, the record flows through the status aggregator and the
escalation engine.
"""

from __future__ import annotations

import logging
import random
import ssl
import time
from collections.abc import Callable
from typing import Any

import httpx

from healthwatch.config import EngineConfig
from healthwatch.health.aggregator import StatusAggregator
from healthwatch.health.errors import (
    HealthwatchError,
    ProtocolError,
    TransportError,
    ValidationError,
)
from healthwatch.health.escalation import EscalationEngine
from healthwatch.health.maintenance import MaintenanceOverlay
from healthwatch.health.models import HealthCheckRecord, Service, ServiceState

logger = logging.getLogger(__name__)

MAX_RETRY_TIMEOUT_MS = 30_000
SUPPORTED_SCHEMES = ("http", "https")


def classify(
    response_code: int,
    elapsed_ms: float,
    expected_code: int,
    operando_ms: float,
    degradado_ms: float,
) -> ServiceState:
    """Map an HTTP response code and latency to a service state."""
    if response_code == expected_code:
        if elapsed_ms < operando_ms:
            return ServiceState.OPERATIONAL
        if elapsed_ms < degradado_ms:
            return ServiceState.DEGRADED
        return ServiceState.IMPACTED
    if 400 <= response_code < 500:
        return ServiceState.IMPACTED
    # 5xx and any other unexpected code
    return ServiceState.INTERRUPTED


def validate_url(url: str) -> httpx.URL:
    """Parse a probe URL, rejecting anything that is not absolute http(s)."""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid URL: {url}") from e
    if not parsed.scheme or not parsed.host:
        raise ValidationError(f"Invalid URL: {url}")
    if parsed.scheme not in SUPPORTED_SCHEMES:
        raise ValidationError(f"Unsupported protocol {parsed.scheme}")
    return parsed


def relaxed_ssl_context() -> ssl.SSLContext:
    """TLS context for internal targets: no certificate or hostname checks.

    SNI is still sent; httpx passes the URL host as server_hostname.
    """
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def retry_timeout_ms(timeout_ms: int) -> int:
    return min(timeout_ms * 2, MAX_RETRY_TIMEOUT_MS)


class ProbeExecutor:
    """Runs probes and feeds their records through aggregation and escalation."""

    def __init__(
        self,
        checks: Any,
        overlay: MaintenanceOverlay,
        config: Callable[[], EngineConfig],
        aggregator: StatusAggregator | None = None,
        escalation: EscalationEngine | None = None,
        simulated: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        rng: random.Random | None = None,
        on_result: Callable[[HealthCheckRecord], Any] | None = None,
    ) -> None:
        self._checks = checks
        self._overlay = overlay
        self._config = config
        self._aggregator = aggregator
        self._escalation = escalation
        self.simulated = simulated
        self._transport = transport  # test seam: httpx.MockTransport
        self._rng = rng or random.Random()
        self.on_result = on_result
        self._ssl_context = relaxed_ssl_context()

    async def run(self, service: Service, skip_escalation: bool = False) -> HealthCheckRecord | None:
        """Probe, persist, aggregate, escalate. None when the probe was skipped."""
        if self._overlay.is_paused(service.id):
            logger.info("Skipping check for %s due to maintenance (pause)", service.id)
            return None
        if not service.endpoint.url:
            logger.warning("Service %s has no endpoint url configured", service.id)
            return None

        config = self._config()
        record = await self.probe(service, config)
        record.importance = service.importance
        record.chain = service.chain
        record.restaurant = service.restaurant

        try:
            self._checks.append(record)
        except HealthwatchError as e:
            logger.warning("Could not persist check for %s: %s", service.id, e)
            return record

        logger.info(
            "Health check for %s: %s (%dms, code=%s)",
            service.display_name, record.state.value, record.response_time_ms, record.response_code,
        )

        if self._aggregator is not None:
            try:
                self._aggregator.recompute(service.id)
            except HealthwatchError as e:
                logger.warning("Could not update state of %s after check: %s", service.id, e)

        if self._escalation is not None:
            self._escalation.on_record_created(service, record, skip_escalation)

        if self.on_result:
            try:
                self.on_result(record)
            except Exception:
                logger.exception("Result callback error")

        return record

    async def probe(self, service: Service, config: EngineConfig | None = None) -> HealthCheckRecord:
        """Execute one probe and classify it. Nothing is persisted."""
        config = config or self._config()
        endpoint = service.endpoint
        expected = endpoint.expected_code or 200
        timeout_ms = int(endpoint.timeout_ms or config.timeout_ms)

        if self.simulated:
            return self._simulate(service, expected, config)

        try:
            validate_url(endpoint.url)
        except ValidationError as e:
            logger.warning("Invalid endpoint for %s: %s", service.id, e)
            return HealthCheckRecord(
                service_id=service.id, state=ServiceState.INTERRUPTED,
                response_time_ms=0, response_code=0, message=str(e),
            )

        t0 = time.perf_counter()
        try:
            resp = await self._request(endpoint.method, endpoint.url, timeout_ms)
        except TransportError as e:
            elapsed = (time.perf_counter() - t0) * 1000
            if e.timed_out:
                return await self._retry(service, expected, timeout_ms, t0, elapsed, config)
            logger.warning("Health check failed for %s: %s", service.display_name, e)
            return HealthCheckRecord(
                service_id=service.id, state=ServiceState.INTERRUPTED,
                response_time_ms=round(elapsed, 1), response_code=0, message=str(e),
            )

        latency = (time.perf_counter() - t0) * 1000
        return HealthCheckRecord(
            service_id=service.id,
            state=classify(resp.status_code, latency, expected, config.operando_ms, config.degradado_ms),
            response_time_ms=round(latency, 1),
            response_code=resp.status_code,
            message=_response_message(resp.status_code, expected),
        )

    async def _retry(
        self,
        service: Service,
        expected: int,
        timeout_ms: int,
        t0: float,
        first_elapsed: float,
        config: EngineConfig,
    ) -> HealthCheckRecord:
        """Single retry after a timeout, with a doubled (capped) timeout."""
        endpoint = service.endpoint
        try:
            resp = await self._request(endpoint.method, endpoint.url, retry_timeout_ms(timeout_ms))
        except TransportError as e:
            if e.timed_out:
                # Slow, not down: a double timeout is recorded as degraded
                logger.warning("Health check timeout for %s: %s", service.display_name, e)
                return HealthCheckRecord(
                    service_id=service.id, state=ServiceState.DEGRADED,
                    response_time_ms=round(first_elapsed, 1), response_code=0,
                    message="timeout exceeded",
                )
            latency = (time.perf_counter() - t0) * 1000
            logger.warning("Health check retry failed for %s: %s", service.display_name, e)
            return HealthCheckRecord(
                service_id=service.id, state=ServiceState.INTERRUPTED,
                response_time_ms=round(latency, 1), response_code=0, message=str(e),
            )

        latency = (time.perf_counter() - t0) * 1000
        message = "OK (retry)" if resp.status_code == expected else (
            _response_message(resp.status_code, expected) + " (retry)"
        )
        return HealthCheckRecord(
            service_id=service.id,
            state=classify(resp.status_code, latency, expected, config.operando_ms, config.degradado_ms),
            response_time_ms=round(latency, 1),
            response_code=resp.status_code,
            message=message,
        )

    async def _request(self, method: str, url: str, timeout_ms: int) -> httpx.Response:
        """One request; httpx failures surface as TransportError."""
        try:
            async with httpx.AsyncClient(
                timeout=timeout_ms / 1000,
                follow_redirects=True,
                verify=self._ssl_context,
                transport=self._transport,
            ) as client:
                return await client.request(method or "GET", url)
        except httpx.TimeoutException as e:
            raise TransportError(f"Timeout after {timeout_ms}ms", timed_out=True) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Connection error: {str(e) or type(e).__name__}") from e

    def _simulate(self, service: Service, expected: int, config: EngineConfig) -> HealthCheckRecord:
        latency = self._rng.randint(200, 2200)
        return HealthCheckRecord(
            service_id=service.id,
            state=classify(expected, latency, expected, config.operando_ms, config.degradado_ms),
            response_time_ms=float(latency),
            response_code=expected,
            message="Simulated",
        )


def _response_message(status_code: int, expected: int) -> str:
    if status_code == expected:
        return "OK"
    if status_code >= 400:
        return str(ProtocolError(status_code))
    return f"Status {status_code} (expected {expected})"
