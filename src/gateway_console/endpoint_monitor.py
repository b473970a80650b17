"""Model endpoint health probes and the watched-resource refresh loop."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

from .settings_store import SettingsStore

logger = logging.getLogger(__name__)

MODEL_ENDPOINTS = "model_endpoints"


@dataclass
class CircuitBreaker:
    """Per-endpoint breaker driven by the routing failure_threshold and recovery_timeout.

    After ``threshold`` consecutive failures the breaker opens. Once ``cooldown``
    seconds pass, a single trial probe is let through (half-open); its outcome
    closes or re-opens the breaker. A trial that never reports back is replaced
    by a new one after another cooldown.
    """

    threshold: int = 5
    cooldown: float = 30.0
    failure_count: int = field(default=0, init=False)
    last_failure: float = field(default=0.0, init=False)
    trial_started: float = field(default=0.0, init=False)
    state: str = field(default="closed", init=False)  # closed | open | half-open

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure = time.monotonic()
        if self.state == "half-open" or self.failure_count >= self.threshold:
            self.state = "open"
            logger.warning("Circuit breaker open after %d failures", self.failure_count)

    def record_success(self) -> None:
        self.failure_count = 0
        self.state = "closed"

    def allow_request(self) -> bool:
        now = time.monotonic()
        if self.state == "closed":
            return True
        if self.state == "open":
            if now - self.last_failure < self.cooldown:
                return False
            self.state = "half-open"
        elif now - self.trial_started < self.cooldown:
            # half-open with a trial still outstanding
            return False
        self.trial_started = now
        return True


def retry_delays(max_retries: int, delay_ms: int, backoff: str) -> list[float]:
    """Delays in seconds before each retry, per the routing backoff strategy."""
    base = delay_ms / 1000.0
    if backoff == "exponential":
        return [base * (2 ** attempt) for attempt in range(max_retries)]
    if backoff == "linear":
        return [base * (attempt + 1) for attempt in range(max_retries)]
    return [base] * max_retries


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EndpointProber:
    """Async HTTP health prober with retry and circuit breaker per endpoint."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client: httpx.AsyncClient | None = None
        self._transport = transport
        self._sleep = sleep
        self._breakers: dict[str, CircuitBreaker] = {}

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            follow_redirects=True,
            transport=self._transport,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
        )

    async def stop(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Endpoint prober is not started")
        return self._client

    def breaker(self, endpoint_url: str, routing: dict[str, Any]) -> CircuitBreaker:
        breaker = self._breakers.get(endpoint_url)
        if breaker is None:
            breaker = CircuitBreaker()
            self._breakers[endpoint_url] = breaker
        breaker.threshold = int(routing["failure_threshold"])
        breaker.cooldown = float(routing["recovery_timeout"])
        return breaker

    def forget(self, endpoint_url: str) -> None:
        self._breakers.pop(endpoint_url, None)

    async def probe(self, endpoint_url: str, routing: dict[str, Any]) -> dict[str, Any]:
        """Probe an endpoint's health path using the routing health, retry and breaker settings."""
        url = f"{endpoint_url.rstrip('/')}{routing['health_check_path']}"
        breaker = self.breaker(endpoint_url, routing) if routing["circuit_breaker_enabled"] else None
        if breaker is not None and not breaker.allow_request():
            return {"status": "error", "error": "Circuit breaker open", "checked_at": _now()}

        delays = (
            retry_delays(routing["max_retries"], routing["retry_delay_ms"], routing["retry_backoff"])
            if routing["retry_enabled"]
            else []
        )
        timeout = float(routing["health_check_timeout"])

        for attempt in range(len(delays) + 1):
            try:
                resp = await self._require_client().get(url, timeout=timeout)
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                if attempt < len(delays):
                    logger.warning(
                        "%s probe attempt %d failed: %s (retry in %.1fs)",
                        endpoint_url, attempt + 1, e, delays[attempt],
                    )
                    await self._sleep(delays[attempt])
                    continue
                if breaker is not None:
                    breaker.record_failure()
                return {"status": "error", "error": str(e) or e.__class__.__name__, "checked_at": _now()}
            except httpx.HTTPError as e:
                if breaker is not None:
                    breaker.record_failure()
                return {"status": "error", "error": str(e) or e.__class__.__name__, "checked_at": _now()}

            healthy = resp.status_code == 200
            if breaker is not None:
                if healthy:
                    breaker.record_success()
                else:
                    breaker.record_failure()
            return {"status": "active" if healthy else "error", "code": resp.status_code, "checked_at": _now()}

        raise AssertionError("unreachable")


def apply_probe_result(store: SettingsStore, record_id: str, result: dict[str, Any]) -> dict[str, Any] | None:
    return store.update_record(
        MODEL_ENDPOINTS,
        record_id,
        {"status": result["status"], "last_updated": result["checked_at"], "last_probe": result},
    )


class EndpointMonitor:
    """Periodically probes registered model endpoints and stores their status."""

    def __init__(
        self,
        *,
        store: SettingsStore,
        prober: EndpointProber,
        settings_provider: Callable[[str], dict[str, Any]],
    ):
        self._store = store
        self._prober = prober
        self._settings_provider = settings_provider
        self._task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def probe_record(self, record: dict[str, Any], routing: dict[str, Any]) -> dict[str, Any] | None:
        result = await self._prober.probe(record["endpoint"], routing)
        if result["status"] != record.get("status"):
            logger.info("Model endpoint %s is now %s", record.get("name"), result["status"])
        return apply_probe_result(self._store, record["id"], result)

    async def refresh_once(self) -> list[dict[str, Any]]:
        """Probe every endpoint that is not marked inactive."""
        routing = self._settings_provider("routing")
        records = [
            record for record in self._store.list_records(MODEL_ENDPOINTS)
            if record.get("status") != "inactive"
        ]
        results = await asyncio.gather(*(self.probe_record(record, routing) for record in records))
        return [record for record in results if record is not None]

    async def _run_loop(self) -> None:
        while self._running:
            interval = float(self._settings_provider("models")["health_check_interval"])
            try:
                if self._settings_provider("routing")["health_check_enabled"]:
                    await self.refresh_once()
            except Exception:
                logger.exception("Model endpoint health refresh failed")
            await asyncio.sleep(interval)
