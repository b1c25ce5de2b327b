"""
Provider Health Monitor

Monitors the health status of every (provider, region) pair.
Tracks success/failure counts, error rate and average latency over a fixed
rolling window, plus the last success/failure. This is the source of truth
read by dashboards; gating calls is the circuit breaker's job.
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Callable, Protocol
from loguru import logger

from finsync.data_providers.adapters.base import utcnow
from finsync.data_providers.circuit_breaker import CircuitState
from finsync.data_providers.identity import ProviderIdentity


class HealthState(str, Enum):
    """Coarse provider health."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass
class HealthConfig:
    """Health monitoring configuration."""
    window_seconds: float = 300.0        # Rolling window length
    warning_error_rate: float = 10.0     # Error rate % for degraded
    critical_error_rate: float = 50.0    # Error rate % for down
    warning_latency_ms: float = 2000.0   # Avg latency for degraded

    def __post_init__(self):
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

    @classmethod
    def from_settings(cls, settings) -> "HealthConfig":
        return cls(
            window_seconds=settings.HEALTH_WINDOW_MS / 1000,
            warning_error_rate=settings.HEALTH_WARNING_ERROR_RATE,
            critical_error_rate=settings.HEALTH_CRITICAL_ERROR_RATE,
            warning_latency_ms=settings.HEALTH_WARNING_LATENCY_MS,
        )


@dataclass
class HealthStatus:
    """Health metrics for one provider identity."""
    identity: ProviderIdentity
    window_start_at: datetime
    status: HealthState = HealthState.HEALTHY
    error_rate: float = 0.0            # 0-100 over the current window
    avg_response_time_ms: float = 0.0  # running mean over the current window
    successful_calls: int = 0
    failed_calls: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_error: Optional[str] = None
    circuit_breaker_open: bool = False
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def total_calls(self) -> int:
        return self.successful_calls + self.failed_calls

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "provider": self.identity.provider,
            "region": self.identity.region,
            "status": self.status.value,
            "error_rate": round(self.error_rate, 2),
            "avg_response_time_ms": round(self.avg_response_time_ms, 2),
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
            "last_error": self.last_error,
            "circuit_breaker_open": self.circuit_breaker_open,
            "window_start_at": self.window_start_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class HealthStatusStore(Protocol):
    """Durable storage for health rows."""

    async def save(self, status: HealthStatus) -> None: ...

    async def load_all(self) -> list[HealthStatus]: ...


class ProviderHealthMonitor:
    """
    Monitors health status of provider identities.

    Features:
    - Rolling-window success/failure counters with full reset on expiry
    - Error rate and running-mean latency
    - Circuit breaker flag mirrored from breaker transitions
    - Best-effort write-through to a HealthStatusStore
    """

    def __init__(
        self,
        config: Optional[HealthConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        store: Optional[HealthStatusStore] = None,
    ):
        self.config = config or HealthConfig()
        self._clock = clock
        self._store = store
        self._statuses: dict[ProviderIdentity, HealthStatus] = {}
        self._locks: dict[ProviderIdentity, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def record_call(
        self,
        identity: ProviderIdentity,
        success: bool,
        latency_ms: float,
        error_message: Optional[str] = None,
    ) -> HealthStatus:
        """
        Record a completed provider call.

        If the rolling window has expired, counters are zeroed and the window
        restarts before this call is counted.

        Returns:
            Snapshot of the updated status
        """
        async with self._locks[identity]:
            now = self._clock()
            health = self._get_or_create(identity, now)
            self._roll_window(health, now)

            if success:
                health.successful_calls += 1
                health.last_success_at = now
            else:
                health.failed_calls += 1
                health.last_failure_at = now
                health.last_error = error_message or "Unknown error"

            # Running mean over the window
            n = health.total_calls
            health.avg_response_time_ms += (max(latency_ms, 0.0) - health.avg_response_time_ms) / n
            health.error_rate = health.failed_calls / n * 100
            health.updated_at = now

            self._update_health_status(health)
            snapshot = replace(health)

        if not success:
            logger.warning(f"Request failed for {identity}: {error_message}")
        elif latency_ms > self.config.warning_latency_ms:
            logger.warning(f"High latency for {identity}: {latency_ms:.0f}ms")

        await self._persist(snapshot)
        return snapshot

    async def set_circuit_open(self, identity: ProviderIdentity, is_open: bool) -> None:
        """Mirror the circuit breaker flag onto the health status."""
        async with self._locks[identity]:
            now = self._clock()
            health = self._get_or_create(identity, now)
            if health.circuit_breaker_open == is_open:
                return
            health.circuit_breaker_open = is_open
            health.updated_at = now
            self._update_health_status(health)
            snapshot = replace(health)

        await self._persist(snapshot)

    async def on_circuit_state_change(
        self,
        identity: ProviderIdentity,
        old: CircuitState,
        new: CircuitState,
    ) -> None:
        """CircuitBreaker state listener."""
        await self.set_circuit_open(identity, new == CircuitState.OPEN)

    def get_status(self, identity: ProviderIdentity) -> HealthStatus:
        """Get a copy of the health status for an identity (pure read)."""
        health = self._statuses.get(identity)
        if health is None:
            return HealthStatus(identity=identity, window_start_at=self._clock())
        return replace(health)

    def get_all(self, region: Optional[str] = None) -> list[HealthStatus]:
        """Get health status for all tracked identities, ordered by provider."""
        statuses = [replace(h) for h in self._statuses.values()]
        if region:
            region = region.upper()
            statuses = [h for h in statuses if h.identity.region == region]
        return sorted(statuses, key=lambda h: h.identity)

    def get_healthy(self, region: Optional[str] = None) -> list[ProviderIdentity]:
        """Identities currently reported healthy."""
        return [h.identity for h in self.get_all(region) if h.status == HealthState.HEALTHY]

    async def reset(self, identity: ProviderIdentity) -> None:
        """Zero the window for an identity."""
        async with self._locks[identity]:
            now = self._clock()
            health = self._get_or_create(identity, now)
            self._zero_window(health, now)
            health.circuit_breaker_open = False
            health.updated_at = now
            self._update_health_status(health)
            snapshot = replace(health)

        logger.info(f"Health metrics reset for {identity}")
        await self._persist(snapshot)

    async def hydrate(self) -> int:
        """
        Load persisted health rows so dashboards survive restarts.

        Returns:
            Number of rows loaded
        """
        if self._store is None:
            return 0
        rows = await self._store.load_all()
        for row in rows:
            async with self._locks[row.identity]:
                self._statuses[row.identity] = row
        logger.info(f"Loaded {len(rows)} provider health rows")
        return len(rows)

    def _get_or_create(self, identity: ProviderIdentity, now: datetime) -> HealthStatus:
        health = self._statuses.get(identity)
        if health is None:
            health = HealthStatus(identity=identity, window_start_at=now, updated_at=now)
            self._statuses[identity] = health
        return health

    def _roll_window(self, health: HealthStatus, now: datetime) -> None:
        if now - health.window_start_at > timedelta(seconds=self.config.window_seconds):
            logger.debug(
                f"Health window expired for {health.identity} "
                f"({health.successful_calls} ok / {health.failed_calls} failed); resetting"
            )
            self._zero_window(health, now)

    @staticmethod
    def _zero_window(health: HealthStatus, now: datetime) -> None:
        health.successful_calls = 0
        health.failed_calls = 0
        health.error_rate = 0.0
        health.avg_response_time_ms = 0.0
        health.window_start_at = now

    def _update_health_status(self, health: HealthStatus) -> None:
        """Derive the coarse status from the window metrics."""
        previous = health.status

        if health.circuit_breaker_open or (
            health.total_calls and health.error_rate >= self.config.critical_error_rate
        ):
            health.status = HealthState.DOWN
        elif (
            health.error_rate >= self.config.warning_error_rate
            or health.avg_response_time_ms > self.config.warning_latency_ms
        ):
            health.status = HealthState.DEGRADED
        else:
            health.status = HealthState.HEALTHY

        if previous != health.status:
            logger.info(f"Health of {health.identity} changed: {previous.value} -> {health.status.value}")

    async def _persist(self, snapshot: HealthStatus) -> None:
        if self._store is None:
            return
        try:
            await self._store.save(snapshot)
        except Exception as e:
            logger.error(f"Failed to persist health status for {snapshot.identity}: {e}")
