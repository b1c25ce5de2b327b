"""
Circuit Breaker

Per-(provider, region) circuit breaker gating whether a provider call is
attempted at all.

State machine:
    CLOSED    --[consecutive failures >= failure_threshold]--> OPEN
    OPEN      --[open_timeout elapsed, evaluated lazily]-----> HALF_OPEN
    HALF_OPEN --[success_threshold consecutive successes]----> CLOSED
    HALF_OPEN --[any failure]--------------------------------> OPEN

State is kept in memory and may reset to CLOSED on restart; see
`restore_open` for rehydrating from persisted health rows.
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Callable, Awaitable
from loguru import logger

from finsync.data_providers.adapters.base import utcnow
from finsync.data_providers.identity import ProviderIdentity


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation, requests allowed
    OPEN = "open"            # Failures exceeded threshold, requests blocked
    HALF_OPEN = "half_open"  # Timeout elapsed, probing for recovery


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker thresholds."""
    failure_threshold: int = 5         # Consecutive failures before opening
    success_threshold: int = 2         # Consecutive half-open successes to close
    open_timeout_seconds: float = 60.0  # Time before trying half-open

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.open_timeout_seconds < 0:
            raise ValueError("open_timeout_seconds must be >= 0")

    @classmethod
    def from_settings(cls, settings) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            success_threshold=settings.CIRCUIT_SUCCESS_THRESHOLD,
            open_timeout_seconds=settings.CIRCUIT_OPEN_TIMEOUT_MS / 1000,
        )


@dataclass(frozen=True)
class BreakerCounters:
    """Immutable breaker state for one identity."""
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    consecutive_successes: int = 0  # only meaningful in HALF_OPEN
    opened_at: Optional[datetime] = None


def evaluate_timeout(
    counters: BreakerCounters,
    config: CircuitBreakerConfig,
    now: datetime,
) -> BreakerCounters:
    """Apply the lazy OPEN -> HALF_OPEN transition if the open timeout has elapsed."""
    if counters.state != CircuitState.OPEN or counters.opened_at is None:
        return counters
    if now - counters.opened_at >= timedelta(seconds=config.open_timeout_seconds):
        return replace(counters, state=CircuitState.HALF_OPEN, consecutive_successes=0)
    return counters


def apply_outcome(
    counters: BreakerCounters,
    success: bool,
    config: CircuitBreakerConfig,
    now: datetime,
) -> BreakerCounters:
    """
    Pure transition for a completed call.

    An outcome landing while OPEN comes from a probe that was already in
    flight when a sibling probe reopened the breaker; it leaves the state
    untouched.
    """
    if counters.state == CircuitState.CLOSED:
        if success:
            return replace(counters, consecutive_failures=0)
        failures = counters.consecutive_failures + 1
        if failures >= config.failure_threshold:
            return BreakerCounters(
                state=CircuitState.OPEN,
                consecutive_failures=failures,
                consecutive_successes=0,
                opened_at=now,
            )
        return replace(counters, consecutive_failures=failures)

    if counters.state == CircuitState.HALF_OPEN:
        if not success:
            return BreakerCounters(
                state=CircuitState.OPEN,
                consecutive_failures=counters.consecutive_failures + 1,
                consecutive_successes=0,
                opened_at=now,
            )
        successes = counters.consecutive_successes + 1
        if successes >= config.success_threshold:
            return BreakerCounters()
        return replace(counters, consecutive_successes=successes)

    return counters


@dataclass(frozen=True)
class CircuitSnapshot:
    """Read-only view of a breaker for dashboards."""
    identity: ProviderIdentity
    state: CircuitState
    consecutive_failures: int
    consecutive_successes: int
    opened_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "provider": self.identity.provider,
            "region": self.identity.region,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
        }


StateListener = Callable[[ProviderIdentity, CircuitState, CircuitState], Awaitable[None]]


class CircuitBreaker:
    """
    Keyed store of breaker state, one entry per ProviderIdentity.

    Every read-modify-write of an identity's state happens under that
    identity's own asyncio lock, so concurrent calls against one provider
    cannot corrupt its counters and never contend with other providers.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._states: dict[ProviderIdentity, BreakerCounters] = {}
        self._locks: dict[ProviderIdentity, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._listeners: list[StateListener] = []

    def register_state_listener(self, callback: StateListener) -> None:
        """
        Register a callback for state transitions.

        Callback receives: identity, previous state, new state
        """
        self._listeners.append(callback)

    async def allow(self, identity: ProviderIdentity) -> bool:
        """
        Check whether a call to `identity` may be attempted.

        Returns False only while OPEN and the open timeout has not elapsed.
        A call arriving after the timeout moves the breaker to HALF_OPEN.
        """
        async with self._locks[identity]:
            current = self._states.get(identity, BreakerCounters())
            updated = evaluate_timeout(current, self.config, self._clock())
            if updated is not current:
                self._states[identity] = updated
                logger.info(f"Circuit for {identity} transitioning to half-open")

        if updated.state != current.state:
            await self._notify(identity, current.state, updated.state)

        return updated.state != CircuitState.OPEN

    def peek(self, identity: ProviderIdentity) -> bool:
        """Non-mutating variant of `allow` for look-ahead decisions."""
        current = self._states.get(identity, BreakerCounters())
        return evaluate_timeout(current, self.config, self._clock()).state != CircuitState.OPEN

    async def record_outcome(self, identity: ProviderIdentity, success: bool) -> CircuitState:
        """
        Record the outcome of an attempted call.

        Must be called exactly once per call that `allow` let through.

        Returns:
            The breaker state after the transition
        """
        async with self._locks[identity]:
            current = self._states.get(identity, BreakerCounters())
            updated = apply_outcome(current, success, self.config, self._clock())
            self._states[identity] = updated

        if updated.state != current.state:
            self._log_transition(identity, current, updated)
            await self._notify(identity, current.state, updated.state)

        return updated.state

    def get_state(self, identity: ProviderIdentity) -> CircuitSnapshot:
        """Get the current breaker state, evaluating the open timeout for display."""
        counters = evaluate_timeout(
            self._states.get(identity, BreakerCounters()), self.config, self._clock()
        )
        next_attempt_at = None
        if counters.state == CircuitState.OPEN and counters.opened_at is not None:
            next_attempt_at = counters.opened_at + timedelta(seconds=self.config.open_timeout_seconds)

        return CircuitSnapshot(
            identity=identity,
            state=counters.state,
            consecutive_failures=counters.consecutive_failures,
            consecutive_successes=counters.consecutive_successes,
            opened_at=counters.opened_at,
            next_attempt_at=next_attempt_at,
        )

    def get_all_states(self, region: Optional[str] = None) -> list[CircuitSnapshot]:
        """Snapshots for every tracked identity, optionally filtered by region."""
        identities = sorted(self._states.keys())
        if region:
            region = region.upper()
            identities = [i for i in identities if i.region == region]
        return [self.get_state(identity) for identity in identities]

    async def reset(self, identity: ProviderIdentity) -> None:
        """Force the breaker CLOSED and zero its counters (admin operation)."""
        async with self._locks[identity]:
            previous = self._states.get(identity, BreakerCounters())
            self._states[identity] = BreakerCounters()

        logger.info(f"Circuit breaker RESET for {identity}")
        if previous.state != CircuitState.CLOSED:
            await self._notify(identity, previous.state, CircuitState.CLOSED)

    async def restore_open(self, identity: ProviderIdentity, opened_at: datetime) -> None:
        """Rehydrate an OPEN breaker from persisted state."""
        async with self._locks[identity]:
            self._states[identity] = BreakerCounters(
                state=CircuitState.OPEN,
                consecutive_failures=self.config.failure_threshold,
                opened_at=opened_at,
            )
        logger.info(f"Circuit breaker for {identity} restored as OPEN (opened at {opened_at.isoformat()})")

    def _log_transition(self, identity: ProviderIdentity, old: BreakerCounters, new: BreakerCounters) -> None:
        if new.state == CircuitState.OPEN:
            logger.error(
                f"Circuit breaker OPENED for {identity} after {new.consecutive_failures} consecutive failures. "
                f"Will retry after {self.config.open_timeout_seconds:.0f}s"
            )
        elif new.state == CircuitState.CLOSED:
            logger.info(f"Circuit breaker CLOSED for {identity} - recovered")

    async def _notify(self, identity: ProviderIdentity, old: CircuitState, new: CircuitState) -> None:
        """Notify registered listeners of a state change."""
        for callback in self._listeners:
            try:
                await callback(identity, old, new)
            except Exception as e:
                logger.error(f"Error in circuit state listener for {identity}: {e}")
