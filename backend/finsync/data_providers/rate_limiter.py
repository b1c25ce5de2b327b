"""
Rate Limiter

Per-provider request budgets with sliding minute/hour windows, a token
bucket for bursts, and backoff after a provider answers with a rate limit
error. State is keyed by ProviderIdentity so each region has its own budget.

The orchestrator never waits on the limiter: a candidate that is out of
budget or backing off is skipped like a candidate with an open circuit.
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Callable, Any
from loguru import logger

from finsync.data_providers.adapters.base import utcnow
from finsync.data_providers.identity import ProviderIdentity, normalize_provider


@dataclass
class RateLimitConfig:
    """Configuration for one provider's rate limits."""
    requests_per_minute: Optional[int] = None
    requests_per_hour: Optional[int] = None
    burst_size: int = 10  # Maximum burst requests allowed

    # Backoff after a rate limit error without Retry-After
    base_backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 300.0

    def __post_init__(self):
        for name in ("requests_per_minute", "requests_per_hour"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.burst_size < 1:
            raise ValueError("burst_size must be >= 1")
        if self.base_backoff_seconds <= 0 or self.max_backoff_seconds <= 0:
            raise ValueError("backoff durations must be > 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @classmethod
    def from_dict(cls, values: dict[str, Any], max_backoff_seconds: float = 300.0) -> "RateLimitConfig":
        return cls(
            requests_per_minute=values.get("requests_per_minute"),
            requests_per_hour=values.get("requests_per_hour"),
            burst_size=values.get("burst_size", 10),
            max_backoff_seconds=max_backoff_seconds,
        )


@dataclass
class TokenBucket:
    """Token bucket for burst control."""
    capacity: float
    tokens: float
    fill_rate: float  # tokens per second
    last_update: datetime

    def consume(self, now: datetime, tokens: int = 1) -> bool:
        self._refill(now)
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def _refill(self, now: datetime) -> None:
        elapsed = max(0.0, (now - self.last_update).total_seconds())
        self.tokens = min(self.capacity, self.tokens + elapsed * self.fill_rate)
        self.last_update = now

    def time_until_available(self, now: datetime, tokens: int = 1) -> float:
        self._refill(now)
        if self.tokens >= tokens:
            return 0.0
        return (tokens - self.tokens) / self.fill_rate


@dataclass
class WindowCounter:
    """Sliding window counter for hard limits per period."""
    limit: int
    window_seconds: int
    requests: list[datetime] = field(default_factory=list)

    def _cleanup(self, now: datetime) -> None:
        cutoff = now - timedelta(seconds=self.window_seconds)
        self.requests = [r for r in self.requests if r > cutoff]

    def record_request(self, now: datetime) -> None:
        self._cleanup(now)
        self.requests.append(now)

    def time_until_available(self, now: datetime) -> float:
        self._cleanup(now)
        if len(self.requests) < self.limit:
            return 0.0
        wait_until = min(self.requests) + timedelta(seconds=self.window_seconds)
        return max(0.0, (wait_until - now).total_seconds())

    def remaining(self, now: datetime) -> int:
        self._cleanup(now)
        return max(0, self.limit - len(self.requests))


@dataclass
class _Budget:
    """Mutable limiter state for one identity."""
    minute: Optional[WindowCounter] = None
    hour: Optional[WindowCounter] = None
    bucket: Optional[TokenBucket] = None
    backoff_until: Optional[datetime] = None
    consecutive_rate_limits: int = 0


@dataclass(frozen=True)
class RateLimitDecision:
    """Whether a request may go out now, and if not, for how long to hold off."""
    allowed: bool
    wait_seconds: float = 0.0
    reason: Optional[str] = None


class ProviderRateLimiter:
    """
    Rate limiter for provider calls.

    Providers without a configuration have no request budget but still
    honour backoff after a rate limit error.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._configs: dict[str, RateLimitConfig] = {}
        self._budgets: dict[ProviderIdentity, _Budget] = {}
        self._locks: dict[ProviderIdentity, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._clock = clock

    def configure(self, provider: str, config: RateLimitConfig) -> None:
        """Configure rate limits for a provider in every region."""
        provider = normalize_provider(provider)
        self._configs[provider] = config
        # Budgets are rebuilt lazily with the new limits
        for identity in [i for i in self._budgets if i.provider == provider]:
            del self._budgets[identity]
        logger.info(f"Rate limiter configured for {provider}: {config}")

    def config_for(self, provider: str) -> Optional[RateLimitConfig]:
        return self._configs.get(normalize_provider(provider))

    def _budget(self, identity: ProviderIdentity) -> _Budget:
        budget = self._budgets.get(identity)
        if budget is not None:
            return budget

        budget = _Budget()
        config = self._configs.get(identity.provider)
        if config is not None:
            if config.requests_per_minute:
                budget.minute = WindowCounter(limit=config.requests_per_minute, window_seconds=60)
                rpm = config.requests_per_minute
                capacity = min(config.burst_size, rpm)
                budget.bucket = TokenBucket(
                    capacity=capacity,
                    tokens=capacity,
                    fill_rate=rpm / 60.0,
                    last_update=self._clock(),
                )
            if config.requests_per_hour:
                budget.hour = WindowCounter(limit=config.requests_per_hour, window_seconds=3600)
        self._budgets[identity] = budget
        return budget

    def check(self, identity: ProviderIdentity) -> RateLimitDecision:
        """Non-consuming check of whether a request could go out now."""
        now = self._clock()
        budget = self._budget(identity)

        if budget.backoff_until is not None and now < budget.backoff_until:
            wait = (budget.backoff_until - now).total_seconds()
            return RateLimitDecision(False, wait, "backoff")
        if budget.minute is not None:
            wait = budget.minute.time_until_available(now)
            if wait > 0:
                return RateLimitDecision(False, wait, "minute_limit")
        if budget.hour is not None:
            wait = budget.hour.time_until_available(now)
            if wait > 0:
                return RateLimitDecision(False, wait, "hour_limit")
        if budget.bucket is not None:
            wait = budget.bucket.time_until_available(now)
            if wait > 0:
                return RateLimitDecision(False, wait, "burst_limit")
        return RateLimitDecision(True)

    async def acquire(self, identity: ProviderIdentity) -> RateLimitDecision:
        """
        Reserve one request for `identity` if its budget allows it.

        Never waits; a refused decision carries how long until a slot opens.
        """
        async with self._locks[identity]:
            decision = self.check(identity)
            if not decision.allowed:
                return decision

            now = self._clock()
            budget = self._budget(identity)
            if budget.bucket is not None:
                budget.bucket.consume(now)
            if budget.minute is not None:
                budget.minute.record_request(now)
            if budget.hour is not None:
                budget.hour.record_request(now)
            return decision

    async def record_success(self, identity: ProviderIdentity) -> None:
        """Clear backoff after the provider answered normally."""
        async with self._locks[identity]:
            budget = self._budget(identity)
            budget.consecutive_rate_limits = 0
            budget.backoff_until = None

    async def record_rate_limited(self, identity: ProviderIdentity, retry_after: Optional[float] = None) -> float:
        """
        Start backoff after a rate limit error.

        The provider's Retry-After wins when given; otherwise the delay grows
        exponentially with consecutive rate limit errors. Both are capped at
        the provider's max backoff.

        Returns:
            Backoff in seconds
        """
        config = self._configs.get(identity.provider) or RateLimitConfig()
        async with self._locks[identity]:
            budget = self._budget(identity)
            budget.consecutive_rate_limits += 1
            if retry_after is not None and retry_after > 0:
                delay = float(retry_after)
            else:
                delay = config.base_backoff_seconds * (
                    config.backoff_multiplier ** (budget.consecutive_rate_limits - 1)
                )
            delay = min(delay, config.max_backoff_seconds)
            budget.backoff_until = self._clock() + timedelta(seconds=delay)

        logger.warning(
            f"Rate limited by {identity} ({budget.consecutive_rate_limits} in a row), "
            f"backing off {delay:.1f}s"
        )
        return delay

    def get_stats(self, identity: ProviderIdentity) -> dict[str, Any]:
        """Remaining budget and backoff for one identity."""
        now = self._clock()
        budget = self._budget(identity)
        backing_off = budget.backoff_until is not None and now < budget.backoff_until
        return {
            "provider": identity.provider,
            "region": identity.region,
            "minute_remaining": budget.minute.remaining(now) if budget.minute else None,
            "hour_remaining": budget.hour.remaining(now) if budget.hour else None,
            "backoff_until": budget.backoff_until.isoformat() if backing_off else None,
            "consecutive_rate_limits": budget.consecutive_rate_limits,
        }

    def get_all_stats(self) -> list[dict[str, Any]]:
        return [self.get_stats(identity) for identity in sorted(self._budgets, key=str)]
