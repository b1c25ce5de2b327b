"""
Finsync - Test Configuration
Shared fixtures and test configuration.
"""
import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
import pytest
from unittest.mock import AsyncMock, MagicMock

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment
os.environ["APP_ENV"] = "testing"
os.environ["POSTGRES_HOST"] = "localhost"
os.environ["POSTGRES_DB"] = "finsync_test"
os.environ["HEALTH_CHECK_ON_STARTUP"] = "false"

from finsync.data_providers.adapters.base import (
    BaseAdapter,
    HealthCheckResult,
    LinkResult,
    ProviderConfig,
    SyncResult,
    TokenExchangeResult,
    WebhookResult,
)
from finsync.data_providers.attempt_log import InMemoryAttemptLog
from finsync.data_providers.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from finsync.data_providers.health_monitor import HealthConfig, ProviderHealthMonitor
from finsync.data_providers.institution_map import InstitutionProviderMap, InstitutionProviderMapping
from finsync.data_providers.orchestrator import OrchestratorConfig, ProviderOrchestrator
from finsync.data_providers.rate_limiter import ProviderRateLimiter
from finsync.data_providers.registry import ProviderRegistry


# =========================
# Clock
# =========================

class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =========================
# Adapters
# =========================

class FakeAdapter(BaseAdapter):
    """
    In-process adapter with scripted behaviour.

    `error` is raised by every capability call while set; `delay` is awaited
    before answering so timeouts and cancellation can be exercised.
    """

    def __init__(
        self,
        name: str,
        regions: Optional[list[str]] = None,
        result: Any = None,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
        healthy: bool = True,
    ):
        super().__init__(ProviderConfig(name=name, regions=regions or []))
        self.result = result if result is not None else {"provider": name}
        self.error = error
        self.delay = delay
        self.healthy = healthy
        self.init_error: Optional[Exception] = None
        self.calls: list[str] = []
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        if self.init_error is not None:
            raise self.init_error
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def _respond(self, operation: str) -> Any:
        self.calls.append(operation)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result

    async def health_check(self, region: str) -> HealthCheckResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        return HealthCheckResult(
            provider=self.name,
            region=region,
            healthy=self.healthy,
            message="OK" if self.healthy else "Probe failed",
        )

    async def create_link(self, params: dict[str, Any]) -> LinkResult:
        await self._respond("create_link")
        return LinkResult(link_token=f"{self.name}-link")

    async def exchange_token(self, params: dict[str, Any]) -> TokenExchangeResult:
        await self._respond("exchange_token")
        return TokenExchangeResult(access_token=f"{self.name}-token")

    async def get_accounts(self, credentials, account_scope=None):
        return await self._respond("get_accounts")

    async def sync_transactions(self, credentials, account_scope=None, since_cursor=None):
        result = await self._respond("sync_transactions")
        return result if isinstance(result, SyncResult) else SyncResult(next_cursor=f"{self.name}-cursor")

    async def handle_webhook(self, payload, signature) -> WebhookResult:
        await self._respond("handle_webhook")
        return WebhookResult(accepted=True)


@pytest.fixture
def make_adapter():
    """Factory for FakeAdapter instances."""
    return FakeAdapter


# =========================
# Provider Stack
# =========================

@pytest.fixture
def breaker_config() -> CircuitBreakerConfig:
    return CircuitBreakerConfig(failure_threshold=3, success_threshold=2, open_timeout_seconds=60)


@pytest.fixture
def breaker(breaker_config, clock) -> CircuitBreaker:
    return CircuitBreaker(breaker_config, clock=clock)


@pytest.fixture
def health_monitor(clock) -> ProviderHealthMonitor:
    return ProviderHealthMonitor(HealthConfig(window_seconds=300), clock=clock)


@pytest.fixture
def attempt_log() -> InMemoryAttemptLog:
    return InMemoryAttemptLog()


@pytest.fixture
def registry() -> ProviderRegistry:
    return ProviderRegistry()


@pytest.fixture
def rate_limiter(clock) -> ProviderRateLimiter:
    """Limiter with no budgets configured; only backoff applies."""
    return ProviderRateLimiter(clock=clock)


@pytest.fixture
def institution_map() -> InstitutionProviderMap:
    return InstitutionProviderMap([
        InstitutionProviderMapping.build("ins_chase", "plaid", ["mx", "finicity"], region="US"),
        InstitutionProviderMapping.build("bbva_mx", "belvo", ["plaid"], region="MX"),
    ])


@pytest.fixture
def orchestrator(registry, breaker, health_monitor, institution_map, attempt_log,
                 rate_limiter) -> ProviderOrchestrator:
    """Orchestrator wired the way build_orchestrator wires it, over in-memory state."""
    breaker.register_state_listener(health_monitor.on_circuit_state_change)
    return ProviderOrchestrator(
        registry=registry,
        breaker=breaker,
        health_monitor=health_monitor,
        institution_map=institution_map,
        attempt_log=attempt_log,
        config=OrchestratorConfig(
            default_timeout_seconds=0.5,
            health_check_timeout_seconds=0.2,
            default_provider_by_region={"US": "plaid", "MX": "belvo"},
        ),
        rate_limiter=rate_limiter,
    )


# =========================
# Database Fixtures
# =========================

@pytest.fixture
def mock_db_session():
    """Mock async database session."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def session_maker(mock_db_session):
    """Callable returning an async context manager around mock_db_session."""
    def factory():
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=mock_db_session)
        context.__aexit__ = AsyncMock(return_value=False)
        return context
    return factory
