"""
Integration Tests - Orchestrator Failover
Tests for candidate ordering, circuit breaking, health tracking and the
connection attempt audit trail working together through execute().
"""
import asyncio
import pytest
from unittest.mock import AsyncMock

from finsync.data_providers.adapters.base import (
    AuthenticationError,
    ErrorKind,
    ProviderNetworkError,
    ProviderUnavailableError,
    ProviderValidationError,
    RateLimitError,
)
from finsync.data_providers.attempt_log import AttemptOutcome
from finsync.data_providers.circuit_breaker import CircuitBreakerConfig, CircuitState
from finsync.data_providers.health_monitor import HealthConfig, HealthState, ProviderHealthMonitor
from finsync.data_providers.identity import ProviderIdentity
from finsync.data_providers.orchestrator import (
    ALL_PROVIDERS_EXHAUSTED,
    SKIP_CIRCUIT_OPEN,
    SKIP_NOT_REGISTERED,
    SKIP_RATE_LIMITED,
    AccountContext,
    OrchestratorConfig,
)
from finsync.data_providers.rate_limiter import RateLimitConfig
from finsync.utils.exceptions import (
    NonRetryableProviderError,
    ProviderNotRegisteredError,
    ProvidersExhaustedError,
)


PLAID_US = ProviderIdentity("plaid", "US")
MX_US = ProviderIdentity("mx", "US")
FINICITY_US = ProviderIdentity("finicity", "US")

CONTEXT = AccountContext(space_id="space-1", account_id="acct-1")
ARGS = {"credentials": {"access_token": "token-1"}}


async def get_accounts(orchestrator, **kwargs):
    kwargs.setdefault("institution_id", "ins_chase")
    kwargs.setdefault("region", "US")
    return await orchestrator.execute("get_accounts", ARGS, CONTEXT, **kwargs)


async def open_circuit(breaker, identity, failures=3):
    for _ in range(failures):
        await breaker.record_outcome(identity, False)


class SlowHealthStore:
    """HealthStatusStore whose writes take a while."""

    def __init__(self, delay: float):
        self.delay = delay
        self.saving = asyncio.Event()
        self.saved = []

    async def save(self, status):
        self.saving.set()
        await asyncio.sleep(self.delay)
        self.saved.append(status)

    async def load_all(self):
        return []


@pytest.fixture
def add(registry, make_adapter):
    """Build a FakeAdapter, register it and hand it back."""
    def _add(name, **kwargs):
        adapter = make_adapter(name, **kwargs)
        registry.register(adapter)
        return adapter
    return _add


# ============================================================
# Failover
# ============================================================

class TestFailover:
    """Tests for ordered failover across institution candidates."""

    @pytest.mark.asyncio
    async def test_primary_success(self, orchestrator, add, attempt_log):
        """A healthy primary answers without touching backups."""
        plaid = add("plaid")
        mx = add("mx")

        result = await get_accounts(orchestrator)

        assert result.success is True
        assert result.provider == PLAID_US
        assert result.failover_used is False
        assert result.attempts == 1
        assert result.data == {"provider": "plaid"}
        assert plaid.calls == ["get_accounts"]
        assert mx.calls == []
        assert len(attempt_log) == 1

    @pytest.mark.asyncio
    async def test_network_failure_fails_over(self, orchestrator, add,
                                              attempt_log, health_monitor):
        """A fails with network, B succeeds: one success, two records."""
        add("plaid", error=ProviderNetworkError("plaid", "connection reset"))
        add("mx")

        result = await get_accounts(orchestrator)

        assert result.success is True
        assert result.provider == MX_US
        assert result.failover_used is True
        assert result.attempts == 2

        first, second = attempt_log.all()
        assert first.identity == PLAID_US
        assert first.outcome == AttemptOutcome.FAILURE
        assert first.error_kind == ErrorKind.NETWORK
        assert first.failover_used is False
        assert first.next_provider == "mx"
        assert second.identity == MX_US
        assert second.outcome == AttemptOutcome.SUCCESS
        assert second.failover_used is True
        assert second.next_provider is None

        assert health_monitor.get_status(PLAID_US).error_rate == 100.0
        assert health_monitor.get_status(MX_US).error_rate == 0.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        RateLimitError("plaid", retry_after=30),
        ProviderUnavailableError("plaid", "Upstream error 503"),
        RuntimeError("something odd"),
    ])
    async def test_retryable_kinds_fail_over(self, orchestrator, add, error):
        add("plaid", error=error)
        add("mx")

        result = await get_accounts(orchestrator)

        assert result.success is True
        assert result.provider == MX_US

    @pytest.mark.asyncio
    async def test_at_most_one_success(self, orchestrator, add, attempt_log):
        """Candidates after the first success are never called."""
        add("plaid", error=ProviderNetworkError("plaid"))
        mx = add("mx")
        finicity = add("finicity")

        result = await get_accounts(orchestrator)

        assert result.provider == MX_US
        assert mx.calls == ["get_accounts"]
        assert finicity.calls == []
        assert [a.succeeded for a in attempt_log.all()] == [False, True]

    @pytest.mark.asyncio
    async def test_all_candidates_fail(self, orchestrator, add, attempt_log):
        for name in ("plaid", "mx", "finicity"):
            add(name, error=ProviderUnavailableError(name))

        result = await get_accounts(orchestrator)

        assert result.success is False
        assert result.failure.kind == ALL_PROVIDERS_EXHAUSTED
        assert result.failure.exhausted is True
        assert [f.identity.provider for f in result.failure.failures] == ["plaid", "mx", "finicity"]
        assert result.attempts == 3
        assert result.failover_used is True
        assert [a.next_provider for a in attempt_log.all()] == ["mx", "finicity", None]


# ============================================================
# Non-Retryable Failures
# ============================================================

class TestNonRetryable:
    """Tests for auth/validation short-circuiting."""

    @pytest.mark.asyncio
    async def test_auth_failure_stops_sequence(self, orchestrator, add, attempt_log):
        """An auth failure on the first candidate never reaches the backups."""
        add("plaid", error=AuthenticationError("plaid", "ITEM_LOGIN_REQUIRED"))
        mx = add("mx")

        result = await get_accounts(orchestrator)

        assert result.success is False
        assert result.failure.kind == "auth"
        assert result.failure.exhausted is False
        assert result.provider == PLAID_US
        assert mx.calls == []
        assert len(attempt_log) == 1
        assert attempt_log.all()[0].error_kind == ErrorKind.AUTH

    @pytest.mark.asyncio
    async def test_auth_failure_names_no_next_provider(self, orchestrator, add, attempt_log):
        """The backups are never tried, so the record points at none of them."""
        add("plaid", error=AuthenticationError("plaid", "ITEM_LOGIN_REQUIRED"))
        add("mx")

        await get_accounts(orchestrator)

        assert attempt_log.all()[0].next_provider is None

    @pytest.mark.asyncio
    async def test_validation_failure_after_failover(self, orchestrator, add, attempt_log):
        add("plaid", error=ProviderNetworkError("plaid"))
        add("mx", error=ProviderValidationError("mx", "bad account scope"))
        finicity = add("finicity")

        result = await get_accounts(orchestrator)

        assert result.failure.kind == "validation"
        assert result.failover_used is True
        assert result.attempts == 2
        assert finicity.calls == []
        assert [a.next_provider for a in attempt_log.all()] == ["mx", None]

    @pytest.mark.asyncio
    async def test_missing_credentials_is_validation(self, orchestrator, add):
        plaid = add("plaid")
        add("mx")

        result = await orchestrator.execute(
            "get_accounts", {}, CONTEXT, institution_id="ins_chase", region="US"
        )

        assert result.failure.kind == "validation"
        assert plaid.calls == []

    @pytest.mark.asyncio
    async def test_classifier_override_makes_code_non_retryable(self, orchestrator, add):
        from finsync.data_providers.error_classifier import ErrorClassifier

        orchestrator.classifier = ErrorClassifier({"plaid": {"ITEM_LOCKED": "auth"}})
        add("plaid", error=ProviderUnavailableError("plaid", code="ITEM_LOCKED"))
        mx = add("mx")

        result = await get_accounts(orchestrator)

        assert result.failure.kind == "auth"
        assert mx.calls == []


# ============================================================
# Circuit Breaking
# ============================================================

class TestCircuitIntegration:
    """Tests for breaker decisions inside execute()."""

    @pytest.mark.asyncio
    async def test_open_circuit_skipped_without_record(self, orchestrator, add,
                                                       breaker, attempt_log):
        """Skipped candidates produce no attempt record."""
        plaid = add("plaid")
        add("mx")
        await open_circuit(breaker, PLAID_US)

        result = await get_accounts(orchestrator)

        assert result.provider == MX_US
        assert result.failover_used is False
        assert plaid.calls == []
        assert [a.identity for a in attempt_log.all()] == [MX_US]

    @pytest.mark.asyncio
    async def test_audit_completeness(self, orchestrator, add, breaker, attempt_log):
        """Records equal attempted candidates; only the first lacks failover_used."""
        add("plaid", error=ProviderNetworkError("plaid"))
        add("mx")
        add("finicity")
        await open_circuit(breaker, MX_US)

        result = await get_accounts(orchestrator)

        records = attempt_log.all()
        assert result.attempts == len(records) == 2
        assert [a.identity for a in records] == [PLAID_US, FINICITY_US]
        assert [a.failover_used for a in records] == [False, True]
        assert records[0].next_provider == "finicity"

    @pytest.mark.asyncio
    async def test_repeated_failures_open_circuit(self, orchestrator, add,
                                                  breaker, health_monitor):
        add("plaid", error=ProviderNetworkError("plaid"))
        add("mx")

        for _ in range(3):
            await get_accounts(orchestrator)

        assert breaker.get_state(PLAID_US).state == CircuitState.OPEN
        status = health_monitor.get_status(PLAID_US)
        assert status.circuit_breaker_open is True
        assert status.status == HealthState.DOWN

    @pytest.mark.asyncio
    async def test_half_open_recovery_closes_circuit(self, orchestrator, add,
                                                     breaker, clock, health_monitor):
        """OPEN, timeout elapses, two successes close the breaker."""
        plaid = add("plaid")
        await open_circuit(breaker, PLAID_US)
        clock.advance(61)

        first = await get_accounts(orchestrator, institution_id=None, preferred_provider="plaid")
        assert first.success is True
        assert breaker.get_state(PLAID_US).state == CircuitState.HALF_OPEN

        second = await get_accounts(orchestrator, institution_id=None, preferred_provider="plaid")
        assert second.success is True
        assert breaker.get_state(PLAID_US).state == CircuitState.CLOSED
        assert health_monitor.get_status(PLAID_US).circuit_breaker_open is False
        assert plaid.calls == ["get_accounts", "get_accounts"]

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, orchestrator, add, breaker, clock):
        add("plaid", error=ProviderNetworkError("plaid"))
        await open_circuit(breaker, PLAID_US)
        clock.advance(61)

        await get_accounts(orchestrator, institution_id=None, preferred_provider="plaid")

        assert breaker.get_state(PLAID_US).state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_next_provider_skips_open_and_unregistered(self, orchestrator, add,
                                                             breaker, attempt_log):
        add("plaid", error=ProviderNetworkError("plaid"))
        add("mx")
        await open_circuit(breaker, MX_US)

        result = await get_accounts(orchestrator)

        # finicity is not registered and mx is open
        assert attempt_log.all()[0].next_provider is None
        assert result.failure.kind == ALL_PROVIDERS_EXHAUSTED
        reasons = {s.identity.provider: s.reason for s in result.failure.skipped}
        assert reasons == {"mx": SKIP_CIRCUIT_OPEN, "finicity": SKIP_NOT_REGISTERED}

    @pytest.mark.asyncio
    async def test_concurrent_calls_keep_counts_consistent(self, orchestrator, add,
                                                           breaker, health_monitor, attempt_log):
        """Every attempted call is counted once in breaker, health and audit."""
        plaid = add("plaid", error=ProviderNetworkError("plaid"))

        results = await asyncio.gather(*(
            get_accounts(orchestrator, institution_id=None, preferred_provider="plaid")
            for _ in range(20)
        ))

        assert all(not r.success for r in results)
        assert len(plaid.calls) == len(attempt_log) == health_monitor.get_status(PLAID_US).failed_calls
        assert len(plaid.calls) >= 3
        assert breaker.get_state(PLAID_US).state == CircuitState.OPEN


class TestSingleCandidateThreshold:
    """Breaker behaviour at the production failure threshold."""

    @pytest.fixture
    def breaker_config(self):
        return CircuitBreakerConfig(failure_threshold=5, success_threshold=2, open_timeout_seconds=60)

    @pytest.mark.asyncio
    async def test_sixth_call_short_circuits(self, orchestrator, add, breaker, attempt_log):
        """Five network failures open the breaker; the sixth call makes no attempt."""
        plaid = add("plaid", error=ProviderNetworkError("plaid"))

        for _ in range(5):
            result = await get_accounts(orchestrator, institution_id=None, preferred_provider="plaid")
            assert result.failure.kind == ALL_PROVIDERS_EXHAUSTED
        assert len(attempt_log) == 5

        assert await breaker.allow(PLAID_US) is False
        sixth = await get_accounts(orchestrator, institution_id=None, preferred_provider="plaid")

        assert sixth.failure.kind == ALL_PROVIDERS_EXHAUSTED
        assert sixth.attempts == 0
        assert sixth.failure.skipped[0].reason == SKIP_CIRCUIT_OPEN
        assert len(attempt_log) == 5
        assert len(plaid.calls) == 5


# ============================================================
# Timeouts, Cancellation and Audit Failures
# ============================================================

class TestTimeoutsAndCancellation:

    @pytest.mark.asyncio
    async def test_timeout_recorded_and_fails_over(self, orchestrator, add,
                                                   attempt_log, breaker):
        orchestrator.config = OrchestratorConfig(
            default_timeout_seconds=0.05, provider_timeouts={"mx": 1.0}
        )
        add("plaid", delay=1.0)
        add("mx")

        result = await get_accounts(orchestrator)

        assert result.provider == MX_US
        first = attempt_log.all()[0]
        assert first.outcome == AttemptOutcome.TIMEOUT
        assert first.error_kind == ErrorKind.NETWORK
        assert first.error_code == "TIMEOUT"
        assert first.metadata["timeout_seconds"] == 0.05
        assert breaker.get_state(PLAID_US).consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_cancellation_records_and_propagates(self, orchestrator, add,
                                                       attempt_log, breaker, health_monitor):
        """A cancelled call is audited but leaves breaker and health untouched."""
        plaid = add("plaid", delay=5.0)
        add("mx")

        task = asyncio.create_task(get_accounts(orchestrator))
        while not plaid.calls:
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        records = attempt_log.all()
        assert len(records) == 1
        assert records[0].outcome == AttemptOutcome.CANCELLED
        assert breaker.get_state(PLAID_US).consecutive_failures == 0
        assert health_monitor.get_status(PLAID_US).total_calls == 0

    @pytest.mark.asyncio
    async def test_cancel_during_health_write_keeps_record(self, orchestrator, add,
                                                           attempt_log, clock):
        """Cancelling while health is being persisted still leaves the attempt audited."""
        store = SlowHealthStore(delay=0.2)
        orchestrator.health_monitor = ProviderHealthMonitor(
            HealthConfig(window_seconds=300), store=store, clock=clock
        )
        add("plaid")

        task = asyncio.create_task(get_accounts(orchestrator))
        await store.saving.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        records = attempt_log.all()
        assert len(records) == 1
        assert records[0].outcome == AttemptOutcome.SUCCESS

        await orchestrator.drain()
        assert len(store.saved) == 1
        assert orchestrator.health_monitor.get_status(PLAID_US).successful_calls == 1

    @pytest.mark.asyncio
    async def test_audit_write_failure_does_not_change_result(self, orchestrator, add):
        orchestrator.attempt_log.append = AsyncMock(side_effect=RuntimeError("db down"))
        add("plaid")

        result = await get_accounts(orchestrator)

        assert result.success is True
        orchestrator.attempt_log.append.assert_awaited_once()


# ============================================================
# Rate Limiting
# ============================================================

class TestRateLimiting:
    """Tests for rate limit budgets and backoff inside execute()."""

    @pytest.mark.asyncio
    async def test_backed_off_candidate_skipped_without_record(self, orchestrator, add,
                                                                attempt_log, clock):
        plaid = add("plaid", error=RateLimitError("plaid", retry_after=30))
        mx = add("mx")
        await get_accounts(orchestrator)

        result = await get_accounts(orchestrator)

        assert result.provider == MX_US
        assert result.failover_used is False
        assert plaid.calls == ["get_accounts"]
        assert mx.calls == ["get_accounts", "get_accounts"]
        assert [a.identity for a in attempt_log.all()] == [PLAID_US, MX_US, MX_US]

        clock.advance(31)
        plaid.error = None
        result = await get_accounts(orchestrator)

        assert result.provider == PLAID_US

    @pytest.mark.asyncio
    async def test_backoff_without_retry_after(self, orchestrator, add, rate_limiter):
        add("plaid", error=RateLimitError("plaid"))
        add("mx")

        await get_accounts(orchestrator)

        stats = rate_limiter.get_stats(PLAID_US)
        assert stats["consecutive_rate_limits"] == 1
        assert stats["backoff_until"] is not None

    @pytest.mark.asyncio
    async def test_exhausted_budget_fails_over(self, orchestrator, add, rate_limiter):
        rate_limiter.configure("plaid", RateLimitConfig(requests_per_minute=1, burst_size=1))
        plaid = add("plaid")
        add("mx")

        first = await get_accounts(orchestrator)
        second = await get_accounts(orchestrator)

        assert first.provider == PLAID_US
        assert second.provider == MX_US
        assert plaid.calls == ["get_accounts"]

    @pytest.mark.asyncio
    async def test_all_rate_limited_is_exhausted(self, orchestrator, add, rate_limiter, attempt_log):
        add("plaid")
        await rate_limiter.record_rate_limited(PLAID_US, retry_after=60)

        result = await get_accounts(orchestrator, institution_id=None, preferred_provider="plaid")

        assert result.failure.kind == ALL_PROVIDERS_EXHAUSTED
        assert [s.reason for s in result.failure.skipped] == [SKIP_RATE_LIMITED]
        assert result.attempts == 0
        assert len(attempt_log) == 0

    @pytest.mark.asyncio
    async def test_next_provider_skips_backed_off(self, orchestrator, add, rate_limiter, attempt_log):
        add("plaid", error=ProviderNetworkError("plaid"))
        add("mx")
        add("finicity")
        await rate_limiter.record_rate_limited(MX_US, retry_after=60)

        result = await get_accounts(orchestrator)

        assert result.provider == FINICITY_US
        assert attempt_log.all()[0].next_provider == "finicity"

    @pytest.mark.asyncio
    async def test_rate_limited_skip_leaves_breaker_alone(self, orchestrator, add,
                                                          rate_limiter, breaker):
        add("plaid")
        add("mx")
        await rate_limiter.record_rate_limited(PLAID_US, retry_after=60)

        await get_accounts(orchestrator)

        state = breaker.get_state(PLAID_US)
        assert state.state == CircuitState.CLOSED
        assert state.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_success_clears_backoff(self, orchestrator, add, rate_limiter, clock):
        add("plaid")
        await rate_limiter.record_rate_limited(PLAID_US)
        clock.advance(2)

        await get_accounts(orchestrator)

        assert rate_limiter.get_stats(PLAID_US)["consecutive_rate_limits"] == 0

    @pytest.mark.asyncio
    async def test_health_sweep_is_not_throttled(self, orchestrator, add, rate_limiter):
        add("plaid", regions=["US"])
        await rate_limiter.record_rate_limited(PLAID_US, retry_after=60)

        results = await orchestrator.check_providers("US")

        assert results == {"plaid": True}


# ============================================================
# Candidate Resolution
# ============================================================

class TestCandidateResolution:
    """Tests for mapping, preferred provider and region default fallback."""

    def test_mapping_wins_over_preferred(self, orchestrator):
        candidates = orchestrator.resolve_candidates("US", preferred_provider="finicity", institution_id="ins_chase")
        assert candidates == [PLAID_US, MX_US, FINICITY_US]

    def test_preferred_when_unmapped(self, orchestrator):
        assert orchestrator.resolve_candidates("us", "MX", "unknown_bank") == [MX_US]

    def test_region_default(self, orchestrator):
        assert orchestrator.resolve_candidates("MX") == [ProviderIdentity("belvo", "MX")]

    def test_no_candidates(self, orchestrator):
        assert orchestrator.resolve_candidates("BR") == []

    @pytest.mark.asyncio
    async def test_execute_without_candidates(self, orchestrator, attempt_log):
        result = await get_accounts(orchestrator, institution_id=None, region="BR")

        assert result.success is False
        assert result.failure.kind == ALL_PROVIDERS_EXHAUSTED
        assert result.failure.failures == []
        assert len(attempt_log) == 0

    @pytest.mark.asyncio
    async def test_region_scoped_mapping(self, orchestrator, add):
        add("belvo", error=ProviderUnavailableError("belvo"))
        add("plaid")

        result = await get_accounts(orchestrator, institution_id="bbva_mx", region="MX")

        assert result.provider == ProviderIdentity("plaid", "MX")
        assert result.failover_used is True


# ============================================================
# Results and Read Side
# ============================================================

class TestResultsAndReadSide:

    @pytest.mark.asyncio
    async def test_raise_for_failure_non_retryable(self, orchestrator, add):
        add("plaid", error=AuthenticationError("plaid"))

        result = await get_accounts(orchestrator)

        with pytest.raises(NonRetryableProviderError) as exc_info:
            result.raise_for_failure()
        assert exc_info.value.kind == "auth"
        assert exc_info.value.details["failures"][0]["provider"] == "plaid"

    @pytest.mark.asyncio
    async def test_raise_for_failure_exhausted(self, orchestrator):
        result = await get_accounts(orchestrator, institution_id=None, region="BR")

        with pytest.raises(ProvidersExhaustedError):
            result.raise_for_failure()

    @pytest.mark.asyncio
    async def test_raise_for_failure_success_returns_self(self, orchestrator, add):
        add("plaid")

        result = await get_accounts(orchestrator)

        assert result.raise_for_failure() is result

    @pytest.mark.asyncio
    async def test_connection_history_newest_first(self, orchestrator, add):
        add("plaid", error=ProviderNetworkError("plaid"))
        add("mx")
        await get_accounts(orchestrator)

        history = await orchestrator.get_connection_history("acct-1", limit=10)

        assert [a.identity.provider for a in history] == ["mx", "plaid"]
        assert len(await orchestrator.get_connection_history("acct-1", limit=1)) == 1

    @pytest.mark.asyncio
    async def test_connection_history_rejects_bad_limit(self, orchestrator):
        with pytest.raises(ValueError):
            await orchestrator.get_connection_history("acct-1", limit=0)

    @pytest.mark.asyncio
    async def test_reset_circuit(self, orchestrator, add, breaker, health_monitor):
        add("plaid", error=ProviderNetworkError("plaid"))
        for _ in range(3):
            await get_accounts(orchestrator, institution_id=None, preferred_provider="plaid")

        snapshot = await orchestrator.reset_circuit("plaid", "US")

        assert snapshot.state == CircuitState.CLOSED
        assert snapshot.consecutive_failures == 0
        status = health_monitor.get_status(PLAID_US)
        assert status.total_calls == 0
        assert status.circuit_breaker_open is False

    @pytest.mark.asyncio
    async def test_reset_unknown_provider(self, orchestrator):
        with pytest.raises(ProviderNotRegisteredError):
            await orchestrator.reset_circuit("nope", "US")

    @pytest.mark.asyncio
    async def test_get_status(self, orchestrator, add):
        add("plaid")
        await get_accounts(orchestrator)

        status = orchestrator.get_status()

        assert status["providers"] == ["plaid"]
        assert status["institution_mappings"] == 2
        assert status["circuits"][0]["state"] == "closed"


# ============================================================
# Health Sweep
# ============================================================

class TestCheckProviders:
    """Tests for ProviderOrchestrator.check_providers."""

    @pytest.mark.asyncio
    async def test_sweep_feeds_health_only(self, orchestrator, add,
                                           health_monitor, breaker, attempt_log):
        add("plaid", regions=["US", "CA"])
        add("mx", regions=["US"], healthy=False)
        add("finicity", regions=["US"], delay=1.0)
        add("belvo", regions=["MX"])

        results = await orchestrator.check_providers("us")

        assert results == {"plaid": True, "mx": False, "finicity": False}
        assert health_monitor.get_status(PLAID_US).successful_calls == 1
        assert health_monitor.get_status(MX_US).failed_calls == 1
        assert "timed out" in health_monitor.get_status(FINICITY_US).last_error
        assert len(attempt_log) == 0
        assert breaker.get_state(MX_US).consecutive_failures == 0
