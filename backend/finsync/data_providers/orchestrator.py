"""
Provider Orchestrator

Entry point for every call to an external financial data provider.
Resolves the candidate order, consults the rate limiter and circuit
breaker before each attempt, invokes the adapter with a bounded timeout,
classifies failures and fails over to backups on retryable errors. Every attempted candidate
is written to the connection attempt log.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional, Any
from loguru import logger

from finsync.data_providers.adapters.base import BaseAdapter, ErrorKind, ProviderOperation
from finsync.data_providers.attempt_log import AttemptLog, AttemptOutcome, ConnectionAttempt
from finsync.data_providers.circuit_breaker import CircuitBreaker, CircuitSnapshot
from finsync.data_providers.error_classifier import ClassifiedError, ErrorClassifier
from finsync.data_providers.health_monitor import HealthStatus, ProviderHealthMonitor
from finsync.data_providers.identity import (
    DEFAULT_REGION,
    ProviderIdentity,
    normalize_provider,
    normalize_region,
)
from finsync.data_providers.institution_map import InstitutionProviderMap
from finsync.data_providers.rate_limiter import ProviderRateLimiter
from finsync.data_providers.registry import ProviderRegistry
from finsync.utils.exceptions import (
    NonRetryableProviderError,
    ProviderNotRegisteredError,
    ProvidersExhaustedError,
)


ALL_PROVIDERS_EXHAUSTED = "all_providers_exhausted"

# Reasons a candidate was passed over without a call
SKIP_CIRCUIT_OPEN = "circuit_open"
SKIP_NOT_REGISTERED = "not_registered"
SKIP_RATE_LIMITED = "rate_limited"


@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator."""
    default_timeout_seconds: float = 10.0
    provider_timeouts: dict[str, float] = field(default_factory=dict)
    health_check_timeout_seconds: float = 1.0

    # Fallback candidate when neither a mapping nor a preferred provider exists
    default_provider_by_region: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")
        if self.health_check_timeout_seconds <= 0:
            raise ValueError("health_check_timeout_seconds must be > 0")
        for provider, timeout in self.provider_timeouts.items():
            if timeout <= 0:
                raise ValueError(f"Timeout for {provider} must be > 0")
        self.provider_timeouts = {
            normalize_provider(p): float(t) for p, t in self.provider_timeouts.items()
        }
        self.default_provider_by_region = {
            normalize_region(r): normalize_provider(p)
            for r, p in self.default_provider_by_region.items()
        }

    def timeout_for(self, provider: str) -> float:
        return self.provider_timeouts.get(normalize_provider(provider), self.default_timeout_seconds)

    @classmethod
    def from_settings(cls, settings) -> "OrchestratorConfig":
        return cls(
            default_timeout_seconds=settings.PROVIDER_CALL_TIMEOUT_MS / 1000,
            provider_timeouts={p: ms / 1000 for p, ms in settings.PROVIDER_CALL_TIMEOUTS_MS.items()},
            health_check_timeout_seconds=settings.HEALTH_CHECK_TIMEOUT_MS / 1000,
            default_provider_by_region=dict(settings.DEFAULT_PROVIDER_BY_REGION),
        )


@dataclass(frozen=True)
class AccountContext:
    """Account and space an operation runs on behalf of."""
    space_id: str
    account_id: Optional[str] = None


@dataclass(frozen=True)
class CandidateFailure:
    """Why one attempted candidate failed."""
    identity: ProviderIdentity
    kind: str
    code: str
    message: str
    retryable: bool
    response_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.identity.provider,
            "region": self.identity.region,
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "response_time_ms": self.response_time_ms,
        }


@dataclass(frozen=True)
class SkippedCandidate:
    """A candidate passed over without a network call."""
    identity: ProviderIdentity
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.identity.provider,
            "region": self.identity.region,
            "reason": self.reason,
        }


@dataclass
class FailureReport:
    """
    Structured failure of an execute call.

    `kind` is the ErrorKind value of a non-retryable candidate failure, or
    `all_providers_exhausted` when every candidate failed or was skipped.
    """
    kind: str
    message: str
    failures: list[CandidateFailure] = field(default_factory=list)
    skipped: list[SkippedCandidate] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return self.kind == ALL_PROVIDERS_EXHAUSTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "failures": [f.to_dict() for f in self.failures],
            "skipped": [s.to_dict() for s in self.skipped],
        }


@dataclass
class OrchestrationResult:
    """Outcome of ProviderOrchestrator.execute."""
    success: bool
    data: Any = None
    provider: Optional[ProviderIdentity] = None
    failover_used: bool = False
    response_time_ms: int = 0
    attempts: int = 0
    failure: Optional[FailureReport] = None

    def raise_for_failure(self) -> "OrchestrationResult":
        """
        Raise if the call failed, otherwise return self.

        Raises:
            NonRetryableProviderError: A candidate failed with auth/validation
            ProvidersExhaustedError: Every candidate failed or was skipped
        """
        if self.success or self.failure is None:
            return self
        details = self.failure.to_dict()
        if self.failure.exhausted:
            raise ProvidersExhaustedError(self.failure.message, details=details)
        raise NonRetryableProviderError(self.failure.message, kind=self.failure.kind, details=details)


@dataclass
class _AttemptResult:
    success: bool
    response_time_ms: int
    data: Any = None
    error: Optional[ClassifiedError] = None


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class ProviderOrchestrator:
    """
    Failover engine over registered provider adapters.

    The orchestrator holds no state across calls; the circuit breaker,
    health monitor and rate limiter it is given carry all shared
    per-provider state.

    Usage:
        orchestrator = ProviderOrchestrator(registry, breaker, health, institution_map, attempt_log)
        result = await orchestrator.execute(
            "sync_transactions",
            {"credentials": creds},
            AccountContext(space_id="space-1", account_id="acct-1"),
            preferred_provider="plaid",
            region="US",
        )
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        breaker: CircuitBreaker,
        health_monitor: ProviderHealthMonitor,
        institution_map: InstitutionProviderMap,
        attempt_log: AttemptLog,
        classifier: Optional[ErrorClassifier] = None,
        config: Optional[OrchestratorConfig] = None,
        rate_limiter: Optional[ProviderRateLimiter] = None,
    ):
        self.registry = registry
        self.breaker = breaker
        self.health_monitor = health_monitor
        self.institution_map = institution_map
        self.attempt_log = attempt_log
        self.classifier = classifier or ErrorClassifier()
        self.config = config or OrchestratorConfig()
        self.rate_limiter = rate_limiter or ProviderRateLimiter()
        # Bookkeeping tasks that outlive a cancelled caller
        self._bookkeeping: set[asyncio.Task] = set()

    # ==================== Candidate Resolution ====================

    def resolve_candidates(
        self,
        region: str = DEFAULT_REGION,
        preferred_provider: Optional[str] = None,
        institution_id: Optional[str] = None,
    ) -> list[ProviderIdentity]:
        """
        Build the ordered candidate list.

        Order of precedence:
        1. Institution mapping (primary + backups)
        2. Caller's preferred provider alone
        3. Region default provider alone
        """
        region = normalize_region(region) or DEFAULT_REGION

        resolved = self.institution_map.resolve(institution_id, region)
        if resolved is not None:
            return resolved.ordered

        if preferred_provider and normalize_provider(preferred_provider):
            return [ProviderIdentity(preferred_provider, region)]

        default = self.config.default_provider_by_region.get(region)
        if default:
            return [ProviderIdentity(default, region)]
        return []

    def _next_provider(self, candidates: list[ProviderIdentity], index: int) -> Optional[str]:
        """Next candidate that would be attempted if this one fails."""
        for candidate in candidates[index + 1:]:
            if (
                candidate.provider in self.registry
                and self.breaker.peek(candidate)
                and self.rate_limiter.check(candidate).allowed
            ):
                return candidate.provider
        return None

    # ==================== Execution ====================

    async def execute(
        self,
        operation: ProviderOperation | str,
        args: Optional[dict[str, Any]],
        account_context: AccountContext,
        preferred_provider: Optional[str] = None,
        region: str = DEFAULT_REGION,
        institution_id: Optional[str] = None,
    ) -> OrchestrationResult:
        """
        Execute an operation with automatic failover.

        Candidates are tried strictly in order, one at a time. A success
        returns immediately; an auth/validation failure stops the sequence
        and is returned as-is; any other failure moves on to the next
        candidate.

        Args:
            operation: Logical operation name
            args: Operation arguments (credentials are never logged)
            account_context: Account/space the call is made for
            preferred_provider: Used when no institution mapping exists
            region: Region code
            institution_id: External institution or network identifier

        Returns:
            OrchestrationResult; failures are returned, not raised
        """
        operation = ProviderOperation(operation)
        args = args or {}
        candidates = self.resolve_candidates(region, preferred_provider, institution_id)

        if not candidates:
            message = f"No candidate providers for {operation.value} in region {normalize_region(region)}"
            logger.error(message)
            return OrchestrationResult(
                success=False,
                failure=FailureReport(kind=ALL_PROVIDERS_EXHAUSTED, message=message),
            )

        failures: list[CandidateFailure] = []
        skipped: list[SkippedCandidate] = []
        attempts = 0

        for index, candidate in enumerate(candidates):
            adapter = self.registry.find(candidate.provider)
            if adapter is None:
                logger.warning(f"Skipping {candidate} for {operation.value}: provider not registered")
                skipped.append(SkippedCandidate(candidate, SKIP_NOT_REGISTERED))
                continue

            throttle = self.rate_limiter.check(candidate)
            if not throttle.allowed:
                self._skip_rate_limited(candidate, operation, throttle.reason, throttle.wait_seconds, skipped)
                continue

            if not await self.breaker.allow(candidate):
                logger.warning(f"Skipping {candidate} for {operation.value}: circuit open")
                skipped.append(SkippedCandidate(candidate, SKIP_CIRCUIT_OPEN))
                continue

            # Reserve the slot; a concurrent caller may have taken the last one
            throttle = await self.rate_limiter.acquire(candidate)
            if not throttle.allowed:
                self._skip_rate_limited(candidate, operation, throttle.reason, throttle.wait_seconds, skipped)
                continue

            failover_used = attempts > 0
            attempts += 1

            attempt = await self._attempt(
                adapter,
                candidate,
                operation,
                args,
                account_context,
                institution_id,
                failover_used,
                self._next_provider(candidates, index),
            )

            if attempt.success:
                if failover_used:
                    logger.info(f"{operation.value} succeeded on failover provider {candidate}")
                return OrchestrationResult(
                    success=True,
                    data=attempt.data,
                    provider=candidate,
                    failover_used=failover_used,
                    response_time_ms=attempt.response_time_ms,
                    attempts=attempts,
                )

            error = attempt.error
            failure = CandidateFailure(
                identity=candidate,
                kind=error.kind.value,
                code=error.code,
                message=error.message,
                retryable=error.retryable,
                response_time_ms=attempt.response_time_ms,
            )
            failures.append(failure)

            if not error.retryable:
                logger.error(
                    f"{operation.value} failed on {candidate} with non-retryable {error.kind.value} error: "
                    f"{error.message}"
                )
                return OrchestrationResult(
                    success=False,
                    provider=candidate,
                    failover_used=failover_used,
                    response_time_ms=attempt.response_time_ms,
                    attempts=attempts,
                    failure=FailureReport(
                        kind=error.kind.value,
                        message=error.message,
                        failures=[failure],
                        skipped=skipped,
                    ),
                )

            logger.warning(
                f"{operation.value} failed on {candidate} ({error.kind.value}: {error.message}), "
                f"trying next candidate"
            )

        message = (
            f"All providers exhausted for {operation.value}: "
            f"{len(failures)} failed, {len(skipped)} skipped"
        )
        logger.error(message)
        return OrchestrationResult(
            success=False,
            failover_used=attempts > 1,
            attempts=attempts,
            failure=FailureReport(
                kind=ALL_PROVIDERS_EXHAUSTED,
                message=message,
                failures=failures,
                skipped=skipped,
            ),
        )

    @staticmethod
    def _skip_rate_limited(
        candidate: ProviderIdentity,
        operation: ProviderOperation,
        reason: Optional[str],
        wait_seconds: float,
        skipped: list[SkippedCandidate],
    ) -> None:
        logger.warning(
            f"Skipping {candidate} for {operation.value}: rate limited ({reason}, {wait_seconds:.1f}s left)"
        )
        skipped.append(SkippedCandidate(candidate, SKIP_RATE_LIMITED))

    async def _attempt(
        self,
        adapter: BaseAdapter,
        identity: ProviderIdentity,
        operation: ProviderOperation,
        args: dict[str, Any],
        context: AccountContext,
        institution_id: Optional[str],
        failover_used: bool,
        next_provider: Optional[str],
    ) -> _AttemptResult:
        """
        Run one candidate and record its outcome.

        Once the adapter call has returned or raised, the bookkeeping runs to
        completion even if the caller is cancelled meanwhile.
        """
        timeout = self.config.timeout_for(identity.provider)
        logger.debug(f"Attempting {operation.value} on {identity} (timeout {timeout:.1f}s)")

        def record(outcome: AttemptOutcome, response_time_ms: int, error: Optional[ClassifiedError] = None,
                   code: Optional[str] = None, message: Optional[str] = None) -> ConnectionAttempt:
            # Only a retryable failure moves on to another provider
            fails_over = error is not None and error.retryable
            return ConnectionAttempt(
                space_id=context.space_id,
                account_id=context.account_id,
                identity=identity,
                institution_id=institution_id,
                operation=operation.value,
                outcome=outcome,
                error_code=error.code if error else code,
                error_message=error.message if error else message,
                error_kind=error.kind if error else None,
                response_time_ms=response_time_ms,
                failover_used=failover_used,
                next_provider=next_provider if fails_over else None,
                metadata={"timeout_seconds": timeout},
            )

        start = time.perf_counter()
        try:
            data = await asyncio.wait_for(adapter.invoke(operation, args, identity.region), timeout=timeout)
        except asyncio.CancelledError:
            elapsed = _elapsed_ms(start)
            logger.warning(f"{operation.value} on {identity} cancelled after {elapsed}ms")
            await self._log_attempt(
                record(AttemptOutcome.CANCELLED, elapsed, code="CANCELLED", message="Attempt cancelled by caller")
            )
            raise
        except Exception as e:
            elapsed = _elapsed_ms(start)
            error = self.classifier.classify(e, identity.provider)
            outcome = AttemptOutcome.TIMEOUT if error.timed_out or error.code == "TIMEOUT" else AttemptOutcome.FAILURE
            await self._settle(identity, record(outcome, elapsed, error=error), elapsed, error)
            return _AttemptResult(success=False, response_time_ms=elapsed, error=error)

        elapsed = _elapsed_ms(start)
        await self._settle(identity, record(AttemptOutcome.SUCCESS, elapsed), elapsed)
        logger.debug(f"{operation.value} on {identity} succeeded in {elapsed}ms")
        return _AttemptResult(success=True, response_time_ms=elapsed, data=data)

    async def _settle(
        self,
        identity: ProviderIdentity,
        attempt: ConnectionAttempt,
        response_time_ms: int,
        error: Optional[ClassifiedError] = None,
    ) -> None:
        """
        Record a finished call, shielded from cancellation of the caller.

        The audit record is written first so it exists even while the health
        write-through is still in flight.
        """
        task = asyncio.ensure_future(self._record_call(identity, attempt, response_time_ms, error))
        self._bookkeeping.add(task)
        task.add_done_callback(self._bookkeeping.discard)
        await asyncio.shield(task)

    async def _record_call(
        self,
        identity: ProviderIdentity,
        attempt: ConnectionAttempt,
        response_time_ms: int,
        error: Optional[ClassifiedError],
    ) -> None:
        success = error is None
        await self._log_attempt(attempt)
        await self.breaker.record_outcome(identity, success)
        await self.health_monitor.record_call(
            identity, success, response_time_ms, None if success else error.message
        )
        if success:
            await self.rate_limiter.record_success(identity)
        elif error.kind == ErrorKind.RATE_LIMIT:
            await self.rate_limiter.record_rate_limited(identity, error.retry_after)

    async def drain(self) -> None:
        """Wait for bookkeeping left running by cancelled callers."""
        if not self._bookkeeping:
            return
        results = await asyncio.gather(*self._bookkeeping, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning(f"Provider call bookkeeping failed: {result}")

    async def _log_attempt(self, attempt: ConnectionAttempt) -> None:
        """Append to the audit log; a failed write never affects the result."""
        try:
            await self.attempt_log.append(attempt)
        except Exception as e:
            logger.warning(f"Failed to log connection attempt for {attempt.identity}: {e}")

    # ==================== Read Side ====================

    def get_health(self, region: Optional[str] = None) -> list[HealthStatus]:
        """Health snapshot for dashboards."""
        return self.health_monitor.get_all(region)

    def get_circuit_states(self, region: Optional[str] = None) -> list[CircuitSnapshot]:
        return self.breaker.get_all_states(region)

    async def get_connection_history(self, account_id: str, limit: int = 10) -> list[ConnectionAttempt]:
        """Most recent attempts for an account, newest first."""
        if limit < 1:
            raise ValueError("limit must be >= 1")
        return await self.attempt_log.history(account_id, limit)

    async def reset_circuit(self, provider: str, region: str = DEFAULT_REGION) -> CircuitSnapshot:
        """
        Force a provider's breaker closed and zero its health window.

        Raises:
            ProviderNotRegisteredError: If the provider is unknown
        """
        if provider not in self.registry:
            raise ProviderNotRegisteredError(provider)
        identity = ProviderIdentity(provider, region)
        await self.breaker.reset(identity)
        await self.health_monitor.reset(identity)
        return self.breaker.get_state(identity)

    # ==================== Health Sweep ====================

    async def check_providers(self, region: str = DEFAULT_REGION) -> dict[str, bool]:
        """
        Probe every registered adapter serving `region` concurrently.

        Results feed the health monitor only; breakers and the attempt log
        are left alone.

        Returns:
            Mapping of provider name to reachability
        """
        region = normalize_region(region) or DEFAULT_REGION
        timeout = self.config.health_check_timeout_seconds

        async def probe(adapter: BaseAdapter) -> tuple[str, bool]:
            identity = ProviderIdentity(adapter.name, region)
            start = time.perf_counter()
            try:
                result = await asyncio.wait_for(adapter.health_check(region), timeout=timeout)
                healthy, message = result.healthy, result.message
            except asyncio.TimeoutError:
                healthy, message = False, f"Health check timed out after {timeout:.1f}s"
            except Exception as e:
                healthy, message = False, str(e) or type(e).__name__
            latency_ms = _elapsed_ms(start)

            await self.health_monitor.record_call(identity, healthy, latency_ms, None if healthy else message)
            if not healthy:
                logger.warning(f"Health check failed for {identity}: {message}")
            return adapter.name, healthy

        adapters = [a for a in self.registry.adapters() if a.supports_region(region)]
        results = await asyncio.gather(*(probe(a) for a in adapters))
        return dict(results)

    def get_status(self) -> dict[str, Any]:
        """Summary of registered providers and their breaker states."""
        return {
            "providers": self.registry.names(),
            "circuits": [s.to_dict() for s in self.breaker.get_all_states()],
            "institution_mappings": len(self.institution_map),
            "rate_limits": self.rate_limiter.get_all_stats(),
        }
