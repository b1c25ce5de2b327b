"""
Data Providers Package

Resilient access to external financial data providers: adapters, circuit
breaker, health monitoring, rate limiting, failover orchestration and the
connection attempt audit log.
"""
from finsync.data_providers.identity import ProviderIdentity, DEFAULT_REGION
from finsync.data_providers.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitSnapshot,
)
from finsync.data_providers.health_monitor import (
    ProviderHealthMonitor,
    HealthConfig,
    HealthState,
    HealthStatus,
)
from finsync.data_providers.error_classifier import ErrorClassifier, ClassifiedError
from finsync.data_providers.institution_map import InstitutionProviderMap, InstitutionProviderMapping
from finsync.data_providers.attempt_log import (
    AttemptOutcome,
    ConnectionAttempt,
    InMemoryAttemptLog,
    DatabaseAttemptLog,
)
from finsync.data_providers.registry import ProviderRegistry
from finsync.data_providers.rate_limiter import ProviderRateLimiter, RateLimitConfig
from finsync.data_providers.orchestrator import (
    ProviderOrchestrator,
    OrchestratorConfig,
    OrchestrationResult,
    FailureReport,
    CandidateFailure,
    AccountContext,
    ALL_PROVIDERS_EXHAUSTED,
    SKIP_RATE_LIMITED,
)
from finsync.data_providers.connection_health import ConnectionHealthService, ConnectionStatus

__all__ = [
    # Identity
    "ProviderIdentity",
    "DEFAULT_REGION",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CircuitSnapshot",
    # Health Monitor
    "ProviderHealthMonitor",
    "HealthConfig",
    "HealthState",
    "HealthStatus",
    # Classification
    "ErrorClassifier",
    "ClassifiedError",
    # Routing
    "InstitutionProviderMap",
    "InstitutionProviderMapping",
    "ProviderRegistry",
    # Rate Limiting
    "ProviderRateLimiter",
    "RateLimitConfig",
    # Audit
    "AttemptOutcome",
    "ConnectionAttempt",
    "InMemoryAttemptLog",
    "DatabaseAttemptLog",
    # Orchestrator
    "ProviderOrchestrator",
    "OrchestratorConfig",
    "OrchestrationResult",
    "FailureReport",
    "CandidateFailure",
    "AccountContext",
    "ALL_PROVIDERS_EXHAUSTED",
    "SKIP_RATE_LIMITED",
    # Connection Health
    "ConnectionHealthService",
    "ConnectionStatus",
]
