"""
Provider Initialization Module

Builds the provider stack from settings, registers the configured adapters
and restores persisted state at startup. The running orchestrator is kept
as a module-level instance for the API layer.
"""
from typing import Optional, Callable, Any, Iterable
from loguru import logger

from finsync.config import Settings, settings as default_settings
from finsync.data_providers.adapters.base import BaseAdapter
from finsync.data_providers.adapters.plaid import PlaidAdapter, create_plaid_config
from finsync.data_providers.adapters.belvo import BelvoAdapter, create_belvo_config
from finsync.data_providers.attempt_log import AttemptLog, DatabaseAttemptLog, InMemoryAttemptLog
from finsync.data_providers.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from finsync.data_providers.connection_health import ConnectionHealthService
from finsync.data_providers.error_classifier import ErrorClassifier
from finsync.data_providers.health_monitor import HealthConfig, ProviderHealthMonitor
from finsync.data_providers.identity import DEFAULT_REGION, ProviderIdentity
from finsync.data_providers.institution_map import InstitutionProviderMap
from finsync.data_providers.orchestrator import OrchestratorConfig, ProviderOrchestrator
from finsync.data_providers.rate_limiter import ProviderRateLimiter, RateLimitConfig
from finsync.data_providers.registry import ProviderRegistry


SessionMaker = Callable[[], Any]

_orchestrator: Optional[ProviderOrchestrator] = None
_connection_health: Optional[ConnectionHealthService] = None


def create_configured_adapters(settings: Settings) -> list[BaseAdapter]:
    """Create an adapter for every provider whose credentials are set."""
    adapters: list[BaseAdapter] = []

    if settings.PLAID_CLIENT_ID and settings.PLAID_SECRET:
        adapters.append(PlaidAdapter(create_plaid_config(
            settings.PLAID_CLIENT_ID,
            settings.PLAID_SECRET,
            environment=settings.PLAID_ENV,
            webhook_secret=settings.PLAID_WEBHOOK_SECRET or None,
            timeout_seconds=settings.PROVIDER_CALL_TIMEOUT_MS / 1000,
        )))
    else:
        logger.warning("Plaid credentials not configured")

    if settings.BELVO_SECRET_KEY_ID and settings.BELVO_SECRET_KEY_PASSWORD:
        adapters.append(BelvoAdapter(create_belvo_config(
            settings.BELVO_SECRET_KEY_ID,
            settings.BELVO_SECRET_KEY_PASSWORD,
            environment=settings.BELVO_ENV,
            webhook_secret=settings.BELVO_WEBHOOK_SECRET or None,
            timeout_seconds=settings.PROVIDER_CALL_TIMEOUT_MS / 1000,
        )))
    else:
        logger.warning("Belvo credentials not configured")

    return adapters


def build_orchestrator(
    settings: Settings,
    adapters: Iterable[BaseAdapter],
    session_maker: Optional[SessionMaker] = None,
) -> ProviderOrchestrator:
    """
    Wire registry, breaker, health monitor, rate limiter, classifier, map
    and attempt log.

    Without a session maker everything stays in memory.
    """
    registry = ProviderRegistry()
    for adapter in adapters:
        registry.register(adapter)

    health_store = None
    if session_maker is not None:
        from finsync.db.repositories.provider_health import DatabaseHealthStore
        health_store = DatabaseHealthStore(session_maker)

    breaker = CircuitBreaker(CircuitBreakerConfig.from_settings(settings))
    health_monitor = ProviderHealthMonitor(HealthConfig.from_settings(settings), store=health_store)
    breaker.register_state_listener(health_monitor.on_circuit_state_change)

    rate_limiter = ProviderRateLimiter()
    for provider, limits in settings.RATE_LIMITS.items():
        rate_limiter.configure(provider, RateLimitConfig.from_dict(
            limits, max_backoff_seconds=settings.RATE_LIMIT_MAX_BACKOFF_MS / 1000
        ))

    attempt_log: AttemptLog
    if session_maker is not None and settings.ATTEMPT_LOG_BACKEND == "database":
        attempt_log = DatabaseAttemptLog(session_maker)
    else:
        attempt_log = InMemoryAttemptLog()

    orchestrator = ProviderOrchestrator(
        registry=registry,
        breaker=breaker,
        health_monitor=health_monitor,
        institution_map=InstitutionProviderMap(),
        attempt_log=attempt_log,
        classifier=ErrorClassifier(settings.ERROR_CLASSIFICATION_OVERRIDES),
        config=OrchestratorConfig.from_settings(settings),
        rate_limiter=rate_limiter,
    )
    logger.info(
        f"Provider orchestrator built with {len(registry)} providers "
        f"({', '.join(registry.names()) or 'none'}), attempt log: {type(attempt_log).__name__}"
    )
    return orchestrator


async def load_institution_mappings(orchestrator: ProviderOrchestrator, session_maker: SessionMaker) -> int:
    """Replace the institution map with the mappings stored in the database."""
    from finsync.db.repositories.institution_mapping import InstitutionMappingRepository

    async with session_maker() as session:
        mappings = await InstitutionMappingRepository(session).load_all()
    return orchestrator.institution_map.replace(mappings)


async def restore_open_circuits(orchestrator: ProviderOrchestrator) -> int:
    """Re-open breakers whose persisted health row says they were open."""
    restored = 0
    for status in orchestrator.health_monitor.get_all():
        if status.circuit_breaker_open:
            opened_at = status.last_failure_at or status.updated_at
            await orchestrator.breaker.restore_open(status.identity, opened_at)
            restored += 1
    if restored:
        logger.warning(f"Restored {restored} open circuit breakers from persisted state")
    return restored


async def initialize_providers(
    settings: Settings = default_settings,
    adapters: Optional[Iterable[BaseAdapter]] = None,
    session_maker: Optional[SessionMaker] = None,
) -> ProviderOrchestrator:
    """
    Build and start the provider stack.

    Steps:
    1. Hydrate health rows (and optionally open breakers) from the database
    2. Load institution mappings
    3. Initialize every adapter; failures are recorded as failed health calls
    4. Optionally run one health sweep per default region
    """
    global _orchestrator, _connection_health

    if adapters is None:
        adapters = create_configured_adapters(settings)
    orchestrator = build_orchestrator(settings, adapters, session_maker)

    if session_maker is not None:
        try:
            await orchestrator.health_monitor.hydrate()
            if settings.CIRCUIT_STATE_PERSISTENT:
                await restore_open_circuits(orchestrator)
        except Exception as e:
            logger.error(f"Failed to load persisted provider health: {e}")
        try:
            await load_institution_mappings(orchestrator, session_maker)
        except Exception as e:
            logger.error(f"Failed to load institution mappings: {e}")

    failures = await orchestrator.registry.initialize_all()
    for name, error in failures.items():
        if error is None:
            continue
        adapter = orchestrator.registry.get(name)
        for region in adapter.config.regions or [DEFAULT_REGION]:
            await orchestrator.health_monitor.record_call(
                ProviderIdentity(name, region), False, 0, f"Initialization failed: {error}"
            )

    if settings.HEALTH_CHECK_ON_STARTUP and len(orchestrator.registry):
        for region in settings.DEFAULT_PROVIDER_BY_REGION:
            results = await orchestrator.check_providers(region)
            logger.info(f"Startup health check for {region}: {results}")

    _orchestrator = orchestrator
    _connection_health = ConnectionHealthService(
        orchestrator.attempt_log,
        orchestrator.health_monitor,
        orchestrator.breaker,
    )
    logger.info("Provider orchestrator initialized")
    return orchestrator


async def shutdown_providers() -> None:
    """Close every adapter and drop the module-level orchestrator."""
    global _orchestrator, _connection_health

    if _orchestrator is not None:
        await _orchestrator.drain()
        await _orchestrator.registry.close_all()
        logger.info("Provider orchestrator shut down")
    _orchestrator = None
    _connection_health = None


def get_orchestrator() -> Optional[ProviderOrchestrator]:
    return _orchestrator


def get_connection_health_service() -> Optional[ConnectionHealthService]:
    return _connection_health
