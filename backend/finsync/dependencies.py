"""
Finsync - Dependencies
Dependency injection for FastAPI endpoints
"""
from finsync.data_providers.connection_health import ConnectionHealthService
from finsync.data_providers.orchestrator import ProviderOrchestrator
from finsync.data_providers.provider_init import get_orchestrator, get_connection_health_service
from finsync.utils.exceptions import raise_service_unavailable


def require_orchestrator() -> ProviderOrchestrator:
    """
    Running provider orchestrator.

    Raises:
        HTTPException: 503 until startup has completed
    """
    orchestrator = get_orchestrator()
    if orchestrator is None:
        raise_service_unavailable("Provider orchestrator is not initialized")
    return orchestrator


def require_connection_health() -> ConnectionHealthService:
    service = get_connection_health_service()
    if service is None:
        raise_service_unavailable("Provider orchestrator is not initialized")
    return service
