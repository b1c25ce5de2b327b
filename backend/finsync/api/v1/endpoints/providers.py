"""
Finsync - Provider Monitoring Endpoints
Read-only health, circuit and connection history views, plus admin
circuit reset
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from loguru import logger

from finsync.dependencies import require_orchestrator, require_connection_health
from finsync.data_providers.adapters.base import utcnow
from finsync.data_providers.connection_health import ConnectionHealthService
from finsync.data_providers.orchestrator import ProviderOrchestrator
from finsync.schemas.provider import (
    CircuitListResponse,
    CircuitStateResponse,
    ConnectionHealthSummaryResponse,
    ConnectionHistoryResponse,
    HealthStatusResponse,
    ProviderHealthListResponse,
)
from finsync.utils.exceptions import ProviderNotRegisteredError, raise_not_found

router = APIRouter()

RegionQuery = Query(None, min_length=2, max_length=10, description="Region code, e.g. US or MX")


@router.get(
    "/health",
    response_model=ProviderHealthListResponse,
    summary="Get provider health",
    description="Rolling-window health status of every tracked provider, optionally for one region."
)
async def get_provider_health(
    region: Optional[str] = RegionQuery,
    orchestrator: ProviderOrchestrator = Depends(require_orchestrator),
):
    """Get health status for all tracked providers."""
    statuses = orchestrator.get_health(region)
    return ProviderHealthListResponse(
        region=region.upper() if region else None,
        providers=[HealthStatusResponse(**s.to_dict()) for s in statuses],
        timestamp=utcnow(),
    )


@router.get(
    "/circuits",
    response_model=CircuitListResponse,
    summary="Get circuit breaker states",
)
async def get_circuits(
    region: Optional[str] = RegionQuery,
    orchestrator: ProviderOrchestrator = Depends(require_orchestrator),
):
    """Get circuit breaker state for all tracked providers."""
    snapshots = orchestrator.get_circuit_states(region)
    return CircuitListResponse(
        region=region.upper() if region else None,
        circuits=[CircuitStateResponse(**s.to_dict()) for s in snapshots],
        timestamp=utcnow(),
    )


@router.post(
    "/circuits/{provider}/reset",
    response_model=CircuitStateResponse,
    summary="Reset a circuit breaker",
    description="Force a provider's circuit closed and clear its health window."
)
async def reset_circuit(
    provider: str,
    region: str = Query("US", min_length=2, max_length=10),
    orchestrator: ProviderOrchestrator = Depends(require_orchestrator),
):
    """Reset the circuit breaker for a provider in a region."""
    try:
        snapshot = await orchestrator.reset_circuit(provider, region)
    except ProviderNotRegisteredError as e:
        raise_not_found(e.message)

    logger.info(f"Circuit for {provider}:{region.upper()} reset via API")
    return CircuitStateResponse(**snapshot.to_dict())


@router.get(
    "/connections/{account_id}",
    response_model=ConnectionHistoryResponse,
    summary="Get connection history",
    description="Most recent provider attempts made for an account, newest first."
)
async def get_connection_history(
    account_id: str,
    limit: int = Query(10, ge=1, le=100),
    orchestrator: ProviderOrchestrator = Depends(require_orchestrator),
):
    """Get the audit trail of provider attempts for an account."""
    attempts = await orchestrator.get_connection_history(account_id, limit)
    return ConnectionHistoryResponse(
        account_id=account_id,
        attempts=[a.to_dict() for a in attempts],
    )


@router.get(
    "/spaces/{space_id}/connection-health",
    response_model=ConnectionHealthSummaryResponse,
    summary="Get connection health for a space",
)
async def get_space_connection_health(
    space_id: str,
    service: ConnectionHealthService = Depends(require_connection_health),
):
    """Score each account's provider connection over the last 24 hours."""
    summary = await service.summarize_space(space_id)
    return ConnectionHealthSummaryResponse(**summary.to_dict())
