"""
Finsync - Pydantic Schemas
"""
from finsync.schemas.provider import (
    HealthStatusResponse,
    ProviderHealthListResponse,
    CircuitStateResponse,
    CircuitListResponse,
    ConnectionAttemptResponse,
    ConnectionHistoryResponse,
    AccountConnectionHealthResponse,
    ConnectionHealthSummaryResponse,
)

__all__ = [
    "HealthStatusResponse",
    "ProviderHealthListResponse",
    "CircuitStateResponse",
    "CircuitListResponse",
    "ConnectionAttemptResponse",
    "ConnectionHistoryResponse",
    "AccountConnectionHealthResponse",
    "ConnectionHealthSummaryResponse",
]
