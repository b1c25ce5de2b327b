"""
Finsync - Provider Monitoring Schemas
"""
from datetime import datetime
from typing import Optional, Any
from pydantic import BaseModel, Field


class HealthStatusResponse(BaseModel):
    """Rolling-window health of one provider in one region."""
    provider: str
    region: str
    status: str = Field(..., description="healthy, degraded or down")
    error_rate: float = Field(..., ge=0, le=100, description="Failed calls, percent of window")
    avg_response_time_ms: float
    successful_calls: int
    failed_calls: int
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_error: Optional[str] = None
    circuit_breaker_open: bool
    window_start_at: datetime
    updated_at: datetime


class ProviderHealthListResponse(BaseModel):
    region: Optional[str] = None
    providers: list[HealthStatusResponse]
    timestamp: datetime


class CircuitStateResponse(BaseModel):
    """Circuit breaker snapshot."""
    provider: str
    region: str
    state: str = Field(..., description="closed, open or half_open")
    consecutive_failures: int
    consecutive_successes: int
    opened_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None


class CircuitListResponse(BaseModel):
    region: Optional[str] = None
    circuits: list[CircuitStateResponse]
    timestamp: datetime


class ConnectionAttemptResponse(BaseModel):
    """One audited provider attempt."""
    id: str
    account_id: Optional[str] = None
    space_id: str
    provider: str
    region: str
    institution_id: Optional[str] = None
    operation: str
    outcome: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    response_time_ms: int
    failover_used: bool
    next_provider: Optional[str] = None
    attempted_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConnectionHistoryResponse(BaseModel):
    account_id: str
    attempts: list[ConnectionAttemptResponse]


class AccountConnectionHealthResponse(BaseModel):
    account_id: str
    provider: str
    region: str
    status: str
    health_score: int = Field(..., ge=0, le=100)
    failed_attempts: int
    last_success_at: Optional[datetime] = None
    last_error_at: Optional[datetime] = None
    last_error: Optional[str] = None
    action_required: Optional[str] = None


class ConnectionHealthSummaryResponse(BaseModel):
    """Connection health of every account in a space."""
    space_id: str
    total_connections: int
    healthy_count: int
    degraded_count: int
    error_count: int
    requires_reauth_count: int
    overall_health_score: int
    accounts: list[AccountConnectionHealthResponse]
    provider_health: list[dict[str, Any]]
