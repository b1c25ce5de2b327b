"""
Finsync - Provider Health Model

One row per (provider, region) holding the current rolling-window health
metrics, written through by the health monitor after every call so the
dashboard view survives restarts.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Text, UniqueConstraint, Index

from finsync.db.database import Base
from finsync.data_providers.adapters.base import utcnow
from finsync.data_providers.health_monitor import HealthState, HealthStatus
from finsync.data_providers.identity import ProviderIdentity


class ProviderHealthRecord(Base):
    """Persisted health status of a provider in a region.

    Attributes:
        provider: Provider name (lowercase)
        region: Region code (uppercase)
        status: healthy / degraded / down
        error_rate: Failed calls as a percentage of the window's calls
        circuit_breaker_open: Mirrors the in-memory breaker
        window_start_at: Start of the current rolling window
    """

    __tablename__ = "provider_health_status"

    id = Column(Integer, primary_key=True, index=True)

    provider = Column(String(50), nullable=False)
    region = Column(String(10), nullable=False, default="US")

    status = Column(String(20), nullable=False, default=HealthState.HEALTHY.value)
    error_rate = Column(Numeric(5, 2), nullable=False, default=0)
    avg_response_time_ms = Column(Integer, nullable=False, default=0)
    successful_calls = Column(Integer, nullable=False, default=0)
    failed_calls = Column(Integer, nullable=False, default=0)

    last_success_at = Column(DateTime(timezone=True), nullable=True)
    last_failure_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    circuit_breaker_open = Column(Boolean, nullable=False, default=False)
    window_start_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('provider', 'region', name='uq_provider_health_provider_region'),
        Index('ix_provider_health_status', 'status'),
        Index('ix_provider_health_circuit_open', 'circuit_breaker_open'),
    )

    def __repr__(self):
        return f"<ProviderHealthRecord {self.provider}:{self.region} {self.status}>"

    @property
    def identity(self) -> ProviderIdentity:
        return ProviderIdentity(self.provider, self.region)

    def apply(self, status: HealthStatus) -> None:
        """Copy a health snapshot onto this row."""
        self.status = status.status.value
        self.error_rate = round(status.error_rate, 2)
        self.avg_response_time_ms = int(round(status.avg_response_time_ms))
        self.successful_calls = status.successful_calls
        self.failed_calls = status.failed_calls
        self.last_success_at = status.last_success_at
        self.last_failure_at = status.last_failure_at
        self.last_error = status.last_error
        self.circuit_breaker_open = status.circuit_breaker_open
        self.window_start_at = status.window_start_at
        self.updated_at = status.updated_at

    def to_status(self) -> HealthStatus:
        """Rebuild the in-memory health snapshot."""
        return HealthStatus(
            identity=self.identity,
            window_start_at=self.window_start_at,
            status=HealthState(self.status),
            error_rate=float(self.error_rate or 0),
            avg_response_time_ms=float(self.avg_response_time_ms or 0),
            successful_calls=self.successful_calls or 0,
            failed_calls=self.failed_calls or 0,
            last_success_at=self.last_success_at,
            last_failure_at=self.last_failure_at,
            last_error=self.last_error,
            circuit_breaker_open=bool(self.circuit_breaker_open),
            updated_at=self.updated_at or self.window_start_at,
        )
