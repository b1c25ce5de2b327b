"""
Finsync - Connection Attempt Model

Append-only audit rows, one per provider candidate actually attempted.
Rows are inserted once and never updated or deleted.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, Index
from sqlalchemy.dialects.postgresql import JSONB

from finsync.db.database import Base
from finsync.data_providers.adapters.base import ErrorKind, utcnow
from finsync.data_providers.attempt_log import AttemptOutcome, ConnectionAttempt
from finsync.data_providers.identity import ProviderIdentity


class ConnectionAttemptRecord(Base):
    """Persisted connection attempt."""

    __tablename__ = "connection_attempts"

    id = Column(String(36), primary_key=True)

    account_id = Column(String(64), nullable=True)
    space_id = Column(String(64), nullable=False)

    provider = Column(String(50), nullable=False)
    region = Column(String(10), nullable=False, default="US")
    institution_id = Column(String(100), nullable=True)

    attempt_type = Column(String(50), nullable=False)  # operation name
    status = Column(String(20), nullable=False)        # success / failure / timeout / cancelled

    error_code = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=True)
    error_kind = Column(String(30), nullable=True)

    response_time_ms = Column(Integer, nullable=True)
    failover_used = Column(Boolean, nullable=False, default=False)
    failover_provider = Column(String(50), nullable=True)  # next candidate, if any

    # "metadata" is reserved on declarative classes
    attempt_metadata = Column("metadata", JSONB, nullable=True)

    attempted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_connection_attempts_account_attempted', 'account_id', attempted_at.desc()),
        Index('ix_connection_attempts_space_attempted', 'space_id', attempted_at.desc()),
        Index('ix_connection_attempts_provider_status', 'provider', 'status', attempted_at.desc()),
    )

    def __repr__(self):
        return f"<ConnectionAttemptRecord {self.id} {self.provider}:{self.region} {self.status}>"

    @classmethod
    def from_attempt(cls, attempt: ConnectionAttempt) -> "ConnectionAttemptRecord":
        return cls(
            id=attempt.id,
            account_id=attempt.account_id,
            space_id=attempt.space_id,
            provider=attempt.identity.provider,
            region=attempt.identity.region,
            institution_id=attempt.institution_id,
            attempt_type=attempt.operation,
            status=attempt.outcome.value,
            error_code=attempt.error_code,
            error_message=attempt.error_message,
            error_kind=attempt.error_kind.value if attempt.error_kind else None,
            response_time_ms=attempt.response_time_ms,
            failover_used=attempt.failover_used,
            failover_provider=attempt.next_provider,
            attempt_metadata=attempt.metadata or None,
            attempted_at=attempt.attempted_at,
        )

    def to_attempt(self) -> ConnectionAttempt:
        return ConnectionAttempt(
            id=self.id,
            account_id=self.account_id,
            space_id=self.space_id,
            identity=ProviderIdentity(self.provider, self.region),
            institution_id=self.institution_id,
            operation=self.attempt_type,
            outcome=AttemptOutcome(self.status),
            error_code=self.error_code,
            error_message=self.error_message,
            error_kind=ErrorKind(self.error_kind) if self.error_kind else None,
            response_time_ms=self.response_time_ms or 0,
            failover_used=bool(self.failover_used),
            next_provider=self.failover_provider,
            attempted_at=self.attempted_at,
            metadata=dict(self.attempt_metadata or {}),
        )
