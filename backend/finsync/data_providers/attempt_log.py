"""
Connection Attempt Log

Append-only audit trail of every candidate the orchestrator actually tried.
Records are immutable once written and never deleted.

Two backends:
- InMemoryAttemptLog: process-local, used in tests and when no database
  is configured
- DatabaseAttemptLog: one row per attempt in `connection_attempts`
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Any, Protocol, Callable
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from finsync.data_providers.adapters.base import ErrorKind, utcnow
from finsync.data_providers.identity import ProviderIdentity
from finsync.utils.exceptions import AuditWriteError


class AttemptOutcome(str, Enum):
    """Outcome of a single candidate attempt."""
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ConnectionAttempt:
    """One audited candidate attempt."""
    space_id: str
    identity: ProviderIdentity
    operation: str
    outcome: AttemptOutcome
    account_id: Optional[str] = None
    institution_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    response_time_ms: int = 0
    failover_used: bool = False
    next_provider: Optional[str] = None
    attempted_at: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "space_id": self.space_id,
            "provider": self.identity.provider,
            "region": self.identity.region,
            "institution_id": self.institution_id,
            "operation": self.operation,
            "outcome": self.outcome.value,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "response_time_ms": self.response_time_ms,
            "failover_used": self.failover_used,
            "next_provider": self.next_provider,
            "attempted_at": self.attempted_at.isoformat(),
            "metadata": self.metadata,
        }


class AttemptLog(Protocol):
    """Append-only store of ConnectionAttempts."""

    async def append(self, attempt: ConnectionAttempt) -> None: ...

    async def history(self, account_id: str, limit: int = 10) -> list[ConnectionAttempt]: ...

    async def for_space(self, space_id: str, since: Optional[datetime] = None) -> list[ConnectionAttempt]: ...


class InMemoryAttemptLog:
    """
    Process-local attempt log.

    Appends are serialized with an asyncio lock; reads return copies of the
    record list so callers cannot mutate the log.
    """

    def __init__(self):
        self._records: list[ConnectionAttempt] = []
        self._lock = asyncio.Lock()

    async def append(self, attempt: ConnectionAttempt) -> None:
        async with self._lock:
            self._records.append(attempt)

    async def history(self, account_id: str, limit: int = 10) -> list[ConnectionAttempt]:
        """Most recent attempts for an account, newest first."""
        matching = [r for r in reversed(self._records) if r.account_id == account_id]
        matching.sort(key=lambda r: r.attempted_at, reverse=True)
        return matching[:limit]

    async def for_space(self, space_id: str, since: Optional[datetime] = None) -> list[ConnectionAttempt]:
        """Attempts for a space, newest first."""
        matching = [
            r for r in reversed(self._records)
            if r.space_id == space_id and (since is None or r.attempted_at >= since)
        ]
        matching.sort(key=lambda r: r.attempted_at, reverse=True)
        return matching

    def all(self) -> list[ConnectionAttempt]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)


class DatabaseAttemptLog:
    """
    Attempt log backed by the `connection_attempts` table.

    Each append runs in its own short session so a failed audit write never
    touches the caller's transaction.
    """

    def __init__(self, session_maker: Callable[[], Any]):
        self._session_maker = session_maker

    async def append(self, attempt: ConnectionAttempt) -> None:
        """
        Persist one attempt.

        Raises:
            AuditWriteError: If the row could not be written
        """
        from finsync.db.repositories.connection_attempt import ConnectionAttemptRepository

        try:
            async with self._session_maker() as session:
                repo = ConnectionAttemptRepository(session)
                await repo.create(attempt)
        except SQLAlchemyError as e:
            raise AuditWriteError(f"Failed to write connection attempt {attempt.id}: {e}") from e
        logger.debug(f"Connection attempt {attempt.id} persisted ({attempt.identity}, {attempt.outcome.value})")

    async def history(self, account_id: str, limit: int = 10) -> list[ConnectionAttempt]:
        from finsync.db.repositories.connection_attempt import ConnectionAttemptRepository

        async with self._session_maker() as session:
            repo = ConnectionAttemptRepository(session)
            rows = await repo.get_for_account(account_id, limit=limit)
            return [row.to_attempt() for row in rows]

    async def for_space(self, space_id: str, since: Optional[datetime] = None) -> list[ConnectionAttempt]:
        from finsync.db.repositories.connection_attempt import ConnectionAttemptRepository

        async with self._session_maker() as session:
            repo = ConnectionAttemptRepository(session)
            rows = await repo.get_for_space(space_id, since=since)
            return [row.to_attempt() for row in rows]
