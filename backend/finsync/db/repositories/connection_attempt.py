"""
Connection Attempt Repository

Insert and query operations for the append-only connection attempt log.
Rows are never updated or deleted.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from finsync.db.models.connection_attempt import ConnectionAttemptRecord
from finsync.data_providers.attempt_log import ConnectionAttempt


class ConnectionAttemptRepository:
    """Repository for ConnectionAttemptRecord database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, attempt: ConnectionAttempt) -> ConnectionAttemptRecord:
        """Insert one attempt row."""
        record = ConnectionAttemptRecord.from_attempt(attempt)
        self.db.add(record)
        await self.db.commit()
        return record

    async def get_for_account(self, account_id: str, limit: int = 10) -> list[ConnectionAttemptRecord]:
        """
        Get the most recent attempts for an account.

        Args:
            account_id: Account identifier
            limit: Maximum rows to return

        Returns:
            Rows ordered newest first
        """
        result = await self.db.execute(
            select(ConnectionAttemptRecord)
            .where(ConnectionAttemptRecord.account_id == account_id)
            .order_by(ConnectionAttemptRecord.attempted_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_for_space(
        self,
        space_id: str,
        since: Optional[datetime] = None,
    ) -> list[ConnectionAttemptRecord]:
        """Get attempts for a space, newest first."""
        query = select(ConnectionAttemptRecord).where(ConnectionAttemptRecord.space_id == space_id)
        if since is not None:
            query = query.where(ConnectionAttemptRecord.attempted_at >= since)
        result = await self.db.execute(query.order_by(ConnectionAttemptRecord.attempted_at.desc()))
        return list(result.scalars().all())
