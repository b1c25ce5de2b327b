"""
Provider Health Repository

Database operations for persisted provider health rows.
"""
from typing import Optional, Callable, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from loguru import logger

from finsync.db.models.provider_health import ProviderHealthRecord
from finsync.data_providers.health_monitor import HealthStatus
from finsync.data_providers.identity import normalize_provider, normalize_region


class ProviderHealthRepository:
    """
    Repository for ProviderHealthRecord database operations.

    For live health state, use ProviderHealthMonitor instead.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, provider: str, region: str) -> Optional[ProviderHealthRecord]:
        """Get the health row for a provider in a region."""
        result = await self.db.execute(
            select(ProviderHealthRecord).where(
                ProviderHealthRecord.provider == normalize_provider(provider),
                ProviderHealthRecord.region == normalize_region(region),
            )
        )
        return result.scalar_one_or_none()

    async def get_all(self, region: Optional[str] = None) -> list[ProviderHealthRecord]:
        """Get all health rows, optionally for one region."""
        query = select(ProviderHealthRecord)
        if region:
            query = query.where(ProviderHealthRecord.region == normalize_region(region))
        result = await self.db.execute(
            query.order_by(ProviderHealthRecord.provider, ProviderHealthRecord.region)
        )
        return list(result.scalars().all())

    async def upsert(self, status: HealthStatus) -> ProviderHealthRecord:
        """
        Insert or update the row for a health snapshot.

        A snapshot older than the stored row is ignored, so concurrent
        write-throughs landing out of order cannot roll the row back.
        """
        existing = await self.get(status.identity.provider, status.identity.region)

        if existing:
            if existing.updated_at and existing.updated_at > status.updated_at:
                logger.debug(f"Skipping stale health write for {status.identity}")
                return existing
            existing.apply(status)
            await self.db.commit()
            return existing

        record = ProviderHealthRecord(
            provider=status.identity.provider,
            region=status.identity.region,
        )
        record.apply(status)
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)

        logger.info(f"Created health row for {status.identity}")
        return record


class DatabaseHealthStore:
    """HealthStatusStore backed by the provider_health_status table."""

    def __init__(self, session_maker: Callable[[], Any]):
        self._session_maker = session_maker

    async def save(self, status: HealthStatus) -> None:
        async with self._session_maker() as session:
            await ProviderHealthRepository(session).upsert(status)

    async def load_all(self) -> list[HealthStatus]:
        async with self._session_maker() as session:
            rows = await ProviderHealthRepository(session).get_all()
            return [row.to_status() for row in rows]
