"""
Institution Mapping Repository

Database operations for institution to provider mappings.
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from loguru import logger

from finsync.db.models.institution_mapping import InstitutionMappingRecord
from finsync.data_providers.identity import normalize_region
from finsync.data_providers.institution_map import InstitutionProviderMapping, normalize_institution_id
from finsync.utils.exceptions import InvalidMappingError


class InstitutionMappingRepository:
    """Repository for InstitutionMappingRecord database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, institution_id: str, region: str) -> Optional[InstitutionMappingRecord]:
        result = await self.db.execute(
            select(InstitutionMappingRecord).where(
                InstitutionMappingRecord.institution_id == normalize_institution_id(institution_id),
                InstitutionMappingRecord.region == normalize_region(region),
            )
        )
        return result.scalar_one_or_none()

    async def get_all(self) -> list[InstitutionMappingRecord]:
        result = await self.db.execute(
            select(InstitutionMappingRecord).order_by(
                InstitutionMappingRecord.region,
                InstitutionMappingRecord.institution_id,
            )
        )
        return list(result.scalars().all())

    async def load_all(self) -> list[InstitutionProviderMapping]:
        """
        Load every valid mapping.

        Rows violating mapping invariants (e.g. primary listed as a backup)
        are skipped with a warning.
        """
        mappings: list[InstitutionProviderMapping] = []
        for row in await self.get_all():
            try:
                mappings.append(row.to_mapping())
            except (InvalidMappingError, ValueError) as e:
                message = e.message if isinstance(e, InvalidMappingError) else str(e)
                logger.warning(f"Skipping invalid institution mapping {row.institution_id}/{row.region}: {message}")
        return mappings

    async def upsert(self, mapping: InstitutionProviderMapping) -> InstitutionMappingRecord:
        """Insert or update the row for a mapping."""
        backups = [b.provider for b in mapping.backups]
        existing = await self.get(mapping.institution_id, mapping.region)

        if existing:
            existing.primary_provider = mapping.primary.provider
            existing.backup_providers = backups
            if mapping.institution_name:
                existing.institution_name = mapping.institution_name
            await self.db.commit()
            await self.db.refresh(existing)
            logger.debug(f"Updated mapping: {mapping.institution_id}/{mapping.region}")
            return existing

        record = InstitutionMappingRecord(
            institution_id=mapping.institution_id,
            institution_name=mapping.institution_name,
            region=mapping.region,
            primary_provider=mapping.primary.provider,
            backup_providers=backups,
        )
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        logger.info(f"Created mapping: {mapping.institution_id}/{mapping.region} -> {mapping.primary.provider}")
        return record

