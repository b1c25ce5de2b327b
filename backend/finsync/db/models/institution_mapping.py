"""
Finsync - Institution Provider Mapping Model

Maps an institution (or crypto network) in a region to its primary
provider and ordered backup providers. Maintained out-of-band.
"""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import JSONB

from finsync.db.database import Base
from finsync.data_providers.adapters.base import utcnow
from finsync.data_providers.institution_map import InstitutionProviderMapping


class InstitutionMappingRecord(Base):
    """Persisted institution to provider mapping.

    Attributes:
        institution_id: External institution/network identifier
        primary_provider: Provider tried first
        backup_providers: Ordered list of provider names tried on failover
        region: Region code the mapping applies to
    """

    __tablename__ = "institution_provider_mappings"

    id = Column(Integer, primary_key=True, index=True)

    institution_id = Column(String(100), nullable=False)
    institution_name = Column(String(255), nullable=True)
    region = Column(String(10), nullable=False, default="US")

    primary_provider = Column(String(50), nullable=False)
    backup_providers = Column(JSONB, nullable=False, default=list)

    provider_metadata = Column(JSONB, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('institution_id', 'region', name='uq_institution_mapping_institution_region'),
        Index('ix_institution_mapping_region', 'region'),
    )

    def __repr__(self):
        return f"<InstitutionMappingRecord {self.institution_id}:{self.region} -> {self.primary_provider}>"

    def to_mapping(self) -> InstitutionProviderMapping:
        """
        Convert to the in-memory mapping.

        Raises:
            InvalidMappingError: If the row violates mapping invariants
        """
        return InstitutionProviderMapping.build(
            institution_id=self.institution_id,
            primary_provider=self.primary_provider,
            backup_providers=list(self.backup_providers or []),
            region=self.region or "US",
            institution_name=self.institution_name,
        )
