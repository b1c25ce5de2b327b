"""
Finsync - Database Repositories
"""
from finsync.db.repositories.provider_health import ProviderHealthRepository, DatabaseHealthStore
from finsync.db.repositories.connection_attempt import ConnectionAttemptRepository
from finsync.db.repositories.institution_mapping import InstitutionMappingRepository

__all__ = [
    "ProviderHealthRepository",
    "DatabaseHealthStore",
    "ConnectionAttemptRepository",
    "InstitutionMappingRepository",
]
