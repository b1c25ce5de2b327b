"""
Finsync - Database Models
"""
from finsync.db.models.provider_health import ProviderHealthRecord
from finsync.db.models.connection_attempt import ConnectionAttemptRecord
from finsync.db.models.institution_mapping import InstitutionMappingRecord

__all__ = [
    "ProviderHealthRecord",
    "ConnectionAttemptRecord",
    "InstitutionMappingRecord",
]
