"""
Institution-Provider Map

Lookup from an external institution (or crypto network) identifier plus
region to an ordered candidate list: one primary provider followed by
backups in failover priority. Read-only during orchestration; updated
out-of-band by swapping the whole snapshot.
"""
from dataclasses import dataclass, field
from typing import Optional, Iterable
from loguru import logger

from finsync.data_providers.identity import ProviderIdentity, normalize_region
from finsync.utils.exceptions import InvalidMappingError


def normalize_institution_id(institution_id: str) -> str:
    return institution_id.strip().lower()


@dataclass(frozen=True)
class InstitutionProviderMapping:
    """Primary and backup providers for one institution in one region."""
    institution_id: str
    primary: ProviderIdentity
    backups: tuple[ProviderIdentity, ...] = ()
    institution_name: Optional[str] = None

    def __post_init__(self):
        institution_id = normalize_institution_id(self.institution_id or "")
        if not institution_id:
            raise InvalidMappingError("Institution id must not be empty")
        object.__setattr__(self, "institution_id", institution_id)
        object.__setattr__(self, "backups", tuple(self.backups))

        if self.primary in self.backups:
            raise InvalidMappingError(
                f"Primary provider {self.primary} also listed as backup",
                details={"institution_id": institution_id},
            )
        if len(set(self.backups)) != len(self.backups):
            raise InvalidMappingError(
                f"Duplicate backup providers for {institution_id}",
                details={"institution_id": institution_id},
            )

    @property
    def region(self) -> str:
        return self.primary.region

    @property
    def candidates(self) -> list[ProviderIdentity]:
        """Primary followed by backups, in failover order."""
        return [self.primary, *self.backups]

    @classmethod
    def build(
        cls,
        institution_id: str,
        primary_provider: str,
        backup_providers: Iterable[str] = (),
        region: str = "US",
        institution_name: Optional[str] = None,
    ) -> "InstitutionProviderMapping":
        """Build a mapping whose backups all live in the primary's region."""
        return cls(
            institution_id=institution_id,
            primary=ProviderIdentity(primary_provider, region),
            backups=tuple(ProviderIdentity(p, region) for p in backup_providers),
            institution_name=institution_name,
        )


@dataclass(frozen=True)
class ResolvedCandidates:
    """Result of a map lookup."""
    primary: ProviderIdentity
    backups: list[ProviderIdentity] = field(default_factory=list)

    @property
    def ordered(self) -> list[ProviderIdentity]:
        return [self.primary, *self.backups]


class InstitutionProviderMap:
    """
    Immutable-at-read-time snapshot of institution mappings.

    `replace` builds a new dictionary and swaps the reference in a single
    assignment, so a concurrent `resolve` sees either the old or the new
    snapshot and never a partial one.
    """

    def __init__(self, mappings: Optional[Iterable[InstitutionProviderMapping]] = None):
        self._mappings: dict[tuple[str, str], InstitutionProviderMapping] = self._index(mappings or [])

    @staticmethod
    def _index(mappings: Iterable[InstitutionProviderMapping]) -> dict[tuple[str, str], InstitutionProviderMapping]:
        index: dict[tuple[str, str], InstitutionProviderMapping] = {}
        for mapping in mappings:
            key = (mapping.institution_id, mapping.region)
            if key in index:
                logger.warning(
                    f"Duplicate mapping for institution {mapping.institution_id} in {mapping.region}; "
                    f"keeping primary {index[key].primary}"
                )
                continue
            index[key] = mapping
        return index

    def resolve(self, institution_id: Optional[str], region: str) -> Optional[ResolvedCandidates]:
        """
        Look up candidates for an institution.

        Returns:
            ResolvedCandidates, or None if no mapping exists
        """
        if not institution_id:
            return None
        mapping = self._mappings.get((normalize_institution_id(institution_id), normalize_region(region)))
        if mapping is None:
            return None
        return ResolvedCandidates(primary=mapping.primary, backups=list(mapping.backups))

    def replace(self, mappings: Iterable[InstitutionProviderMapping]) -> int:
        """Swap in a new snapshot. Returns the number of mappings loaded."""
        snapshot = self._index(mappings)
        self._mappings = snapshot
        logger.info(f"Institution provider map loaded with {len(snapshot)} mappings")
        return len(snapshot)

    def all(self) -> list[InstitutionProviderMapping]:
        return list(self._mappings.values())

    def __len__(self) -> int:
        return len(self._mappings)
