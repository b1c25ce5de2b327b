"""
Unit Tests - Institution Provider Map
Tests for mapping validation and candidate resolution.
"""
import pytest

from finsync.data_providers.identity import ProviderIdentity
from finsync.data_providers.institution_map import (
    InstitutionProviderMap,
    InstitutionProviderMapping,
)
from finsync.utils.exceptions import InvalidMappingError


class TestInstitutionProviderMapping:

    def test_build_normalizes(self):
        mapping = InstitutionProviderMapping.build("  INS_Chase ", "Plaid", ["MX"], region="us")

        assert mapping.institution_id == "ins_chase"
        assert mapping.primary == ProviderIdentity("plaid", "US")
        assert mapping.backups == (ProviderIdentity("mx", "US"),)
        assert mapping.region == "US"

    def test_candidates_are_primary_then_backups(self):
        mapping = InstitutionProviderMapping.build("ins_1", "plaid", ["mx", "finicity"])
        assert [c.provider for c in mapping.candidates] == ["plaid", "mx", "finicity"]

    def test_primary_in_backups_rejected(self):
        with pytest.raises(InvalidMappingError):
            InstitutionProviderMapping.build("ins_1", "plaid", ["mx", "PLAID"])

    def test_duplicate_backups_rejected(self):
        with pytest.raises(InvalidMappingError):
            InstitutionProviderMapping.build("ins_1", "plaid", ["mx", "mx"])

    def test_empty_institution_rejected(self):
        with pytest.raises(InvalidMappingError):
            InstitutionProviderMapping.build("  ", "plaid")


class TestInstitutionProviderMap:
    """Tests for InstitutionProviderMap.resolve and replace."""

    def test_resolve_mapped_institution(self, institution_map):
        resolved = institution_map.resolve("INS_CHASE", "us")

        assert resolved.primary == ProviderIdentity("plaid", "US")
        assert [b.provider for b in resolved.backups] == ["mx", "finicity"]
        assert [c.provider for c in resolved.ordered] == ["plaid", "mx", "finicity"]

    def test_resolve_is_region_scoped(self, institution_map):
        assert institution_map.resolve("ins_chase", "MX") is None

    @pytest.mark.parametrize("institution_id", [None, "", "ins_unknown"])
    def test_resolve_missing(self, institution_map, institution_id):
        assert institution_map.resolve(institution_id, "US") is None

    def test_duplicate_mappings_keep_first(self):
        first = InstitutionProviderMapping.build("ins_1", "plaid", ["mx"])
        second = InstitutionProviderMapping.build("ins_1", "mx", ["plaid"])

        mapping_table = InstitutionProviderMap([first, second])

        assert len(mapping_table) == 1
        assert mapping_table.resolve("ins_1", "US").primary.provider == "plaid"

    def test_replace_swaps_snapshot(self, institution_map):
        count = institution_map.replace([
            InstitutionProviderMapping.build("ins_new", "mx", ["plaid"]),
        ])

        assert count == 1
        assert institution_map.resolve("ins_chase", "US") is None
        assert institution_map.resolve("ins_new", "US").primary.provider == "mx"

    def test_resolved_backups_are_independent_copies(self, institution_map):
        resolved = institution_map.resolve("ins_chase", "US")
        resolved.backups.clear()

        assert len(institution_map.resolve("ins_chase", "US").backups) == 2
