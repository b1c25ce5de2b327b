"""
Unit Tests - Repositories
Tests for the provider health, connection attempt and institution
mapping repositories against a mocked AsyncSession.
"""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from finsync.data_providers.attempt_log import AttemptOutcome, ConnectionAttempt
from finsync.data_providers.health_monitor import HealthState, HealthStatus
from finsync.data_providers.identity import ProviderIdentity
from finsync.data_providers.institution_map import InstitutionProviderMapping
from finsync.db.models.connection_attempt import ConnectionAttemptRecord
from finsync.db.models.institution_mapping import InstitutionMappingRecord
from finsync.db.models.provider_health import ProviderHealthRecord
from finsync.db.repositories.connection_attempt import ConnectionAttemptRepository
from finsync.db.repositories.institution_mapping import InstitutionMappingRepository
from finsync.db.repositories.provider_health import DatabaseHealthStore, ProviderHealthRepository


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
PLAID_US = ProviderIdentity("plaid", "US")


def scalar_result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def scalars_result(values):
    result = MagicMock()
    result.scalars.return_value.all.return_value = values
    return result


def make_status(updated_at=NOW, **kwargs) -> HealthStatus:
    return HealthStatus(identity=PLAID_US, window_start_at=NOW - timedelta(minutes=1), updated_at=updated_at, **kwargs)


class TestProviderHealthRepository:
    """Tests for ProviderHealthRepository."""

    @pytest.fixture
    def repo(self, mock_db_session):
        return ProviderHealthRepository(mock_db_session)

    @pytest.mark.asyncio
    async def test_upsert_inserts_new_row(self, repo, mock_db_session):
        mock_db_session.execute.return_value = scalar_result(None)

        record = await repo.upsert(make_status(successful_calls=3, avg_response_time_ms=120.4))

        mock_db_session.add.assert_called_once_with(record)
        mock_db_session.commit.assert_awaited_once()
        assert record.provider == "plaid"
        assert record.region == "US"
        assert record.successful_calls == 3
        assert record.avg_response_time_ms == 120

    @pytest.mark.asyncio
    async def test_upsert_updates_existing(self, repo, mock_db_session):
        existing = ProviderHealthRecord(provider="plaid", region="US")
        existing.apply(make_status(updated_at=NOW - timedelta(seconds=5)))
        mock_db_session.execute.return_value = scalar_result(existing)

        result = await repo.upsert(make_status(failed_calls=2, error_rate=100.0, status=HealthState.DOWN))

        assert result is existing
        assert existing.failed_calls == 2
        assert existing.status == "down"
        mock_db_session.add.assert_not_called()
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_upsert_skips_stale_snapshot(self, repo, mock_db_session):
        existing = ProviderHealthRecord(provider="plaid", region="US")
        existing.apply(make_status(updated_at=NOW, failed_calls=7))
        mock_db_session.execute.return_value = scalar_result(existing)

        await repo.upsert(make_status(updated_at=NOW - timedelta(seconds=1), failed_calls=1))

        assert existing.failed_calls == 7
        mock_db_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_health_store_round_trips_rows(self, session_maker, mock_db_session):
        row = ProviderHealthRecord(provider="plaid", region="US")
        row.apply(make_status(failed_calls=4, error_rate=100.0, status=HealthState.DOWN, circuit_breaker_open=True))
        mock_db_session.execute.return_value = scalars_result([row])

        statuses = await DatabaseHealthStore(session_maker).load_all()

        assert len(statuses) == 1
        status = statuses[0]
        assert status.identity == PLAID_US
        assert status.status == HealthState.DOWN
        assert status.circuit_breaker_open is True
        assert status.error_rate == 100.0


class TestConnectionAttemptRepository:

    @pytest.mark.asyncio
    async def test_create(self, mock_db_session):
        attempt = ConnectionAttempt(
            space_id="space-1",
            account_id="acct-1",
            identity=PLAID_US,
            operation="get_accounts",
            outcome=AttemptOutcome.FAILURE,
            next_provider="mx",
            metadata={"timeout_seconds": 10.0},
        )

        record = await ConnectionAttemptRepository(mock_db_session).create(attempt)

        assert record.failover_provider == "mx"
        assert record.attempt_metadata == {"timeout_seconds": 10.0}
        assert record.attempt_type == "get_accounts"
        mock_db_session.add.assert_called_once_with(record)
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_for_account(self, mock_db_session):
        rows = [MagicMock(spec=ConnectionAttemptRecord)]
        mock_db_session.execute.return_value = scalars_result(rows)

        result = await ConnectionAttemptRepository(mock_db_session).get_for_account("acct-1", limit=5)

        assert result == rows
        mock_db_session.execute.assert_awaited_once()


class TestInstitutionMappingRepository:
    """Tests for InstitutionMappingRepository."""

    @pytest.mark.asyncio
    async def test_load_all_skips_invalid_rows(self, mock_db_session):
        valid = InstitutionMappingRecord(
            institution_id="ins_chase", region="US", primary_provider="plaid", backup_providers=["mx"]
        )
        invalid = InstitutionMappingRecord(
            institution_id="ins_bad", region="US", primary_provider="plaid", backup_providers=["plaid"]
        )
        mock_db_session.execute.return_value = scalars_result([valid, invalid])

        mappings = await InstitutionMappingRepository(mock_db_session).load_all()

        assert [m.institution_id for m in mappings] == ["ins_chase"]
        assert mappings[0].backups == (ProviderIdentity("mx", "US"),)

    @pytest.mark.asyncio
    async def test_upsert_creates(self, mock_db_session):
        mock_db_session.execute.return_value = scalar_result(None)
        mapping = InstitutionProviderMapping.build("bbva_mx", "belvo", ["plaid"], region="MX", institution_name="BBVA")

        record = await InstitutionMappingRepository(mock_db_session).upsert(mapping)

        assert record.primary_provider == "belvo"
        assert record.backup_providers == ["plaid"]
        assert record.region == "MX"
        mock_db_session.add.assert_called_once_with(record)

    @pytest.mark.asyncio
    async def test_upsert_updates(self, mock_db_session):
        existing = InstitutionMappingRecord(
            institution_id="ins_chase", region="US", primary_provider="plaid", backup_providers=["mx"]
        )
        mock_db_session.execute.return_value = scalar_result(existing)
        mapping = InstitutionProviderMapping.build("ins_chase", "mx", ["plaid", "finicity"])

        record = await InstitutionMappingRepository(mock_db_session).upsert(mapping)

        assert record is existing
        assert existing.primary_provider == "mx"
        assert existing.backup_providers == ["plaid", "finicity"]
        mock_db_session.add.assert_not_called()
