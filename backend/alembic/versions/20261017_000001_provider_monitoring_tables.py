"""Provider health, connection attempt and institution mapping tables

Creates the three tables backing provider failover:
- provider_health_status: one row per (provider, region), written through
  by the health monitor
- connection_attempts: append-only audit of every attempted candidate
- institution_provider_mappings: primary/backup providers per institution

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 00:00:01.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '20261017_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create provider monitoring tables."""
    op.create_table(
        'provider_health_status',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('region', sa.String(10), nullable=False, server_default='US'),
        sa.Column('status', sa.String(20), nullable=False, server_default='healthy'),
        sa.Column('error_rate', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0'),
        sa.Column('avg_response_time_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_success_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_failure_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('circuit_breaker_open', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('window_start_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.UniqueConstraint('provider', 'region', name='uq_provider_health_provider_region'),
    )
    op.create_index('ix_provider_health_status_id', 'provider_health_status', ['id'])
    op.create_index('ix_provider_health_status', 'provider_health_status', ['status'])
    op.create_index('ix_provider_health_circuit_open', 'provider_health_status', ['circuit_breaker_open'])

    op.create_table(
        'connection_attempts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('account_id', sa.String(64), nullable=True),
        sa.Column('space_id', sa.String(64), nullable=False),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('region', sa.String(10), nullable=False, server_default='US'),
        sa.Column('institution_id', sa.String(100), nullable=True),
        sa.Column('attempt_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('error_code', sa.String(100), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_kind', sa.String(30), nullable=True),
        sa.Column('response_time_ms', sa.Integer(), nullable=True),
        sa.Column('failover_used', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('failover_provider', sa.String(50), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('attempted_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        'ix_connection_attempts_account_attempted',
        'connection_attempts',
        ['account_id', sa.text('attempted_at DESC')]
    )
    op.create_index(
        'ix_connection_attempts_space_attempted',
        'connection_attempts',
        ['space_id', sa.text('attempted_at DESC')]
    )
    op.create_index(
        'ix_connection_attempts_provider_status',
        'connection_attempts',
        ['provider', 'status', sa.text('attempted_at DESC')]
    )

    op.create_table(
        'institution_provider_mappings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('institution_id', sa.String(100), nullable=False),
        sa.Column('institution_name', sa.String(255), nullable=True),
        sa.Column('region', sa.String(10), nullable=False, server_default='US'),
        sa.Column('primary_provider', sa.String(50), nullable=False),
        sa.Column('backup_providers', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('provider_metadata', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.UniqueConstraint('institution_id', 'region', name='uq_institution_mapping_institution_region'),
    )
    op.create_index('ix_institution_provider_mappings_id', 'institution_provider_mappings', ['id'])
    op.create_index('ix_institution_mapping_region', 'institution_provider_mappings', ['region'])


def downgrade() -> None:
    """Drop provider monitoring tables."""
    op.drop_index('ix_institution_mapping_region', table_name='institution_provider_mappings')
    op.drop_index('ix_institution_provider_mappings_id', table_name='institution_provider_mappings')
    op.drop_table('institution_provider_mappings')

    op.drop_index('ix_connection_attempts_provider_status', table_name='connection_attempts')
    op.drop_index('ix_connection_attempts_space_attempted', table_name='connection_attempts')
    op.drop_index('ix_connection_attempts_account_attempted', table_name='connection_attempts')
    op.drop_table('connection_attempts')

    op.drop_index('ix_provider_health_circuit_open', table_name='provider_health_status')
    op.drop_index('ix_provider_health_status', table_name='provider_health_status')
    op.drop_index('ix_provider_health_status_id', table_name='provider_health_status')
    op.drop_table('provider_health_status')
