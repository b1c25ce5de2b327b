"""
Alembic migrations for the provider monitoring tables.

Migrations run over a synchronous engine; the asyncpg URL
used by the service is rewritten to its plain postgresql:// form.
"""
import os
import sys
from pathlib import Path
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy import create_engine

from alembic import context

# backend/ holds the finsync package
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from finsync.config import settings
from finsync.db.database import Base
from finsync.db.models import (  # noqa: F401
    ProviderHealthRecord, ConnectionAttemptRecord, InstitutionMappingRecord
)

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _sync_url() -> str:
    url = os.environ.get("DATABASE_URL") or settings.DATABASE_URL_SYNC
    return url.replace("postgresql+asyncpg://", "postgresql://", 1)


config.set_main_option("sqlalchemy.url", _sync_url())

# Health, attempt and mapping tables for autogenerate
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit the monitoring schema as SQL without a database connection."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations against the configured database."""
    connectable = create_engine(
        config.get_main_option("sqlalchemy.url"),
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
