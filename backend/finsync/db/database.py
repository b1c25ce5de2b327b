"""
Finsync - Provider Monitoring Database

Async engine and session factory for the three provider monitoring tables:
provider_health_status, connection_attempts and institution_provider_mappings.
Sessions are opened per operation by the health store, the attempt log and
the mapping loader; nothing holds a session across provider calls.
"""
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from loguru import logger

from finsync.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

# Health write-throughs and audit appends read back what they just wrote
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def init_db():
    """Create the monitoring tables if migrations have not."""
    async with engine.begin() as conn:
        # Registers the tables on Base.metadata
        from finsync.db.models import provider_health, connection_attempt, institution_mapping  # noqa: F401

        await conn.run_sync(Base.metadata.create_all)
        logger.info("Provider monitoring tables verified")


async def close_db():
    """Dispose of the connection pool."""
    await engine.dispose()
    logger.info("Provider monitoring database closed")
