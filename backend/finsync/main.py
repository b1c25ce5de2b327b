"""
Finsync - Main Application Entry Point
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from finsync.config import settings
from finsync.api.v1.router import api_router
from finsync.db.database import engine, init_db, close_db, async_session_maker
from finsync.data_providers.provider_init import (
    initialize_providers,
    shutdown_providers,
    get_orchestrator,
)
from finsync.utils.logger import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events handler."""
    # Startup
    setup_logging()
    logger.info("🚀 Starting Finsync Provider Gateway...")

    session_maker = None
    try:
        await init_db()
        session_maker = async_session_maker
        logger.info("✅ Database initialized")
    except Exception as e:
        logger.error(f"⚠️ Database unavailable, provider state kept in memory only: {e}")

    orchestrator = await initialize_providers(settings, session_maker=session_maker)
    logger.info(f"✅ Initialized {len(orchestrator.registry)} data providers")

    logger.info("✅ Finsync Provider Gateway started successfully!")

    yield

    # Shutdown
    logger.info("🛑 Shutting down Finsync Provider Gateway...")
    await shutdown_providers()
    await close_db()
    logger.info("👋 Goodbye!")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        description="Multi-provider financial data gateway with failover and health monitoring",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint for load balancers."""
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": "1.0.0"
        }

    @app.get("/ready", tags=["Health"])
    async def readiness_check():
        """Readiness check - verifies database and provider stack are available."""
        checks = {
            "database": "unknown",
            "providers": "unknown"
        }

        # Check database
        try:
            from sqlalchemy import text
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "connected"
        except Exception as e:
            checks["database"] = f"error: {str(e)[:50]}"

        orchestrator = get_orchestrator()
        if orchestrator is None:
            checks["providers"] = "not initialized"
        elif len(orchestrator.registry) == 0:
            checks["providers"] = "no providers configured"
        else:
            checks["providers"] = "connected"

        all_healthy = all(v == "connected" for v in checks.values())

        return {
            "status": "ready" if all_healthy else "degraded",
            "checks": checks
        }

    return app


# Create the application instance
app = create_application()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "finsync.main:app",
        host=settings.BACKEND_HOST,
        port=settings.BACKEND_PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
