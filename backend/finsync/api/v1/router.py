"""
Finsync - API v1 Router
"""
from fastapi import APIRouter

from finsync.api.v1.endpoints import providers

api_router = APIRouter()


# API v1 root endpoint
@api_router.get("/", tags=["API Info"])
async def api_root():
    """API v1 root - returns version info."""
    return {
        "api": "Finsync Provider Gateway",
        "version": "v1",
        "status": "operational"
    }


api_router.include_router(providers.router, prefix="/providers", tags=["Provider Monitoring"])
