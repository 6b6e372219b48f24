"""Health check endpoints for Kubernetes liveness and readiness probes."""
from datetime import datetime

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from redis import asyncio as aioredis
from sqlalchemy import text

from entitlements.config import settings
from entitlements.database import engine

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check() -> dict[str, str]:
    """Liveness probe: the process is up. No dependencies are checked."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": "0.1.0",
    }


@router.get("/health/ready", tags=["Health"])
async def readiness_check() -> JSONResponse:
    """
    Readiness probe.

    The database is critical: without it no entitlement can be answered.
    Redis only backs the plan cache and the worker queue, so an outage is
    reported but does not take the API out of rotation.
    """
    checks = {"database": "unknown", "redis": "unknown"}
    ready = True

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "connected"
    except Exception as exc:
        logger.error("database_health_check_failed", error=str(exc))
        checks["database"] = "disconnected"
        ready = False

    try:
        redis_client = aioredis.from_url(str(settings.redis_url), socket_connect_timeout=2)
        try:
            await redis_client.ping()
        finally:
            await redis_client.aclose()
        checks["redis"] = "connected"
    except Exception as exc:
        logger.warning("redis_health_check_failed", error=str(exc))
        checks["redis"] = "disconnected"

    status_code = status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE

    return JSONResponse(
        status_code=status_code,
        content={
            "ready": ready,
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
