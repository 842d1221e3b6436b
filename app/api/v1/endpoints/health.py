"""
Health check endpoints.
"""
from typing import Any, Dict

from fastapi import APIRouter, Request

from app.core.config import settings
from app.domain.schemas.storage import HealthState
from app.infrastructure.cache.redis import get_redis

router = APIRouter()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.

    Returns:
        Health status
    """
    return {
        "status": "healthy",
        "service": "registry-storage",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@router.get("/health/ready")
async def readiness_check(request: Request) -> Dict[str, Any]:
    """
    Readiness check including storage and cache.

    Returns:
        Readiness status with component health
    """
    components = {
        "api": "healthy",
        "storage": "unknown",
        "cache": "unknown",
    }

    services = getattr(request.app.state, "storage_services", None)

    # Check storage
    if services is not None:
        health = await services.monitoring.get_health_status()
        components["storage"] = (
            "healthy" if health.state != HealthState.UNHEALTHY else "unhealthy"
        )

    # Check cache
    try:
        if services is not None:
            await services.cache.ping()
            components["cache"] = "healthy"
        else:
            redis_client = await get_redis()
            await redis_client.ping()
            components["cache"] = "healthy"
    except Exception:
        components["cache"] = "unhealthy"

    all_healthy = all(state == "healthy" for state in components.values())

    return {
        "status": "ready" if all_healthy else "not ready",
        "components": components,
    }
