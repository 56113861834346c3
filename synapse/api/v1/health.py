"""
Health endpoints for load balancers and orchestrators.
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from synapse.api.deps import ServiceContainer, get_container
from synapse.core.config import settings
from synapse.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, Any]:
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/ready")
async def readiness_check(services: ServiceContainer = Depends(get_container)) -> JSONResponse:
    """Ready once the key-value store answers a ping."""
    checks = {
        "app": True,
        "store": await services.store.ping(),
    }
    ready = all(checks.values())
    if not ready:
        logger.warning("Readiness check failed", checks=checks)

    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not_ready",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
