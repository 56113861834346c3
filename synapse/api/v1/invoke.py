"""
Remote procedure endpoints.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends

from synapse.api.deps import ServiceContainer, get_caller, get_container
from synapse.api.router import dispatch, supported_methods
from synapse.core.config import settings
from synapse.core.logging import LogContext, get_logger
from synapse.core.security import generate_request_id
from synapse.domain.user import CallerContext

logger = get_logger(__name__)

router = APIRouter()


@router.get("/invoke")
async def list_methods() -> dict[str, Any]:
    """List the supported remote procedures."""
    return {
        "message": "Synapse AI Meeting Analyzer - Backend Ready",
        "version": settings.app_version,
        "status": "operational",
        "supportedMethods": supported_methods(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/invoke/{method}")
async def invoke(
    method: str,
    payload: Optional[Any] = Body(default=None),
    caller: CallerContext = Depends(get_caller),
    services: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """
    Invoke a remote procedure by name.

    The JSON body is the procedure payload; the caller is identified by the
    gateway headers.
    """
    with LogContext(request_id=generate_request_id(), user_id=caller.account_id, method=method):
        logger.debug("Invoking method")
        return await dispatch(services, method, payload, caller)


@router.post("/maintenance/cleanup")
async def run_cleanup(
    caller: CallerContext = Depends(get_caller),
    services: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Delete analyses and audit entries past their retention window."""
    await services.admin_service.require_admin(caller, "cleanup")

    analyses = await services.analysis_service.cleanup_old_analyses()
    audit = await services.admin_service.cleanup_audit_logs()

    summary = {
        "success": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.app_version,
        "tasks": [
            {"task": "analyses", **analyses},
            {"task": "audit", **audit},
        ],
    }
    logger.info("Cleanup completed", analyses=analyses["cleaned"], audit=audit["cleaned"])
    return summary
