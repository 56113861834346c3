"""
Synapse ASGI application: routers, CORS and the error envelope.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from synapse.api.deps import container
from synapse.api.v1 import health, invoke
from synapse.core.config import settings
from synapse.core.constants import API_PREFIX, HEADER_ACCOUNT_ID, HEADER_ERROR_ID
from synapse.core.exceptions import SynapseError, classify_error, generate_error_id
from synapse.core.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire the service container on startup and drain background analyses on shutdown."""
    logger.info(
        "Starting Synapse",
        app_name=settings.app_name,
        env=settings.app_env,
        store=settings.store.backend,
    )
    container.initialize()
    if not settings.jira.is_configured:
        logger.warning("Jira is not configured; issue creation is disabled")

    yield

    logger.info("Shutting down Synapse")
    await container.shutdown()


app = FastAPI(
    title="Synapse API",
    description="Turns meeting notes into summaries, action items and Jira issues",
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.security.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[HEADER_ERROR_ID],
)


def error_response(request: Request, exc: Exception) -> JSONResponse:
    """
    Build the client-facing error response.

    Client errors (4xx) carry their own message; server errors only the
    generic message of their category.
    """
    classification = classify_error(exc)
    error_id = generate_error_id()
    user_id = request.headers.get(HEADER_ACCOUNT_ID)

    log = logger.error if classification.status_code >= 500 else logger.warning
    log(
        "Request failed",
        error_id=error_id,
        error_type=classification.error_type,
        error_message=str(exc),
        status_code=classification.status_code,
        path=request.url.path,
        user_id=user_id,
        exc_info=classification.status_code >= 500,
    )

    details = classification.to_details()
    message = classification.user_message
    if isinstance(exc, SynapseError):
        details["code"] = exc.code
        if exc.status_code < 500:
            message = exc.message
            details.update(exc.details)

    headers = {HEADER_ERROR_ID: error_id}
    if classification.retry_after is not None:
        headers["Retry-After"] = str(classification.retry_after)

    return JSONResponse(
        status_code=classification.status_code,
        headers=headers,
        content={
            "success": False,
            "error": message,
            "errorId": error_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details,
        },
    )


# Exception handlers
@app.exception_handler(SynapseError)
async def synapse_error_handler(request: Request, exc: SynapseError) -> JSONResponse:
    return error_response(request, exc)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unhandled becomes a 500 with a generic message."""
    return error_response(request, exc)


app.include_router(health.router, prefix=API_PREFIX, tags=["Health"])
app.include_router(invoke.router, prefix=API_PREFIX, tags=["Invoke"])


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else "Disabled in production",
    }


@app.get("/api")
async def api_info() -> dict[str, Any]:
    """List the public endpoints."""
    return {
        "name": "Synapse API",
        "version": settings.app_version,
        "prefix": API_PREFIX,
        "endpoints": {
            "health": f"{API_PREFIX}/health",
            "invoke": f"{API_PREFIX}/invoke/{{method}}",
            "methods": f"{API_PREFIX}/invoke",
            "cleanup": f"{API_PREFIX}/maintenance/cleanup",
        },
    }


def run() -> None:
    import uvicorn

    uvicorn.run(
        "synapse.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )


if __name__ == "__main__":
    run()
