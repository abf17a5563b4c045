"""Member Lifecycle: Main FastAPI Application.

Ingests subscription billing webhooks, keeps one Slack thread per member and
billing period, and offboards members whose subscription lapses.
"""

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .api import api_router
from .core import close_db, get_settings, init_db
from .schemas import ErrorResponse

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.environment})")

    # Startup - skip init_db in production (tables are migrated)
    if settings.environment != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Member Lifecycle API

    Turns payment processor webhooks into member lifecycle actions.

    ### Key Features

    - **Idempotent Ingestion**: Every delivery is recorded once; retried charge failures become new attempts.
    - **Member Threads**: One Slack thread per member and billing period, re-created if deleted.
    - **Escalation**: Attempt tracking, recovery confirmations, delinquency and cancellation notices.
    - **Offboarding**: Roster, community and chat-group removal, each leg independent.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    error_detail = str(exc)
    if settings.debug or settings.environment != "production":
        error_detail = f"{exc}\n{traceback.format_exc()}"

    logger.error(f"Unhandled exception on {request.url.path}: {error_detail}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=f"An unexpected error occurred: {str(exc)[:200]}",
            details=[],
        ).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "member_lifecycle.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
