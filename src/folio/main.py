"""FastAPI application entry point."""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException

from folio import __version__
from folio.api import edit_sessions, projects, proposals
from folio.api.errors import (
    APIError,
    RequestIDMiddleware,
    api_error_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from folio.api.rate_limit import limiter, rate_limit_exceeded_handler
from folio.config import settings
from folio.db import get_session, init_db
from folio.db.database import dispose_engine

# Track application start time for uptime calculation
_app_start_time = time.time()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    if settings.environment == "production" and settings.auto_create_tables:
        logger.warning(
            "AUTO_CREATE_TABLES is enabled in production. "
            "Set AUTO_CREATE_TABLES=false and manage the schema with migrations."
        )
    if settings.auto_create_tables:
        await init_db()

    yield
    # Clean up database connections on shutdown
    await dispose_engine()


app = FastAPI(
    title="Folio",
    description="Proposal review workflow for collaborative academic projects",
    version=__version__,
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]
# Only add rate limiting middleware if enabled
if settings.rate_limit_enabled:
    app.add_middleware(SlowAPIMiddleware)

# Request ID middleware (must be added first to wrap all other middleware)
app.add_middleware(RequestIDMiddleware)

# CORS middleware
allow_methods = ["*"]
if settings.environment == "production":
    allow_methods = settings.cors_allow_methods

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=allow_methods,
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

# Exception handlers (type: ignore needed for Starlette handler signatures)
app.add_exception_handler(APIError, api_error_handler)  # type: ignore[arg-type]
app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(
    RequestValidationError, validation_exception_handler  # type: ignore[arg-type]
)
app.add_exception_handler(Exception, generic_exception_handler)

# API v1 router
api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(projects.router, prefix="/projects", tags=["projects"])
api_v1.include_router(proposals.router, prefix="/projects", tags=["proposals"])
api_v1.include_router(edit_sessions.router, prefix="/projects", tags=["edit-sessions"])

app.include_router(api_v1)


@app.get("/health")
async def health(
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Health check endpoint with dependency checks."""
    uptime_seconds = time.time() - _app_start_time
    checks: dict[str, dict[str, Any]] = {}

    # Database check
    db_status = "healthy"
    db_latency_ms: float | None = None
    try:
        start = time.time()
        await session.execute(text("SELECT 1"))
        db_latency_ms = round((time.time() - start) * 1000, 2)
    except Exception as e:
        db_status = "unhealthy"
        logger.error("Health check database failed: %s", e)

    checks["database"] = {
        "status": db_status,
        "latency_ms": db_latency_ms,
    }

    # Overall status
    overall_status = (
        "healthy" if all(c["status"] == "healthy" for c in checks.values()) else "degraded"
    )

    return {
        "status": overall_status,
        "version": __version__,
        "uptime_seconds": round(uptime_seconds, 1),
        "checks": checks,
    }


@app.get("/health/live")
async def health_live() -> dict[str, str]:
    """Liveness probe - basic check that app is running."""
    return {"status": "alive"}
