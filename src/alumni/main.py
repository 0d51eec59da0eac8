"""
Alumni Registry API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Logging
- Database and Redis connections
- Background job scheduler
- CORS middleware
- API routing
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from alumni import __version__
from alumni.api import api_router
from alumni.core.auth import get_current_admin_user
from alumni.core.config import settings
from alumni.core.database import async_session_maker, close_db, init_db
from alumni.core.logging import configure_logging
from alumni.core.redis import close_redis, init_redis, redis_status
from alumni.core.scheduler import (
    list_registered_jobs,
    pause_job,
    resume_job,
    start_scheduler,
    stop_scheduler,
    trigger_job_manually,
)
from alumni.modules.registrations import register_registration_jobs

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Connects Redis and the database and starts the background scheduler.
    Outside production a failed dependency is logged and startup continues.
    """
    configure_logging()
    logger.info(f"Starting Alumni Registry API in {settings.python_env} mode...")

    if settings.identity_mock_mode:
        logger.warning("Identity mock mode is ENABLED - verification uses fake personnel records")

    try:
        await init_redis()
        logger.info("Redis connected")
    except Exception as e:
        logger.error(f"Redis connection failed, rate limits fall back to memory: {e}")
        if settings.is_production:
            raise

    try:
        await init_db()
        logger.info("Database connected")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        if settings.is_production:
            raise

    try:
        register_registration_jobs()
        await start_scheduler()
        logger.info("Background scheduler started")
    except Exception as e:
        logger.error(f"Background scheduler failed to start: {e}")
        if settings.is_production:
            raise

    yield

    logger.info("Shutting down Alumni Registry API...")

    # Stop the scheduler first (wait for running passes)
    await stop_scheduler()
    await close_redis()
    await close_db()
    logger.info("Cleanup complete")


app = FastAPI(
    title="Alumni Registry API",
    description="Alumni registration, identity verification and approval workflow",
    version=__version__,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api/v1")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict:
    """Readiness check: database reachable; Redis reported but optional."""
    checks: dict[str, str] = {}

    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.warning(f"Readiness: database check failed: {e}")
        checks["database"] = "error"

    checks["redis"] = await redis_status()

    if checks["database"] != "ok":
        raise HTTPException(status_code=503, detail={"status": "not ready", "checks": checks})
    return {"status": "ready", "checks": checks}


# ============================================
# Background Job Debug Endpoints
# ============================================
# Manual control of the approval pass. Admin only.


@app.get("/debug/jobs", tags=["Debug"], dependencies=[Depends(get_current_admin_user)])
async def list_jobs():
    """List registered background jobs with next run time and paused state."""
    return {"jobs": list_registered_jobs()}


@app.post(
    "/debug/jobs/{job_id}/trigger",
    tags=["Debug"],
    dependencies=[Depends(get_current_admin_user)],
)
async def trigger_job(job_id: str):
    """Run a background job immediately, bypassing its schedule."""
    try:
        return await trigger_job_manually(job_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@app.post(
    "/debug/jobs/{job_id}/pause",
    tags=["Debug"],
    dependencies=[Depends(get_current_admin_user)],
)
async def pause_job_endpoint(job_id: str):
    return {"job_id": job_id, "paused": pause_job(job_id)}


@app.post(
    "/debug/jobs/{job_id}/resume",
    tags=["Debug"],
    dependencies=[Depends(get_current_admin_user)],
)
async def resume_job_endpoint(job_id: str):
    return {"job_id": job_id, "resumed": resume_job(job_id)}
