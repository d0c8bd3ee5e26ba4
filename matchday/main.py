"""Matchday FastAPI application.

Operational surface of the results pipeline: liveness and readiness,
coordinator status and health, cycle resolution status and manual task
triggers. The pipeline itself runs in the Celery workers.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from matchday import __version__
from matchday.api.routes import admin, coordination, cycles, health
from matchday.config import configure_logging, get_settings

settings = get_settings()
configure_logging(settings.log_level)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("starting_matchday", version=__version__)
    yield
    logger.info("shutting_down_matchday")


# Create FastAPI application
app = FastAPI(
    title="Matchday",
    description="Job coordination and results resolution for the daily prediction game",
    version=__version__,
    lifespan=lifespan,
)

# Include API routers
app.include_router(health.router)
app.include_router(coordination.router)
app.include_router(cycles.router)
app.include_router(admin.router)


# Error handlers
@app.exception_handler(500)
async def server_error_handler(request: Request, exc):
    """Custom 500 handler."""
    logger.error("server_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
