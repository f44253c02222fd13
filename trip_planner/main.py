"""Trip Planner: host process for the reconciliation job.

Starts the scheduler with the application and stops it, letting
in-flight passes finish, before the database engine is disposed.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .core import close_db, get_session_factory, get_settings, init_db
from .jobs import ReconciliationScheduler

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # Skip init_db in production (tables are migrated)
    if settings.environment != "production":
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")

    scheduler = None
    if settings.reconcile_enabled:
        scheduler = ReconciliationScheduler.from_settings(get_session_factory(), settings)
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        await scheduler.stop()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": f"An unexpected error occurred: {str(exc)[:200]}",
        },
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check(request: Request):
    """Health check endpoint, including the last reconciliation tick."""
    scheduler: ReconciliationScheduler | None = getattr(request.app.state, "scheduler", None)
    last_report = scheduler.last_report if scheduler else None
    return {
        "status": "healthy",
        "version": settings.app_version,
        "scheduler": {
            "enabled": scheduler is not None,
            "running": bool(scheduler and scheduler.is_running),
            "last_tick": last_report.as_dict() if last_report else None,
        },
    }


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "trip_planner.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
