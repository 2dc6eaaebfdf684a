"""
Foster Placement Matcher - Main Application
FastAPI Entry Point with APScheduler for debounced recalculation
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

from app.config import settings
from app.database import init_db
from app.middleware import CorrelationIdMiddleware
from app.routers.matching import router as matching_router
from app.routers.records import router as records_router
from app.scheduler import get_recalculation_scheduler, start_scheduler, stop_scheduler
from app.services.matching.exceptions import (
    IneligiblePivotError,
    MatchingError,
    NotFoundError,
    ValidationError,
)
from app.services.monitoring import configure_structlog, setup_logging
from app.services.recalculation.observers import RecordChangeObserver

# Structured Logging Setup
configure_structlog()
setup_logging()
logger = structlog.get_logger()

# FastAPI App
app = FastAPI(
    title="Foster Placement Matcher",
    description="Weighted multi-criteria matching of children and foster families",
    version="0.1.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(CorrelationIdMiddleware)

# Register routers
app.include_router(matching_router)
app.include_router(records_router)

# APScheduler instance and record observer (set on startup)
scheduler = None
record_observer = None


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(IneligiblePivotError)
async def ineligible_pivot_handler(request: Request, exc: IneligiblePivotError):
    return JSONResponse(status_code=409, content={"detail": str(exc), "status": exc.status})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(MatchingError)
async def matching_error_handler(request: Request, exc: MatchingError):
    logger.error("matching_error", error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def request_recalculation_after_commit():
    """Record-change callback: debounce into one batch run."""
    recalculation = get_recalculation_scheduler()
    if recalculation is None:
        logger.debug("recalculation_request_ignored", reason="scheduler_not_running")
        return None
    return recalculation.request_recalculation()


@app.on_event("startup")
async def startup_event():
    """Application Startup"""
    global scheduler, record_observer

    logger.info("startup", environment=settings.environment)

    # Initialize database connection
    init_db()
    logger.info("database_initialized")

    # Start debounced recalculation and periodic jobs (skipped in testing)
    scheduler = start_scheduler(settings.environment)

    record_observer = RecordChangeObserver(request_recalculation_after_commit)
    record_observer.register()


@app.on_event("shutdown")
async def shutdown_event():
    """Application Shutdown"""
    logger.info("shutdown")

    if record_observer is not None:
        record_observer.unregister()
    stop_scheduler(scheduler)


@app.get("/")
async def root():
    """Root Endpoint"""
    return {
        "message": "Foster Placement Matcher API",
        "version": "0.1.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """
    Health Check Endpoint
    Reports API, scheduler and database configuration state
    """
    health_status = {
        "status": "healthy",
        "environment": settings.environment,
        "services": {
            "api": "running",
            "scheduler": "running" if scheduler is not None and scheduler.running else "stopped"
        }
    }

    # Optional: Database Check
    if settings.database_url:
        health_status["services"]["database"] = "configured"

    # Optional: Broker Check
    if settings.redis_url:
        health_status["services"]["redis"] = "configured"

    return JSONResponse(
        content=health_status,
        status_code=200
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development"
    )
