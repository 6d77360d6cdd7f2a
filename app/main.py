"""
FastAPI application: manual calendar sync, connection status and health.
Owns the database pool lifecycle for the API process.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.routes import calendar, health
from app.services.calendar.google_client import google_calendar_service
from app.services.infrastructure.encryption_service import validate_encryption_config

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.environment != "development")
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool on startup, close pool and HTTP client on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    if not validate_encryption_config():
        logger.warning("Stored calendar credentials cannot be decrypted with the current key")

    logger.info("Initializing database pool")
    await db_pool.initialize()

    yield

    logger.info("Application shutting down")
    shutdown_errors = []

    for name, closer in (
        ("calendar_client", google_calendar_service.close),
        ("database", db_pool.close),
    ):
        try:
            await closer()
        except Exception as e:
            logger.error("Error during shutdown", resource=name, error=str(e))
            shutdown_errors.append(f"{name}: {e}")

    if shutdown_errors:
        logger.warning("Some resources had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All resources closed successfully")


app = FastAPI(
    title="CRM Calendar Sync",
    description="Bidirectional sync between CRM calendar entries and Google Calendar",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(calendar.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
