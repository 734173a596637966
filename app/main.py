# app/main.py
"""
Application entrypoint: job queue sync triggers and the applier presence
WebSocket, with database pool, redis and presence lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.features.job_queue.api.router import router as job_queue_router
from app.features.job_queue.services.feed_client import job_feed_client
from app.features.presence.api.router import router as presence_router
from app.features.presence.services.presence_service import presence_service
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.routes import health
from app.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        if settings.redis_broadcast_enabled():
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")

        logger.info("Starting presence service")
        await presence_service.start()
        startup_tasks.append("presence")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if "presence" in startup_tasks:
            try:
                await presence_service.stop()
            except Exception as cleanup_error:
                logger.error("Error stopping presence service", error=str(cleanup_error))

        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        await presence_service.stop()
    except Exception as e:
        logger.error("Error stopping presence service", error=str(e))
        shutdown_errors.append(f"Presence: {e}")

    try:
        await job_feed_client.close()
    except Exception as e:
        logger.error("Error closing feed client", error=str(e))
        shutdown_errors.append(f"Feed client: {e}")

    if settings.redis_broadcast_enabled():
        try:
            logger.info("Closing Redis connection")
            await fast_redis.close()
        except Exception as e:
            logger.error("Error closing Redis", error=str(e))
            shutdown_errors.append(f"Redis: {e}")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Jumpseat Core",
    description="Job queue replenishment and applier presence tracking",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(job_queue_router)
app.include_router(presence_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        ws_ping_interval=settings.PRESENCE_HEARTBEAT_INTERVAL_SECONDS,
        ws_ping_timeout=settings.PRESENCE_HEARTBEAT_INTERVAL_SECONDS,
    )
