"""
FastAPI main application entry point.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, status

from dockflow.api.v1.router import api_router
from dockflow.core.config import settings
from dockflow.core.container import get_container
from dockflow.core.event_handlers import register_all_handlers
from dockflow.core.exception_handlers import register_exception_handlers

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


configure_logging()

# Create scheduler for periodic jobs
scheduler = AsyncIOScheduler()

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Deployment orchestration engine for home-server application platforms",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/openapi.json",
)

# Register domain exception handlers
register_exception_handlers(app)


async def sync_platform_status():
    """Periodic job: refresh installed/running flags, skipping apps mid-deployment."""
    container = get_container()
    busy = {job.application_id for job in container.scheduler.queue_status().running_jobs}
    changed = await container.status_sync.sync_all(skip=busy)
    if changed:
        logger.info(f"Platform status sync updated {changed} application(s)")


async def poll_for_updates():
    """Periodic job: enqueue auto-updates for repositories with new commits."""
    enqueued = await get_container().update_poller.poll()
    if enqueued:
        logger.info(f"Auto-update queued: {', '.join(enqueued)}")


@app.on_event("startup")
async def startup_event():
    """
    Startup event handler.
    """
    register_all_handlers()

    container = get_container()
    global_settings = container.repository.get_settings()
    logger.info(
        f"{settings.APP_NAME} {settings.APP_VERSION} starting "
        f"(max concurrent builds: {global_settings.max_concurrent_builds}, "
        f"platform container: {settings.PLATFORM_CONTAINER})"
    )

    scheduler.add_job(sync_platform_status, 'interval', seconds=settings.STATUS_SYNC_INTERVAL)
    if global_settings.global_api_updates_enabled:
        scheduler.add_job(poll_for_updates, 'interval', seconds=settings.AUTO_UPDATE_POLL_INTERVAL)
    scheduler.start()
    logger.info("Scheduler started with status sync and auto-update jobs")


@app.on_event("shutdown")
async def shutdown_event():
    """
    Shutdown event handler.
    """
    scheduler.shutdown()
    await get_container().scheduler.shutdown()
    logger.info("Application shutdown complete")


@app.get("/api/health", status_code=status.HTTP_200_OK)
async def health_check():
    """
    Health check endpoint.

    Returns:
        Service status and build queue utilization
    """
    queue = get_container().scheduler.queue_status()
    return {
        "status": "healthy",
        "queue": {
            "running": queue.running,
            "queued": queue.queued,
            "max_concurrent": queue.max_concurrent,
        },
        "version": settings.APP_VERSION,
    }


@app.get("/api/v1/info", status_code=status.HTTP_200_OK)
async def info():
    """
    API information endpoint.
    """
    return {
        "app_name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "api_version": "v1",
    }


# Include API v1 router
app.include_router(api_router, prefix="/api/v1")


def run():
    """Console entry point."""
    import uvicorn

    uvicorn.run("dockflow.main:app", host="0.0.0.0", port=8000, log_level=settings.LOG_LEVEL)
