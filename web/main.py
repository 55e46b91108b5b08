"""Scoutarr - FastAPI Application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from core.logging_config import LoggingManager
from web.config import PROJECT_ROOT, SETTINGS_FILE, DATA_DIR, LOGS_DIR
from web.context import build_context
from web.routers import search, sync, status, history, media_library, stats, settings, notifications

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown"""
    # Startup
    logging_manager = LoggingManager(str(LOGS_DIR))
    logging_manager.setup_logging()
    logger.info("Scoutarr starting...")
    logger.info(f"Project root: {PROJECT_ROOT}")
    logger.info(f"Settings file: {SETTINGS_FILE}")

    context = build_context(SETTINGS_FILE, DATA_DIR)
    logging_manager.set_level(context.config.log_level)
    app.state.context = context

    errors = context.start()
    for error in errors:
        logger.error(f"Schedule not activated: {error}")

    yield

    # Shutdown
    logger.info("Scoutarr shutting down...")
    context.stop()
    logging_manager.shutdown()


# Create FastAPI app
app = FastAPI(
    title="Scoutarr",
    description="Automated upgrade searches for Radarr, Sonarr, Lidarr and Readarr",
    version="1.0.0",
    lifespan=lifespan
)

# Include routers
app.include_router(search.router, tags=["search"])
app.include_router(sync.router, prefix="/sync", tags=["sync"])
app.include_router(status.router, tags=["status"])
app.include_router(history.router, prefix="/history", tags=["history"])
app.include_router(media_library.router, prefix="/media-library", tags=["media-library"])
app.include_router(stats.router, prefix="/stats", tags=["stats"])
app.include_router(settings.router, prefix="/settings", tags=["settings"])
app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
