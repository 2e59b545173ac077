"""
IMFOLIO Storage API

FastAPI application exposing the storage reconciliation admin endpoints.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from imfolio import __version__
from imfolio.config import get_settings
from imfolio.core.database import close_db, init_db
from imfolio.core.log_config import configure_logging
from imfolio.core.locks import close_key_locks
from imfolio.routers import storage_audit_router

# Configure logging
configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting IMFOLIO storage API...")
    settings = get_settings()
    settings.validate_paths()

    logger.info("Initializing database connection...")
    await init_db()
    logger.info("Database connection established")

    storage = "S3" if settings.s3_configured else f"local disk ({settings.local_storage_root})"
    logger.info(f"IMFOLIO storage API started in {settings.environment} mode, objects on {storage}")

    yield

    # Shutdown
    logger.info("Shutting down IMFOLIO storage API...")
    await close_key_locks()
    await close_db()
    logger.info("IMFOLIO storage API shutdown complete")


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="IMFOLIO Storage API",
        description="Storage reconciliation and repair for the IMFOLIO portfolio platform",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Register routers
    app.include_router(storage_audit_router)

    # Root endpoint
    @app.get("/")
    async def root():
        return {
            "name": "IMFOLIO Storage API",
            "version": __version__,
            "docs": "/docs",
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "imfolio.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )
