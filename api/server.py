"""FastAPI server for the line-items service.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core import __version__
from core.config import get_settings
from core.observability import configure_logging, get_logger, get_telemetry
from line_items.db import init_line_items_db
from api.routes import health, line_items


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging()
    init_line_items_db(
        settings.db_path,
        include_vendor=settings.vendor_column,
        include_times=settings.scheduled_times_column,
    )
    telemetry = get_telemetry()
    if telemetry.restore_from_durable():
        logger.info("Telemetry counters restored from durable store")
    logger.info("Line Items API starting up...")

    yield

    # Shutdown
    if telemetry.persist_to_durable():
        logger.info("Telemetry counters persisted to durable store")
    logger.info("Line Items API shutting down...")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Line Items API",
        description="API for saving job line items against stores with optional vendor and scheduling columns",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(line_items.router, prefix="/jobs", tags=["Line Items"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
