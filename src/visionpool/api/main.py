"""
FastAPI application entry point.

This is the main FastAPI application that wires the HTTP routes to the
processing core. The VisionService (worker pool, native contexts) is built
once at startup and torn down at shutdown.
"""

import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from .routers import vision, health
from .. import __version__
from ..config import ServiceConfig, load_config
from ..service import VisionService

logger = logging.getLogger(__name__)

# Global application state
app_state = {}

def create_app(config: Optional[ServiceConfig] = None) -> FastAPI:
    """
    Factory function to create and configure the FastAPI application.

    Passing a config skips file/env loading, which keeps tests hermetic.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        service_config = config or load_config()
        logger.info("starting visionpool API server")
        service = VisionService(service_config)
        app_state["vision_service"] = service
        app_state["config"] = service_config

        yield  # Server runs here

        logger.info("shutting down visionpool API server")
        service.close(wait=True)
        app_state.clear()

    app = FastAPI(
        title="visionpool",
        description="Bounded, failure-isolated image processing service",
        version=__version__,
        lifespan=lifespan
    )

    # Include API routers
    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(vision.router, prefix="/api/v1/vision", tags=["vision"])

    @app.get("/")
    async def root():
        """Root endpoint with basic API information."""
        return {
            "name": "visionpool",
            "version": __version__,
            "status": "operational",
            "endpoints": {
                "health": "/health",
                "process": "/api/v1/vision/process",
                "upload": "/api/v1/vision/upload",
                "docs": "/docs",
            }
        }

    return app

# Create the FastAPI app instance
app = create_app()
