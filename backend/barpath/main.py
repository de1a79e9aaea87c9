"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from barpath import __version__
from barpath.config import get_settings
from barpath.api import api_router
from barpath.sessions import get_session_registry

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting {settings.app_name}")
    yield
    get_session_registry().clear()
    logger.info(f"Shutting down {settings.app_name}")


app = FastAPI(
    title=settings.app_name,
    description="""
    Barbell Path Tracker API

    Turns per-frame barbell detector output into a tracked bar path,
    recognizes completed reps and scores each one.

    ## Pipeline

    - **Detection filtering**: confidence threshold, plausibility checks, NMS
    - **Path tracking**: noise-gated nearest-neighbor association
    - **Rep completion**: amplitude, shape, duration and density checks
    - **Quality scoring**: completeness, efficiency, density and smoothness

    Frames are processed one at a time per session; a frame that arrives
    while the previous one is still in flight is dropped.
    """,
    version=__version__,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": __version__
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "health": "/health"
    }
