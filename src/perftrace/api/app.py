"""FastAPI application factory."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from perftrace import __version__
from perftrace.api.dependencies import get_recording_service
from perftrace.api.middleware import register_exception_handlers
from perftrace.api.routers import record
from perftrace.api.services.recording_service import RecordingService
from perftrace.core.config import load_environment

# Load environment variables
load_environment()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Close any browser left open by an unfinished recording
    await get_recording_service().shutdown()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="PerfTrace API",
        description="Record browser sessions and reconcile their traces into performance reports",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add CORS middleware for the dashboard frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://localhost:8000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register exception handlers
    register_exception_handlers(app)

    # Register routers with /api/v1 prefix
    app.include_router(record.router, prefix="/api/v1")

    # Health check endpoint
    @app.get("/health")
    def health_check(recording_service: RecordingService = Depends(get_recording_service)):
        """Health check endpoint.

        Returns:
            Health status
        """
        return {
            "status": "healthy",
            "version": __version__,
            "recording": recording_service.is_recording,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


# Create app instance for uvicorn
app = create_app()
