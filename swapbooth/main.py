"""
Main Backend FastAPI application.
"""
import logging
import sys
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .core.config import settings
from .core.supabase_client import supabase_client
from .api.v1.usage import router as usage_router
from .api.v1.generations import router as generations_router
from .api.v1.admin import router as admin_router, limiter
from .middleware.rate_limit import BurstThrottleMiddleware
from .services.anonymous_usage import anonymous_usage_store
from .services.admin_sessions import admin_sessions

# Configure logging to stdout for the container log driver
log_level = logging.DEBUG if settings.debug else logging.INFO

logging.basicConfig(
    level=log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout
)

logging.getLogger("uvicorn.access").setLevel(logging.WARNING)  # Reduce access log noise
logging.getLogger("uvicorn.error").setLevel(logging.INFO)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Starts the background sweep of the anonymous usage cache and stops it
    on shutdown.
    """
    logger.info("🚀 Starting swapbooth API...")

    if not supabase_client.is_configured:
        logger.warning("⚠️  Supabase not configured: usage falls back to in-memory counts")
    if not admin_sessions.is_configured:
        logger.info("Admin debug mode disabled (ADMIN_PASSWORD not set)")

    anonymous_usage_store.start_sweeper(settings.usage_sweep_interval_seconds)
    logger.info(f"✅ Anonymous usage sweeper running every {settings.usage_sweep_interval_seconds}s")

    logger.info("🟢 Application startup complete")

    yield

    logger.info("🔄 Shutting down swapbooth API...")
    await anonymous_usage_store.stop_sweeper()
    logger.info("🔴 Application shutdown complete")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=settings.project_name,
        description="Usage accounting and access control for paid image generation",
        version="1.0.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.effective_cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Admin-Token"],
    )
    logger.info(f"🔒 CORS configured with {len(settings.effective_cors_origins)} origins")

    # Per-IP burst throttle in front of generation retrieval
    app.add_middleware(
        BurstThrottleMiddleware,
        limit=settings.burst_limit_per_window,
        window_seconds=settings.burst_window_seconds,
        path_prefixes=settings.burst_throttled_paths,
        max_keys=settings.burst_max_tracked_addresses,
    )

    app.include_router(usage_router, prefix=settings.api_v1_str)
    app.include_router(generations_router, prefix=settings.api_v1_str)

    # Admin login is rate limited with slowapi
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.include_router(admin_router, prefix=settings.api_v1_str)

    return app


# Create the FastAPI app instance
app = create_application()


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "swapbooth API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs" if settings.debug else "disabled",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    stats = anonymous_usage_store.stats()
    return {
        "status": "healthy",
        "service": "swapbooth-api",
        "environment": settings.environment,
        "supabase_configured": supabase_client.is_configured,
        "anonymous_sessions_cached": stats["cached_sessions"],
        "anonymous_addresses_tracked": stats["fallback_addresses"],
    }
