"""
Tiered Photo Ingestion Service - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Storage abstraction (local + Supabase)
"""

import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.routing import Match

from photo_ingest.core.config import settings
from photo_ingest.core.logging import setup_logging, get_logger
from photo_ingest.core.exceptions import register_exception_handlers
from photo_ingest.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from photo_ingest.core.storage import PUBLIC_URL_PREFIX, StorageFactory
from photo_ingest.api.v1 import api_v1_router


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        storage_backend=settings.STORAGE_BACKEND
    )

    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    logger.info("application_ready")

    yield

    # Shutdown
    logger.info("application_shutting_down")
    if StorageFactory._instance is not None:
        await StorageFactory._instance.aclose()
        StorageFactory.reset()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Tiered photo ingestion for artists, venues, organizers and photographers.

    Every upload is validated against the account tier, then stored as:

    - **Thumbnail** (always) - fits within 300x300
    - **Full resolution** - the untouched original (all tiers but general)
    - **Preview** - resized and re-encoded per tier policy
    - **Watermarked** - photographers only, on request

    ## API Versioning

    All endpoints are versioned under `/api/v1/`
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware
# =============================================================================

# CORS
cors_origins = settings.CORS_ORIGINS.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _endpoint_label(request: Request) -> str:
    """Route template for metric labels; one series per route, not per URL."""
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match != Match.NONE:
            return getattr(route, "path", "unmatched")
    return "unmatched"


# Request timing middleware
@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics."""
    # Match before dispatch; routing rewrites the scope for mounted apps
    endpoint = _endpoint_label(request)
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()

    response.headers["X-Process-Time"] = str(duration)

    return response


# =============================================================================
# Register Exception Handlers
# =============================================================================
register_exception_handlers(app)


# =============================================================================
# Include API Routers
# =============================================================================
app.include_router(api_v1_router)


# =============================================================================
# Static Files
# =============================================================================

# Local backend serves its buckets under the same public URL layout as Supabase
if settings.STORAGE_BACKEND.lower() == "local":
    storage_dir = Path(settings.LOCAL_STORAGE_PATH)
    storage_dir.mkdir(parents=True, exist_ok=True)
    app.mount(PUBLIC_URL_PREFIX, StaticFiles(directory=storage_dir), name="storage")


# =============================================================================
# Root Endpoints
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "api_v1": "/api/v1",
        "photos": "/api/v1/photos",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "photo_ingest.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
