"""
Photo Fusion Service - Main Application

FastAPI application with:
- Background removal of uploaded photos (/api/matting)
- AI background generation and image fusion (/api/ai-fuse)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Storage abstraction (Supabase + local)
"""

import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from photofusion.core.config import settings
from photofusion.core.logging import setup_logging, get_logger, LogContext
from photofusion.core.exceptions import register_exception_handlers, unhandled_exception_response
from photofusion.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from photofusion.core.storage import StorageFactory
from photofusion.api.routes import api_router


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
    """Create the shared upstream HTTP client on startup, close it on shutdown."""
    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        background_provider=settings.BACKGROUND_PROVIDER,
        storage="supabase" if settings.supabase_enabled else "local",
        prompt_expansion=bool(settings.OPENROUTER_API_KEY)
    )

    app.state.http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    StorageFactory.init(app.state.http_client)

    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    logger.info("application_ready")

    yield

    logger.info("application_shutting_down")
    StorageFactory.close()
    await app.state.http_client.aclose()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Photo background replacement workflow:

    1. **Matting** - upload a photo, its background is removed (Stability AI)
    2. **Background generation** - text prompt, optionally expanded by an LLM
       (OpenRouter), rendered by Stability SD3 or a PiAPI task
    3. **Fusion** - the cutout is colour matched and composited on the background

    Every intermediate image is stored (Supabase Storage or local disk) and
    returned as a public URL.
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


@app.middleware("http")
async def add_request_context(request: Request, call_next):
    """Bind a request id to the logs and track request timing for metrics."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()

    with LogContext(request_id=request_id):
        try:
            response = await call_next(request)
        except Exception as exc:
            response = unhandled_exception_response(request, exc)

    duration = time.time() - start_time

    # Label by route template, not raw path (static file names are unbounded)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", None) or "unmatched"

    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(duration)

    return response


# =============================================================================
# Register Exception Handlers
# =============================================================================
register_exception_handlers(app)


# =============================================================================
# Include API Routers
# =============================================================================
app.include_router(api_router)


# =============================================================================
# Static Files
# =============================================================================

# LocalStorage hands out URLs under /static/storage
if not settings.supabase_enabled:
    storage_dir = Path(settings.LOCAL_STORAGE_PATH)
    storage_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/static/storage", StaticFiles(directory=str(storage_dir)), name="storage")


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
        "matting": "/api/matting",
        "ai_fuse": "/api/ai-fuse",
        "metrics": "/api/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/ready", tags=["health"])
async def ready():
    """Readiness check - verifies the upstream credentials are configured."""
    provider = settings.BACKGROUND_PROVIDER.strip().lower()
    checks = {
        "background_removal": bool(settings.STABILITY_API_KEY),
        "background_generation": bool(
            settings.STABILITY_API_KEY if provider == "stability"
            else settings.PIAPI_API_KEY if provider == "piapi"
            else False
        ),
    }

    all_ready = all(checks.values())

    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={
            "ready": all_ready,
            "checks": checks,
            "storage": type(StorageFactory.get_storage()).__name__,
            "background_provider": provider,
            "prompt_expansion": bool(settings.OPENROUTER_API_KEY)
        }
    )


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "photofusion.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
