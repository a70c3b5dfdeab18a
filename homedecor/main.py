"""
Home Decor Redecoration Pipeline - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Background pipeline execution (asyncio workers or Celery)
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from homedecor.api.v1 import api_v1_router
from homedecor.core.config import settings
from homedecor.core.database import async_session_maker, create_db_and_tables
from homedecor.core.exceptions import register_exception_handlers
from homedecor.core.logging import get_logger, setup_logging
from homedecor.core.metrics import record_http_request, set_app_info
from homedecor.core.scheduler import AsyncioScheduler
from homedecor.pipeline.factory import build_orchestrator, build_redis_client


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
    startup_start = time.time()

    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        pipeline_backend=settings.PIPELINE_BACKEND,
    )

    await create_db_and_tables()
    logger.info("database_initialized")

    app.state.redis = build_redis_client()
    logger.info("redis_client_created", url=settings.REDIS_URL)

    app.state.orchestrator = build_orchestrator(async_session_maker, redis_client=app.state.redis)
    app.state.mask_service = app.state.orchestrator.mask_generator

    set_app_info(version=settings.APP_VERSION, environment=settings.ENVIRONMENT)

    logger.info("application_ready", startup_time_seconds=time.time() - startup_start)

    yield

    logger.info("application_shutting_down")
    scheduler = app.state.orchestrator.scheduler
    if isinstance(scheduler, AsyncioScheduler):
        await scheduler.shutdown()
    await app.state.redis.aclose()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Redecorates room photos in a chosen decor style.

    - **Conformance**: resizes and recompresses photos to the generation API limits
    - **Masking**: preserves walls, windows, ceiling and floor
    - **Generation**: one call to the external image edit API per request
    - **Observability**: structured logging, Prometheus metrics, per-request logs

    ## Request lifecycle

    `POST /api/v1/image-requests` returns a Pending request immediately.
    Poll `GET /api/v1/image-requests/{id}` until it is Completed or Failed.
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

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Route template keeps label cardinality bounded (no request ids)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    record_http_request(request.method, endpoint, response.status_code, duration)

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

# Serves the URLs LocalStorage hands out
app.mount(
    settings.STORAGE_URL_PREFIX,
    StaticFiles(directory=settings.LOCAL_STORAGE_PATH, check_dir=False),
    name="storage",
)


# =============================================================================
# Root Endpoints
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "api_v1": "/api/v1",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/ready", tags=["health"])
async def ready(request: Request):
    """Readiness check - verifies dependencies are available."""
    checks = {
        "redis": False,
        "database": False,
    }

    try:
        await request.app.state.redis.ping()
        checks["redis"] = True
    except Exception as e:
        logger.warning("readiness_redis_failed", error=str(e))

    try:
        from homedecor.core.database import engine
        from sqlalchemy import text
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.warning("readiness_database_failed", error=str(e))

    # Redis only backs the mask cache; the pipeline still works without it
    all_ready = checks["database"]

    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={
            "ready": all_ready,
            "checks": checks,
        }
    )


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "homedecor.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
