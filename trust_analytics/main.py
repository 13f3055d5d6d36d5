from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog
import time

from trust_analytics.core.config import settings
from trust_analytics.core.database import init_db
from trust_analytics.core.errors import InvalidQueryError, StorageError
from trust_analytics.api import analytics, events, stats
from trust_analytics.middleware.rate_limit import rate_limit_middleware

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ]
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events"""
    init_db()
    logger.info("application_startup", app_name=settings.app_name, database_url=settings.database_url)
    yield
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan
)


@app.exception_handler(InvalidQueryError)
async def invalid_query_handler(request: Request, exc: InvalidQueryError):
    logger.warning("invalid_query", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("storage_unavailable", path=request.url.path, operation=exc.operation, error=exc.detail)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Event store unavailable, retry the request", "operation": exc.operation},
        headers={"Retry-After": "1"}
    )


# Middleware for logging requests
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration * 1000, 2)
    )

    return response


if settings.rate_limit_enabled:
    app.middleware("http")(rate_limit_middleware)


# Include routers
app.include_router(events.router)
app.include_router(analytics.router)
app.include_router(stats.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "app": settings.app_name}


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Trust Analytics API",
        "endpoints": {
            "health": "/health",
            "events": "/api/events",
            "dashboard": "/api/dashboard",
            "analytics": "/api/analytics/{overview,votes,turns,journeys}",
            "correlation": "/api/turns/{turn_id}/correlation",
            "stats": "/api/stats",
            "docs": "/docs"
        }
    }
