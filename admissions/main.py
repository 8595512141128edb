"""Main FastAPI application - University Lead Generation API"""

import logging
import time
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.responses import JSONResponse

from admissions import models  # noqa: F401
from admissions.api import leads
from admissions.config import get_settings
from admissions.database import Database, get_database
from admissions.errors import register_error_handlers
from admissions.middleware import BodySizeLimitMiddleware, SecurityHeadersMiddleware
from admissions.rate_limit import limiter, rate_limit_exceeded_handler
from admissions.services.background import get_dispatcher
from admissions.services.webhook_notifier import close_shared_client

settings = get_settings()

API_VERSION = "1.0.0"

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize Sentry if DSN is provided
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        release=API_VERSION,
        integrations=[
            FastApiIntegration(),
        ],
    )
    logging.info("Sentry initialized for environment: %s", settings.SENTRY_ENVIRONMENT)
else:
    logging.info("Sentry disabled (no DSN configured)")

# Prometheus metrics (kept minimal; avoid high-cardinality labels).
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
UNMATCHED_PATH_LABEL = "unmatched"
UNTRACKED_PATHS = {"/api/metrics"}

# Create FastAPI app
app = FastAPI(
    title="University Lead Generation API",
    description="Admission enquiry capture with n8n webhook hand-off",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# Body cap sits inside CORS so a 413 still carries the CORS headers
app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.MAX_REQUEST_BODY_BYTES)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.add_middleware(SecurityHeadersMiddleware)

register_error_handlers(app)


# Lifecycle events
@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    logger.info("Starting University Lead Generation API (%s)...", settings.ENVIRONMENT)
    database = get_database()

    # Create tables if missing
    try:
        await database.create_all()
    except Exception as exc:
        logger.warning("create_all race condition (harmless if tables exist): %s", exc)

    if not settings.N8N_WEBHOOK_URL:
        logger.warning("N8N_WEBHOOK_URL not configured; lead webhooks will be skipped")

    logger.info("Database initialized successfully")


@app.on_event("shutdown")
async def shutdown_event():
    """Let in-flight webhooks finish, then release connections"""
    logger.info("Shutting down University Lead Generation API...")
    await get_dispatcher().drain(timeout=settings.BACKGROUND_DRAIN_TIMEOUT)
    await close_shared_client()
    await get_database().close()


def metrics_path_label(request) -> str:
    """Route template for the request, or UNMATCHED_PATH_LABEL when no route matched."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_PATH_LABEL


@app.middleware("http")
async def record_request_metrics(request, call_next):
    """
    Count requests and time them per method and route template.

    Raw URLs never become label values; 404 scans all land on one label.
    """
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        path = metrics_path_label(request)
        if path not in UNTRACKED_PATHS:
            try:
                HTTP_REQUESTS_TOTAL.labels(request.method, path, str(status_code)).inc()
                HTTP_REQUEST_DURATION_SECONDS.labels(request.method, path).observe(time.perf_counter() - started)
            except ValueError as exc:
                logger.debug("Metrics recording failed: %s", exc)


# Health check
@app.get("/health")
async def health_check(database: Database = Depends(get_database)):
    """Health check endpoint, verifies DB connectivity."""
    body = {
        "success": True,
        "message": "University Lead Generation API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.ENVIRONMENT,
        "version": API_VERSION,
    }
    try:
        await database.ping()
        body["database"] = "connected"
        return body
    except Exception as e:
        logger.error("Health check database ping failed: %s", e)
        body.update(success=False, database="unavailable")
        if settings.DEBUG:
            body["error"] = str(e)
        return JSONResponse(status_code=503, content=body)


@app.get("/api/health")
async def health_check_api(database: Database = Depends(get_database)):
    """Health check endpoint (API namespace, for reverse proxies)."""
    return await health_check(database)


@app.get("/api/metrics")
async def prometheus_metrics():
    """
    Prometheus scrape endpoint.

    Intended to be scraped from inside the deployment; do not expose publicly.
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Include routers
app.include_router(leads.router, prefix="/api")


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "service": "University Lead Generation API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "leads": "/api/leads",
            "stats": "/api/leads/stats",
            "checkPhone": "/api/leads/check-phone",
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "admissions.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
        log_level=settings.LOG_LEVEL.lower(),
    )
