"""
Main FastAPI application for the assessment report backend.
Handles CORS, request logging middleware, lifespan events, and router registration.
"""
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import close_db, init_db
from app.routers import assessment_types, assessments, health, public
from app.services.converter import check_libreoffice_available

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """Initialise DB tables and verify the connection.  Returns True on success."""
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise


def _check_converter() -> bool:
    """Publishing needs LibreOffice; generation works without it.  Never raises."""
    available = check_libreoffice_available()
    if available:
        logger.info("✓ LibreOffice found: %s", settings.LIBREOFFICE_CMD)
    else:
        logger.warning(
            "⚠ '%s' not found on PATH, publishing will fail until LibreOffice is installed",
            settings.LIBREOFFICE_CMD,
        )
    return available


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting assessment report backend …")
    logger.info("=" * 60)

    # 1 - Database (required; raises on failure)
    await _check_database()

    # 2 - PDF converter (optional at startup)
    _check_converter()

    # 3 - Storage directories
    for directory in (settings.TEMPLATE_STORAGE_DIR, settings.PROJECT_STORAGE_DIR):
        os.makedirs(directory, exist_ok=True)
        logger.info("✓ Storage directory: %s", os.path.abspath(directory))

    logger.info("=" * 60)
    logger.info("  Backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("  Health     : http://%s:%d/api/health", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down assessment report backend …")
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Assessment Report API",
    description=(
        "Fill assessment templates from project field values, collect the "
        "reviewed documents, and publish them as one QR-stamped PDF.\n\n"
        "Key endpoints:\n"
        "- `POST /api/assessment-types` - define a type (admin)\n"
        "- `POST /api/assessments` - create a project\n"
        "- `POST /api/assessments/{id}/generate-initial-documents` - fill templates\n"
        "- `POST /api/assessments/{id}/upload-modified` - upload reviewed documents\n"
        "- `POST /api/assessments/{id}/publish` - build the final report\n"
        "- `GET  /public/docs/{public_access_id}` - published PDF\n"
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    if request.url.path not in ("/api/health", "/api/health/", "/"):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception, without internals."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "path": str(request.url.path),
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,           prefix="/api/health",           tags=["Health"])
app.include_router(assessment_types.router, prefix="/api/assessment-types", tags=["Assessment Types"])
app.include_router(assessments.router,      prefix="/api/assessments",      tags=["Assessments"])
app.include_router(public.router,           prefix="/public/docs",          tags=["Public"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root - returns basic service info."""
    return {
        "name": "Assessment Report API",
        "version": "1.0.0",
        "description": "Assessment document generation and publishing backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "assessment_types": "/api/assessment-types",
            "assessments": "/api/assessments",
            "public": "/public/docs",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
