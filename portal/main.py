"""
main.py — TrustTax portal form service entry point.

Start with: uvicorn portal.main:app --reload --port 8000
"""
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portal.config import settings
from portal.profile.errors import (
    FieldStateError,
    ProfileValidationError,
    SaveError,
    SaveInProgressError,
)
from portal.profile.validator import issue_details
from portal.store import FormSessionStore

# ---------------------------------------------------------------------------
# Logging — configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan — startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Create the in-memory form store (open forms never outlive the process)
      2. Start the sweeper that evicts idle forms
    Shutdown:
      1. Stop the sweeper
      2. Dispose every open form and close its API client
    """
    app.state.form_store = FormSessionStore(ttl_seconds=settings.form_idle_ttl_seconds)
    sweeper = asyncio.create_task(
        app.state.form_store.run_sweeper(settings.form_sweep_interval_seconds)
    )
    logger.info("TrustTax portal v%s starting up api_base_url=%s", settings.app_version, settings.api_base_url)
    yield

    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await app.state.form_store.close_all()
    logger.info("TrustTax portal shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="TrustTax Portal Forms API",
    version=settings.app_version,
    description=(
        "Profile form service for the TrustTax client portal. Masks SSN/ITIN, "
        "driver's license and passport numbers, reveals them on demand and "
        "saves only what changed."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# CORS middleware — restricted to frontend origins from settings
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers — registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Converts Pydantic / FastAPI 422 validation errors to standard format.
    Returns ALL field violations in one response.
    """
    details = []
    for error in exc.errors():
        # Build dot-notation field path, excluding the top-level 'body' loc
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(ProfileValidationError)
async def profile_validation_handler(
    request: Request, exc: ProfileValidationError
) -> JSONResponse:
    """Required-field failures, in declaration order (first = scroll target)."""
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Profile validation failed",
        details=[d.model_dump() for d in issue_details(exc.fields)],
        status_code=422,
    )


@app.exception_handler(SaveError)
async def save_error_handler(request: Request, exc: SaveError) -> JSONResponse:
    """Upstream rejected the update. The server's message is passed verbatim."""
    return _make_error_response(
        code="SAVE_FAILED",
        message=exc.message,
        status_code=502,
    )


@app.exception_handler(SaveInProgressError)
async def save_in_progress_handler(
    request: Request, exc: SaveInProgressError
) -> JSONResponse:
    return _make_error_response(code="CONFLICT", message=exc.message, status_code=409)


@app.exception_handler(FieldStateError)
async def field_state_handler(request: Request, exc: FieldStateError) -> JSONResponse:
    return _make_error_response(
        code="BAD_REQUEST",
        message=exc.message,
        details=[{"field": exc.field, "issue": exc.message}],
        status_code=400,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """
    Converts FastAPI HTTPException to standard error format with semantic code.
    """
    code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
        502: "UPSTREAM_ERROR",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(ValueError)
async def value_error_handler(
    request: Request, exc: ValueError
) -> JSONResponse:
    """
    Catches explicit ValueError raises from the form core (unknown field names).
    Surfaces as 422 VALIDATION_ERROR so the caller understands it's a data issue.
    """
    return _make_error_response(
        code="VALIDATION_ERROR",
        message=str(exc),
        status_code=422,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors.
    DEBUG=true  → includes exception type & message in details (dev only).
    DEBUG=false → generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint (no auth required)
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check() -> dict:
    """Returns service health status."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "open_forms": len(getattr(app.state, "form_store", None) or ()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from portal.profile.routes import router as profile_form_router

app.include_router(profile_form_router)
