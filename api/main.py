"""
api/main.py -- FastAPI application entry point for AuthKeeper.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. log_requests          -- method, path, status and latency for every request

Lifespan handles startup (settings, store, AuthService, purge task) and
shutdown (cancel purge task, close the store) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.errors import ServiceError
from auth.service import AuthService, build_service
from auth.store import UserStore
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authkeeper.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


def purge_expired_tokens(service: AuthService) -> tuple[int, int]:
    """Delete expired refresh and single-use tokens. Returns (refresh, single_use) counts."""
    refresh = service.refresh_tokens.purge_expired()
    single_use = service.single_use_tokens.purge_expired()
    logger.info("Purged %d expired refresh token(s), %d expired single-use token(s)", refresh, single_use)
    return refresh, single_use


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Purge expired tokens every `interval` seconds.

    validate() already deletes expired rows it runs into; this catches the
    ones nobody presents again. A failed pass is logged and the loop keeps
    going -- the next pass covers the same rows.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(purge_expired_tokens, app.state.auth_service)
        except Exception:
            logger.exception("Expired token purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store, wire AuthService, start the purge task; undo on shutdown."""
    settings = get_settings()
    logger.info("AuthKeeper API starting up")
    app.state.user_store = UserStore(settings.database_url, timeout=settings.store_timeout_seconds)
    app.state.auth_service = build_service(settings, app.state.user_store)
    logger.info("Auth initialized (mail configured=%s)", app.state.auth_service.mailer.is_configured)
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    logger.info("AuthKeeper API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthKeeper API",
    description="Password login, access/refresh tokens, email verification and password recovery.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        # Path tokens (/verify/{token}, /reset/{token}) are secrets; log the route only.
        _loggable_path(request.url.path),
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


def _loggable_path(path: str) -> str:
    for prefix in ("/verify/", "/reset/"):
        if path.startswith(prefix) and path != "/verify/resend":
            return prefix + "***"
    return path


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render AuthService errors using the status and code each error class carries."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.error_code, request.method, _loggable_path(request.url.path), exc)
    resp = _error(exc.status_code, exc.error_code, exc.message, exc.detail)
    if exc.status_code == 401:
        resp.headers["WWW-Authenticate"] = "Bearer"
    return resp


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the body is not JSON or does not match the request model."""
    return _error(400, "bad_request", "Invalid request", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with a dict detail (code + message); use
    it directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, _loggable_path(request.url.path))
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the row store answers."""
    database = "ok" if request.app.state.user_store.ping() else "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
