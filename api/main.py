"""
api/main.py -- FastAPI application entry point for UserAdmin.

Owns everything that is not a page: logging setup, the store lifecycle, the
middleware stack, the JSON health endpoint, and the last-resort error
handlers. The HTML pages live in web/ and are mounted by asgi.py.

Run with:  uvicorn asgi:app --reload
           python main.py

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. log_requests          -- one INFO line per request with latency

Lifespan opens the user store and session store before the first request is
served, starts the expired-session purge task, and tears all of it down
symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings

VERSION = "0.1.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("useradmin.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired sessions every SESSION_PURGE_INTERVAL_SECONDS.

    resolve() already refuses expired sessions; this only keeps the table
    from growing with abandoned ones. A failed pass is logged and the loop
    carries on. CancelledError from task.cancel() during shutdown propagates
    out of asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(_settings.session_purge_interval_seconds)
        try:
            removed = await asyncio.to_thread(app.state.session_store.purge_expired)
        except Exception:
            logger.exception("Expired-session purge failed")
            continue
        if removed:
            logger.info("Purged %d expired session(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage the stores across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. If either store cannot be opened, startup fails and no request
    is ever served.
    """
    logger.info("UserAdmin starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.session_store = SessionStore(_settings.session_database_url)
    logger.info("Stores initialized (users=%d)", app.state.user_store.count_all())
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.purge_task
    app.state.session_store.close()
    app.state.user_store.close()
    logger.info("UserAdmin shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="UserAdmin",
    description="Session-authenticated user administration.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Exception handlers
#
# JSON envelopes for /api/ paths, plain text everywhere else. Auth-specific
# errors (login redirect, 403 page, ...) are handled by web/errors.py.
# ---------------------------------------------------------------------------


def _is_api(request: Request) -> bool:
    return request.url.path.startswith("/api/")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> Response:
    """Return the framework's HTTP errors (404, 405, ...) in the caller's format."""
    if _is_api(request):
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
            ).model_dump(),
        )
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> Response:
    """Catch-all handler for unexpected server errors.

    The exception is logged with its traceback server-side only. The client
    receives a generic message with no internal detail.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    if _is_api(request):
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
            ).model_dump(),
        )
    return PlainTextResponse("Server error.", status_code=500)


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a reachability check for each store."""
    components = {
        "app": "ok",
        "database": "ok" if request.app.state.user_store.ping() else "error",
        "sessions": "ok" if request.app.state.session_store.ping() else "error",
    }
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
