"""
web/errors.py -- Exception handlers mapping auth errors to HTML responses.

  Unauthenticated -> 302 /login?next=<path>   (navigational, logged at DEBUG)
  Forbidden       -> 403 access-denied page   (no detail about the attempt)
  NotFound        -> 303 /manager/users       (tolerates stale links)
  SelfDeletion    -> 400 page with guidance

ValidationError and DuplicateEmail never reach these handlers: route handlers
catch them and re-render the form they came from.

Registered on the app by asgi.py.
"""

import logging
from urllib.parse import quote

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from auth.dependencies import RequestContext
from auth.errors import Forbidden, NotFound, SelfDeletion, Unauthenticated
from web.routes import render

logger = logging.getLogger("useradmin.web")


def _context(request: Request) -> RequestContext:
    # Set by get_request_context() earlier in the same request.
    return getattr(request.state, "auth_context", None) or RequestContext()


async def _unauthenticated_handler(request: Request, exc: Unauthenticated) -> RedirectResponse:
    logger.debug("Unauthenticated request to %s", request.url.path)
    return RedirectResponse(f"/login?next={quote(request.url.path)}", status_code=302)


async def _forbidden_handler(request: Request, exc: Forbidden) -> HTMLResponse:
    logger.info("Forbidden: %s %s", request.method, request.url.path)
    return render(request, _context(request), "forbidden.html", {"message": exc.message}, status_code=403)


async def _not_found_handler(request: Request, exc: NotFound) -> RedirectResponse:
    return RedirectResponse("/manager/users", status_code=303)


async def _self_deletion_handler(request: Request, exc: SelfDeletion) -> HTMLResponse:
    return render(request, _context(request), "error.html", {"message": exc.message}, status_code=400)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the auth error handlers to the FastAPI app."""
    app.add_exception_handler(Unauthenticated, _unauthenticated_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Forbidden, _forbidden_handler)  # type: ignore[arg-type]
    app.add_exception_handler(NotFound, _not_found_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SelfDeletion, _self_deletion_handler)  # type: ignore[arg-type]
