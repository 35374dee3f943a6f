"""
web/routes.py -- Jinja2 template routes for the UserAdmin web UI.

These routes serve server-rendered HTML. They translate form posts into calls
on auth/accounts.py and turn the results into redirects or page renders; they
contain no authorization logic of their own beyond picking the right
dependency (require_authenticated / require_manager).

Every render goes through render(), which puts the request's RequestContext
(current user, manager flag) into the template explicitly.

Validation failures re-render the originating form with status 200, the
message, and the submitted values echoed back (never the password).
Successful form posts 303-redirect to a canonical follow-up page.

Routes:
  GET       /                                   -- redirect to /profile or /login
  GET       /register                           -- registration form
  POST      /register                           -- create account, start session
  GET       /login                              -- login form
  POST      /login                              -- check credentials, start session
  GET|POST  /logout                             -- destroy session, redirect /login
  GET       /profile                            -- current user (auth required)
  GET       /manager/users                      -- user table (manager only)
  GET       /manager/users/{user_id}/edit       -- edit form (manager only)
  POST      /manager/users/{user_id}/update     -- save name/email/role (manager only)
  POST      /manager/users/{user_id}/delete     -- delete user (manager only)
"""

import logging
from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth import accounts
from auth.dependencies import RequestContext, get_request_context, require_authenticated, require_manager
from auth.errors import DuplicateEmail, ValidationError
from auth.models import Role
from auth.sessions import SessionStore, clear_session_cookie, set_session_cookie
from auth.store import UserStore, normalize_email

logger = logging.getLogger("useradmin.web")

TEMPLATES_DIR = Path(__file__).parent / "templates"
STATIC_DIR = Path(__file__).parent / "static"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
router = APIRouter()

_HOME = "/profile"
_USER_LIST = "/manager/users"
_ROLES = [r.value for r in Role]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def render(
    request: Request,
    ctx: RequestContext,
    name: str,
    context: Optional[dict[str, Any]] = None,
    status_code: int = 200,
) -> HTMLResponse:
    """Render a template with the request's auth context passed in explicitly."""
    payload: dict[str, Any] = {
        "current_user": ctx.current_user,
        "is_manager": ctx.is_manager,
    }
    payload.update(context or {})
    return templates.TemplateResponse(request, name, payload, status_code=status_code)


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept local paths.

    Rejects absolute URLs and protocol-relative URLs ("//host"), either of
    which would send the user off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//") and "\\" not in next_url:
        return next_url
    return _HOME


def _stores(request: Request) -> tuple[UserStore, SessionStore]:
    return request.app.state.user_store, request.app.state.session_store


def _start_session(target: str, token: str) -> RedirectResponse:
    resp = RedirectResponse(target, status_code=303)
    set_session_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# GET / -- entry point
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(ctx: RequestContext = Depends(get_request_context)) -> RedirectResponse:
    if ctx.identity is not None:
        return RedirectResponse(_HOME, status_code=302)
    return RedirectResponse("/login", status_code=302)


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


@router.get("/register", response_class=HTMLResponse)
def register_form(request: Request, ctx: RequestContext = Depends(get_request_context)) -> HTMLResponse:
    return render(request, ctx, "auth/register.html", {"error": None, "form": {}})


@router.post("/register", response_class=HTMLResponse)
def register_post(
    request: Request,
    name: Optional[str] = Form(default=None),
    email: Optional[str] = Form(default=None),
    password: Optional[str] = Form(default=None),
    ctx: RequestContext = Depends(get_request_context),
) -> HTMLResponse:
    """Create an account. The first account ever registered becomes a manager."""
    users, sessions = _stores(request)
    try:
        result = accounts.register(users, sessions, name, email, password, previous_token=ctx.token)
    except (ValidationError, DuplicateEmail) as exc:
        form = {"name": (name or "").strip(), "email": normalize_email(email)}
        resp = render(request, ctx, "auth/register.html", {"error": exc.message, "form": form})
        resp.headers["Cache-Control"] = "no-store"
        return resp
    return _start_session(_HOME, result.token)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request, ctx: RequestContext = Depends(get_request_context)) -> HTMLResponse:
    """Render the login page. Already-authenticated users go straight home."""
    if ctx.identity is not None:
        return RedirectResponse(_HOME, status_code=302)
    next_url = request.query_params.get("next")
    return render(
        request,
        ctx,
        "auth/login.html",
        {"error": None, "form": {}, "next": _safe_next(next_url) if next_url else ""},
    )


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: Optional[str] = Form(default=None),
    password: Optional[str] = Form(default=None),
    next_url: Optional[str] = Form(default=None, alias="next"),
    ctx: RequestContext = Depends(get_request_context),
) -> HTMLResponse:
    """Handle the login form. Unknown email and wrong password look identical."""
    users, sessions = _stores(request)
    try:
        result = accounts.login(users, sessions, email, password, previous_token=ctx.token)
    except ValidationError as exc:
        context = {
            "error": exc.message,
            "form": {"email": normalize_email(email)},
            "next": _safe_next(next_url) if next_url else "",
        }
        resp = render(request, ctx, "auth/login.html", context)
        resp.headers["Cache-Control"] = "no-store"
        return resp
    return _start_session(_safe_next(next_url), result.token)


@router.api_route("/logout", methods=["GET", "POST"])
def logout(request: Request, ctx: RequestContext = Depends(get_request_context)) -> RedirectResponse:
    """Destroy the session unconditionally and return to the login page."""
    _, sessions = _stores(request)
    accounts.logout(sessions, ctx.token, ctx.identity)
    resp = RedirectResponse("/login", status_code=303)
    clear_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.get("/profile", response_class=HTMLResponse)
def profile(request: Request, ctx: RequestContext = Depends(require_authenticated)) -> HTMLResponse:
    return render(request, ctx, "user/profile.html")


# ---------------------------------------------------------------------------
# Manager: user administration
# ---------------------------------------------------------------------------


@router.get("/manager/users", response_class=HTMLResponse)
def user_list(request: Request, ctx: RequestContext = Depends(require_manager)) -> HTMLResponse:
    users, _ = _stores(request)
    return render(
        request,
        ctx,
        "manager/users.html",
        {"users": accounts.list_users(users, ctx.identity)},
    )


@router.get("/manager/users/{user_id}/edit", response_class=HTMLResponse)
def user_edit_form(
    request: Request,
    user_id: str,
    ctx: RequestContext = Depends(require_manager),
) -> HTMLResponse:
    """Edit form pre-populated from the stored record. Unknown ids go back to the list."""
    users, _ = _stores(request)
    user = accounts.get_user(users, ctx.identity, user_id)
    form = {"name": user.name, "email": user.email, "role": user.role.value}
    return render(
        request,
        ctx,
        "manager/edit_user.html",
        {"user_id": user.id, "form": form, "roles": _ROLES, "error": None},
    )


@router.post("/manager/users/{user_id}/update", response_class=HTMLResponse)
def user_update(
    request: Request,
    user_id: str,
    name: Optional[str] = Form(default=None),
    email: Optional[str] = Form(default=None),
    role: Optional[str] = Form(default=None),
    ctx: RequestContext = Depends(require_manager),
) -> HTMLResponse:
    """Save name, email and role.

    A manager who demotes their own account lands on /profile, since the
    user list is no longer theirs to see.
    """
    users, sessions = _stores(request)
    try:
        updated = accounts.update_user(users, sessions, ctx.identity, ctx.token, user_id, name, email, role)
    except (ValidationError, DuplicateEmail) as exc:
        form = {"name": (name or "").strip(), "email": normalize_email(email), "role": role or ""}
        return render(
            request,
            ctx,
            "manager/edit_user.html",
            {"user_id": user_id, "form": form, "roles": _ROLES, "error": exc.message},
        )

    if ctx.identity.user_id == user_id and updated.role is not Role.manager:
        return RedirectResponse(_HOME, status_code=303)
    return RedirectResponse(_USER_LIST, status_code=303)


@router.post("/manager/users/{user_id}/delete", response_class=HTMLResponse)
def user_delete(
    request: Request,
    user_id: str,
    ctx: RequestContext = Depends(require_manager),
) -> RedirectResponse:
    users, sessions = _stores(request)
    accounts.delete_user(users, sessions, ctx.identity, user_id)
    return RedirectResponse(_USER_LIST, status_code=303)
