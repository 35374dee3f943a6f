"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session cookie is resolved exactly once per request into a read-only
RequestContext: the raw token, the session Identity (user id + cached role)
and the current user's public record for rendering. Route handlers receive
the context as a dependency and pass it explicitly to templates; nothing is
stashed in template globals.

get_request_context() is the soft variant (anonymous context on any failure).
require_authenticated() and require_manager() run auth.gate.authorize() on
top of it and raise Unauthenticated / Forbidden, which web/errors.py turns
into a login redirect and a 403 page respectively.

Layer rule: no imports from web/.
  auth/dependencies.py may import from fastapi (for Depends/Request) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request

from auth.accounts import public_view
from auth.gate import AccessState, Capability, access_state, authorize
from auth.models import Identity, PublicUser
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings

_settings = get_settings()


@dataclass(frozen=True)
class RequestContext:
    """Everything a request knows about who is calling. Built once, never mutated."""

    token: str | None = None
    identity: Identity | None = None
    current_user: PublicUser | None = None

    @property
    def state(self) -> AccessState:
        return access_state(self.identity)

    @property
    def is_manager(self) -> bool:
        return self.state is AccessState.manager


def _resolve_context(request: Request) -> RequestContext:
    token = request.cookies.get(_settings.session_cookie_name) or None
    if token is None:
        return RequestContext()

    sessions: SessionStore = request.app.state.session_store
    record = sessions.resolve(token)
    if record is None:
        return RequestContext(token=token)

    users: UserStore = request.app.state.user_store
    user = users.find_by_id(record.user_id)
    if user is None:
        sessions.destroy(token)
        return RequestContext(token=token)

    return RequestContext(
        token=token,
        identity=Identity(user_id=record.user_id, role=record.role),
        current_user=public_view(user),
    )


def get_request_context(request: Request) -> RequestContext:
    """Resolve the session cookie into a RequestContext, once per request.

    Never raises for a bad cookie: a missing, unknown or expired token gives
    an anonymous context. A session whose user has since been deleted is
    destroyed and also treated as anonymous.

    The result is kept on request.state.auth_context so exception handlers
    can render the same context without resolving the session again.
    """
    ctx = getattr(request.state, "auth_context", None)
    if ctx is None:
        ctx = _resolve_context(request)
        request.state.auth_context = ctx
    return ctx


def require_authenticated(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    """Require a live session. Raises Unauthenticated otherwise.

    Use as a FastAPI dependency:
        @router.get("/profile")
        def route(ctx: RequestContext = Depends(require_authenticated)): ...
    """
    authorize(ctx.identity, Capability.authenticated)
    return ctx


def require_manager(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    """Require a live session whose cached role is manager.

    Raises Forbidden for anonymous callers and for every other role.
    """
    authorize(ctx.identity, Capability.manager)
    return ctx
