"""
auth/accounts.py -- Registration, login and user administration.

Pure operations over UserStore and SessionStore. No HTTP, no HTML: each
function either returns data or raises one of the auth.errors classes, and
the web layer decides how to present it. Manager-only operations call
auth.gate.authorize() themselves, so they stay safe even when invoked from
somewhere other than a guarded route.

Usage:
    result = register(users, sessions, "Ada", "ada@example.com", "correct-horse")
    result.token        # goes into the session cookie
    result.user.role    # Role.manager for the first account ever registered
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.errors import DuplicateEmail, InvalidLogin, NotFound, SelfDeletion, ValidationError
from auth.gate import Capability, authorize
from auth.models import Identity, PublicUser, Role, User
from auth.passwords import MAX_PASSWORD_BYTES, MIN_PASSWORD_LENGTH, authenticate_user, hash_password, password_too_long
from auth.sessions import SessionStore
from auth.store import UserStore, normalize_email, normalize_profile

logger = logging.getLogger("useradmin.auth.accounts")


@dataclass(frozen=True)
class AuthResult:
    """A successful login or registration: who, and the new session token."""

    user: PublicUser
    token: str


def public_view(user: User) -> PublicUser:
    return PublicUser(
        id=user.id or "",
        name=user.name,
        email=user.email,
        role=user.role,
        created_at=user.created_at or "",
        updated_at=user.updated_at or "",
    )


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


def register(
    users: UserStore,
    sessions: SessionStore,
    name: str | None,
    email: str | None,
    password: str | None,
    previous_token: str | None = None,
) -> AuthResult:
    """Create an account and log it in.

    The first account on an empty store is made a manager regardless of
    input; see UserStore.create_registered().
    """
    name = (name or "").strip()
    email = normalize_email(email)
    password = password or ""

    if not name or not email or not password:
        raise ValidationError("All fields are required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if password_too_long(password):
        raise ValidationError(f"Password must be {MAX_PASSWORD_BYTES} bytes or fewer.")
    normalize_profile(name, email, Role.user)

    if users.find_by_email(email) is not None:
        raise DuplicateEmail("That email is already registered.")

    user = users.create_registered(name, email, hash_password(password))
    token = sessions.establish(user.id, user.role, previous_token)
    logger.info("Registered user_id=%s role=%s", user.id, user.role.value)
    return AuthResult(user=public_view(user), token=token)


def login(
    users: UserStore,
    sessions: SessionStore,
    email: str | None,
    password: str | None,
    previous_token: str | None = None,
) -> AuthResult:
    """Check credentials and open a session.

    Unknown email and wrong password both raise InvalidLogin with the same
    message, after the same amount of bcrypt work.
    """
    email = normalize_email(email)
    password = password or ""
    if not email or not password:
        raise ValidationError("Email and password are required.")

    user = authenticate_user(users, email, password)
    if user is None:
        logger.info("Failed login attempt")
        raise InvalidLogin()

    token = sessions.establish(user.id, user.role, previous_token)
    logger.info("Login user_id=%s", user.id)
    return AuthResult(user=public_view(user), token=token)


def logout(sessions: SessionStore, token: str | None, actor: Identity | None = None) -> None:
    """Destroy the session for token. Safe for unknown or missing tokens."""
    sessions.destroy(token)
    logger.info("Logout user_id=%s", actor.user_id if actor is not None else "-")


# ---------------------------------------------------------------------------
# Administration (manager only)
# ---------------------------------------------------------------------------


def list_users(users: UserStore, actor: Identity | None) -> list[PublicUser]:
    """All users, newest first, without password hashes."""
    authorize(actor, Capability.manager)
    return [public_view(u) for u in users.list_users()]


def get_user(users: UserStore, actor: Identity | None, user_id: str) -> PublicUser:
    authorize(actor, Capability.manager)
    user = users.find_by_id(user_id)
    if user is None:
        raise NotFound()
    return public_view(user)


def update_user(
    users: UserStore,
    sessions: SessionStore,
    actor: Identity | None,
    actor_token: str | None,
    user_id: str,
    name: str | None,
    email: str | None,
    role: str | None,
) -> PublicUser:
    """Replace a user's name, email and role.

    When the manager edits their own account, the acting session's cached
    role is refreshed in place, so a self-demotion takes effect on the very
    next request.
    """
    actor = authorize(actor, Capability.manager)
    get_user(users, actor, user_id)

    name = (name or "").strip()
    email = normalize_email(email)
    if not name or not email or role not in {r.value for r in Role}:
        raise ValidationError("Please enter valid values.")

    updated = users.update(user_id, name, email, role)
    if actor.user_id == user_id and actor_token:
        sessions.set_role(actor_token, updated.role)
    logger.info("Updated user_id=%s role=%s by=%s", user_id, updated.role.value, actor.user_id)
    return public_view(updated)


def delete_user(
    users: UserStore,
    sessions: SessionStore,
    actor: Identity | None,
    user_id: str,
) -> None:
    """Delete a user and every session bound to them.

    Refuses to delete the account bound to the acting session.
    """
    actor = authorize(actor, Capability.manager)
    if actor.user_id == user_id:
        raise SelfDeletion()
    users.delete(user_id)
    removed = sessions.destroy_user_sessions(user_id)
    logger.info("Deleted user_id=%s by=%s (sessions removed: %d)", user_id, actor.user_id, removed)
