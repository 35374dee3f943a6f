"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
operations in auth/accounts.py do the work.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """The only two authorization labels. Compared by value, never by raw string."""

    user = "user"
    manager = "manager"


@dataclass
class User:
    """A stored identity record.

    email is always trimmed and lower-cased before it reaches the store, so
    uniqueness on the column is uniqueness ignoring case.

    password_hash is the bcrypt output from auth.passwords.hash_password();
    the plaintext never leaves the request that submitted it.
    """

    name: str
    email: str
    password_hash: str
    role: Role = Role.user
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class PublicUser:
    """A User with the password hash projected out. Safe to hand to templates."""

    id: str
    name: str
    email: str
    role: Role
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class Identity:
    """Who a request acts as: the user id and role cached in its session."""

    user_id: str
    role: Role


@dataclass(frozen=True)
class SessionRecord:
    """Server-side state bound to one session cookie.

    role is a cached copy of the user's role taken when the session was
    established (or explicitly refreshed). It can drift from the user record
    if the role changes through another session.
    """

    user_id: str
    role: Role
    created_at: str
    expires_at: float
