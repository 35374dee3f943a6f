"""
auth/errors.py -- Error taxonomy for the auth core.

Every recoverable failure the stores and account operations can produce is
one of these classes. The web layer decides how each one is surfaced
(form re-render, redirect, 400, 403); see web/errors.py.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. message is safe to show to the end user."""

    default_message = "Request failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Client input fails a field constraint. Nothing was written."""

    default_message = "Please enter valid values."


class InvalidLogin(ValidationError):
    """Unknown email or wrong password. The two cases share one message."""

    default_message = "Invalid login."


class DuplicateEmail(AuthError):
    """The email already belongs to another user."""

    default_message = "That email is already in use."


class NotFound(AuthError):
    """No user with the requested id."""

    default_message = "User not found."


class Unauthenticated(AuthError):
    """No live session. Navigational, not an error condition."""

    default_message = "Authentication required."


class Forbidden(AuthError):
    """Authenticated, but the cached role does not grant the operation."""

    default_message = "Forbidden: managers only"


class SelfDeletion(AuthError):
    """A manager tried to delete the account bound to their own session."""

    default_message = "You can't delete your own account while logged in."
