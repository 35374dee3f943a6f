"""
auth/sessions.py -- Server-side session store and session-cookie helpers.

A session is a row keyed by a digest of an opaque random token. The browser
holds the raw token in an httpOnly cookie; the server holds only
HMAC-SHA256(SECRET_KEY, token), so a copy of the sessions table cannot be
replayed as live cookies.

Lifecycle:
  establish()  -- issue a fresh token bound to {user_id, role}. Any token the
                  client already presented is destroyed first, so a login never
                  inherits a pre-existing session id (no fixation).
  resolve()    -- token -> SessionRecord, or None if missing/unknown/expired.
                  A successful resolve slides the idle expiry forward.
  set_role()   -- refresh the cached role without changing identity.
  destroy()    -- idempotent; unknown tokens are fine.

Expired rows are dropped lazily by resolve() and in bulk by purge_expired(),
which the API lifespan runs periodically.

The store may live in a different database from the users table; it is
built from SESSION_DATABASE_URL.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import Column, Float, MetaData, String, Table, text
from sqlalchemy.engine import Engine

from auth.models import Role, SessionRecord
from auth.store import make_engine
from core.config import get_settings

logger = logging.getLogger("useradmin.auth.sessions")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("user_id", String(32), nullable=False, index=True),
    Column("role", String(16), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", Float, nullable=False, index=True),  # epoch seconds
)


# ---------------------------------------------------------------------------
# Token helpers
# ---------------------------------------------------------------------------


def generate_session_token() -> str:
    """Return a new URL-safe token with 256 bits of entropy."""
    return secrets.token_urlsafe(32)


def hash_session_token(token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, token) as a hex string.

    Deterministic, so resolve() is a primary-key lookup.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        token.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for SessionRecord rows.

    Usage:
        sessions = SessionStore("sqlite:///useradmin.db")
        token = sessions.establish(user.id, user.role)
        record = sessions.resolve(token)
        sessions.destroy(token)
        sessions.close()
    """

    def __init__(
        self,
        db_url: str,
        idle_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine: Engine = make_engine(db_url)
        self.idle_seconds = idle_seconds or _settings.session_idle_seconds
        self._clock = clock
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception:
            logger.warning("Session store ping failed", exc_info=True)
            return False
        return True

    def establish(self, user_id: str, role: Role, previous_token: str | None = None) -> str:
        """Bind a new token to {user_id, role} and return the raw token.

        previous_token is whatever session cookie the client sent with the
        login/registration request; it is destroyed before the new one is
        issued.
        """
        if previous_token:
            self.destroy(previous_token)
        token = generate_session_token()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    token_hash=hash_session_token(token),
                    user_id=user_id,
                    role=Role(role).value,
                    created_at=datetime.now(timezone.utc).isoformat(),
                    expires_at=self._clock() + self.idle_seconds,
                )
            )
            conn.commit()
        return token

    def resolve(self, token: str | None) -> SessionRecord | None:
        """Return the live session for token, or None.

        Expired rows found here are deleted on the spot.
        """
        if not token:
            return None
        token_hash = hash_session_token(token)
        now = self._clock()
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
            if row is None:
                return None
            if row.expires_at <= now:
                conn.execute(_sessions.delete().where(_sessions.c.token_hash == token_hash))
                conn.commit()
                return None
            expires_at = now + self.idle_seconds
            conn.execute(
                _sessions.update().where(_sessions.c.token_hash == token_hash).values(expires_at=expires_at)
            )
            conn.commit()
        return SessionRecord(
            user_id=row.user_id,
            role=Role(row.role),
            created_at=row.created_at,
            expires_at=expires_at,
        )

    def set_role(self, token: str, role: Role) -> bool:
        """Update the cached role on a session. Returns False if the token is unknown."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where(_sessions.c.token_hash == hash_session_token(token))
                .values(role=Role(role).value)
            )
            conn.commit()
        return result.rowcount > 0

    def destroy(self, token: str | None) -> None:
        """Delete the session for token. Safe to call with any value."""
        if not token:
            return
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.token_hash == hash_session_token(token)))
            conn.commit()

    def destroy_user_sessions(self, user_id: str) -> int:
        """Delete every session bound to user_id. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def purge_expired(self) -> int:
        """Delete all sessions past their idle expiry. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= self._clock()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie.
    samesite="lax": not sent on cross-site POSTs.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    No max_age: the cookie lives for the browser session; the server-side
        idle timeout decides when the session actually ends.
    """
    response.set_cookie(
        _settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(_settings.session_cookie_name, httponly=True, samesite="lax")
