"""
auth/store.py -- SQLAlchemy Core persistence layer for user identity records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and operation code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is enforced by a UNIQUE constraint on users.email. The
  find_by_email() pre-checks in auth/accounts.py give friendly messages, but
  only the constraint is race-safe: a concurrent duplicate insert surfaces as
  IntegrityError, which this module converts to DuplicateEmail.

Bootstrap manager:
  bootstrap_claim is a single-row table (CHECK id = 1). The first registration
  on an empty store inserts that row in the same transaction as the user, so
  the claim exists exactly when a user was created under it. A concurrent
  first registration finds the row taken (or hits its primary key and
  retries) and gets the ordinary role. The row is never removed, so deleting
  the first manager does not reopen the elevation.

DB path default: useradmin.db at the project root (see core/config.py).

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    literal,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateEmail, NotFound, ValidationError
from auth.models import Role, User

logger = logging.getLogger("useradmin.auth.store")

NAME_MAX_LENGTH = 60
EMAIL_MAX_LENGTH = 120

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(NAME_MAX_LENGTH), nullable=False),
    Column("email", String(EMAIL_MAX_LENGTH), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(16), nullable=False, server_default=Role.user.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_bootstrap_claim = Table(
    "bootstrap_claim",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("email", String(EMAIL_MAX_LENGTH), nullable=False),
    Column("claimed_at", String(32), nullable=False),
    CheckConstraint("id = 1", name="single_row"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite settings both stores rely on."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def normalize_profile(name: str | None, email: str | None, role) -> tuple[str, str, Role]:
    """Trim, lower-case and bound-check the mutable user fields.

    Returns (name, email, role) ready for storage. Raises ValidationError
    naming the first field that violates its constraint.
    """
    name = (name or "").strip()
    email = normalize_email(email)
    if not name:
        raise ValidationError("Name is required.")
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(f"Name must be {NAME_MAX_LENGTH} characters or fewer.")
    if not email:
        raise ValidationError("Email is required.")
    if len(email) > EMAIL_MAX_LENGTH:
        raise ValidationError(f"Email must be {EMAIL_MAX_LENGTH} characters or fewer.")
    try:
        role = Role(role)
    except ValueError:
        raise ValidationError("Role must be 'user' or 'manager'.") from None
    return name, email, role


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///useradmin.db")
        user = store.create("Ada", "ada@example.com", hash_password("secret123"), Role.manager)
        store.find_by_email("ADA@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception:
            logger.warning("User store ping failed", exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def count_all(self) -> int:
        """Return the number of user records."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email, ignoring case and surrounding whitespace."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, name: str, email: str, password_hash: str, role: Role = Role.user) -> User:
        """Insert a new user and return the stored record.

        Raises ValidationError for a field constraint violation and
        DuplicateEmail if the email is already present (including when a
        concurrent insert wins the race on the UNIQUE index).
        """
        name, email, role = normalize_profile(name, email, role)
        if not password_hash:
            raise ValidationError("Password is required.")
        now = _now_iso()
        user_id = uuid.uuid4().hex
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        name=name,
                        email=email,
                        password_hash=password_hash,
                        role=role.value,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmail("That email is already registered.") from exc
        return User(
            id=user_id,
            name=name,
            email=email,
            password_hash=password_hash,
            role=role,
            created_at=now,
            updated_at=now,
        )

    def create_registered(self, name: str, email: str, password_hash: str) -> User:
        """Create a self-registered user, electing the bootstrap manager.

        The very first registration on an empty store becomes a manager;
        every other registration is an ordinary user. The claim row and the
        user row are written in one transaction, so a registration that fails
        for any reason leaves the election open, and two concurrent first
        registrations cannot both be elected.
        """
        name, email, _ = normalize_profile(name, email, Role.user)
        if not password_hash:
            raise ValidationError("Password is required.")
        try:
            user = self._insert_registered(name, email, password_hash)
        except IntegrityError as exc:
            if self.find_by_email(email) is not None:
                raise DuplicateEmail("That email is already registered.") from exc
            # Lost the claim row to a concurrent first registration. The claim
            # is committed now, so the retry inserts an ordinary user.
            try:
                user = self._insert_registered(name, email, password_hash)
            except IntegrityError as retry_exc:
                raise DuplicateEmail("That email is already registered.") from retry_exc
        if user.role is Role.manager:
            logger.info("Bootstrap manager elected: user_id=%s", user.id)
        return user

    def update(self, user_id: str, name: str, email: str, role) -> User:
        """Replace name, email and role on an existing user.

        Raises NotFound if user_id is absent, DuplicateEmail if the new email
        belongs to a different user, ValidationError for bad field values.
        """
        name, email, role = normalize_profile(name, email, role)
        owner = self.find_by_email(email)
        if owner is not None and owner.id != user_id:
            raise DuplicateEmail()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.update()
                    .where(_users.c.id == user_id)
                    .values(name=name, email=email, role=role.value, updated_at=_now_iso())
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmail() from exc
        if result.rowcount == 0:
            raise NotFound()
        updated = self.find_by_id(user_id)
        if updated is None:
            # Deleted between the UPDATE and this read.
            raise NotFound()
        return updated

    def delete(self, user_id: str) -> None:
        """Permanently delete a user record. Raises NotFound if absent.

        Who may delete whom is the caller's decision (see auth/accounts.py).
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        if result.rowcount == 0:
            raise NotFound()

    # ------------------------------------------------------------------
    # Bootstrap claim
    # ------------------------------------------------------------------

    def _insert_registered(self, name: str, email: str, password_hash: str) -> User:
        """Claim the manager slot if it is open, then insert the user.

        The claim is a conditional INSERT ... SELECT that only writes a row
        while both bootstrap_claim and users are empty. It commits or rolls
        back together with the user row.
        """
        now = _now_iso()
        user_id = uuid.uuid4().hex
        open_slot = select(literal(1), literal(email), literal(now)).where(
            ~select(_bootstrap_claim.c.id).correlate(None).exists(),
            ~select(_users.c.id).correlate(None).exists(),
        )
        with self.engine.begin() as conn:
            claim = conn.execute(
                _bootstrap_claim.insert().from_select(["id", "email", "claimed_at"], open_slot)
            )
            role = Role.manager if claim.rowcount == 1 else Role.user
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    name=name,
                    email=email,
                    password_hash=password_hash,
                    role=role.value,
                    created_at=now,
                    updated_at=now,
                )
            )
        return User(
            id=user_id,
            name=name,
            email=email,
            password_hash=password_hash,
            role=role,
            created_at=now,
            updated_at=now,
        )

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
