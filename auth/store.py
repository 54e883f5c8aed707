"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; the _row_to_* functions are the mappers.
The authenticator, session manager and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  find_user() takes a column name from the caller. It is checked against
  _LOOKUP_COLUMNS before it reaches a query, so a login form can never pick
  an arbitrary column.

  replace_remember_token() is the single-use guarantee for remember-me
  tokens. The old row is deleted by (selector, hashed_validator) and the new
  row inserted inside one transaction; the delete must hit exactly one row.
  Two requests racing with the same cookie serialize on the write, and the
  loser's delete matches nothing, so at most one of them succeeds.

DB path: auth/sessiongate_auth.db unless settings.database_url overrides it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from auth.models import LoginAttempt, RememberToken, Role, User
from core.config import IDENTITY_FIELDS

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'sessiongate_auth.db'}"

# Columns a credentials mapping may be matched against.
_LOOKUP_COLUMNS = frozenset(IDENTITY_FIELDS)

# Columns update_user() may write.
_MUTABLE_USER_COLUMNS = frozenset(
    {
        "email",
        "username",
        "password_hash",
        "active",
        "banned",
        "status_message",
        "force_pass_reset",
        "reset_hash",
        "activate_hash",
        "last_login",
    }
)

_BOOL_COLUMNS = ("active", "banned", "force_pass_reset")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(30), unique=True),
    Column("password_hash", Text, nullable=False),
    Column("active", Integer, nullable=False, server_default="0"),
    Column("banned", Integer, nullable=False, server_default="0"),
    Column("status_message", String(255)),
    Column("force_pass_reset", Integer, nullable=False, server_default="0"),
    Column("reset_hash", String(255)),
    Column("activate_hash", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_roles = Table(
    "auth_roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("description", String(255), nullable=False, server_default=""),
)

_user_roles = Table(
    "auth_user_roles",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("role_id", Integer, ForeignKey("auth_roles.id", ondelete="CASCADE"), nullable=False),
    UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
)

_tokens = Table(
    "auth_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("selector", String(255), nullable=False, unique=True),
    Column("hashed_validator", String(255), nullable=False),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("expires", String(32), nullable=False),
)

_logins = Table(
    "auth_logins",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("login", String(255), nullable=False),
    Column("ip_address", String(255), nullable=False),
    Column("user_id", Integer),  # NULL for unknown identities
    Column("success", Integer, nullable=False),
    Column("info", String(255), nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _now_iso() -> str:
    return _now().isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, roles, remember-me tokens and login attempts.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create_user(User(email="a@example.com", password_hash=hash_password("secret"), active=True))
        user = store.find_user("email", "a@example.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # A plain in-memory DB is per-connection; pin one connection.
            engine_kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email or username is taken.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    username=user.username,
                    password_hash=user.password_hash,
                    active=1 if user.active else 0,
                    banned=1 if user.banned else 0,
                    status_message=user.status_message,
                    force_pass_reset=1 if user.force_pass_reset else 0,
                    reset_hash=user.reset_hash,
                    activate_hash=user.activate_hash,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_user(self, field: str, value: str) -> User | None:
        """Look up exactly one user whose field equals value.

        field must be one of the identity columns; anything else raises
        ValueError before a query is built.
        """
        if field not in _LOOKUP_COLUMNS:
            raise ValueError(f"Cannot look up users by {field!r}")
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c[field] == value)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable columns on an existing user.

        Unknown keys raise ValueError rather than being silently ignored.
        Boolean flags are stored as 0/1. Returns True if a row was updated.
        """
        unknown = set(fields) - _MUTABLE_USER_COLUMNS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return False
        for key in _BOOL_COLUMNS:
            if key in fields:
                fields[key] = 1 if fields[key] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def save_user(self, user: User) -> bool:
        """Persist every mutable field of an already-stored user."""
        if user.id is None:
            raise ValueError("user must be persisted before it can be saved")
        return self.update_user(
            user.id,
            email=user.email,
            username=user.username,
            password_hash=user.password_hash,
            active=user.active,
            banned=user.banned,
            status_message=user.status_message,
            force_pass_reset=user.force_pass_reset,
            reset_hash=user.reset_hash,
            activate_hash=user.activate_hash,
        )

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        """Insert a role and return its ID. Raises IntegrityError on a duplicate name."""
        with self.engine.connect() as conn:
            result = conn.execute(_roles.insert().values(name=role.name, description=role.description))
            conn.commit()
            return result.inserted_primary_key[0]

    def get_role(self, role: str | int) -> Role | None:
        """Look up a role by numeric ID or by name."""
        clause = _roles.c.id == role if isinstance(role, int) else _roles.c.name == role
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(clause)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def add_user_to_role(self, user_id: int, role_id: int) -> bool:
        """Grant role_id to user_id. Returns False if the membership already existed."""
        with self.engine.connect() as conn:
            existing = conn.execute(
                select(_user_roles.c.user_id).where(
                    (_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id)
                )
            ).fetchone()
            if existing is not None:
                return False
            conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id))
            conn.commit()
        return True

    def remove_user_from_role(self, user_id: int, role_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _user_roles.delete().where((_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id))
            )
            conn.commit()
        return result.rowcount > 0

    def get_roles_for_user(self, user_id: int) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _roles.select()
                .join(_user_roles, _user_roles.c.role_id == _roles.c.id)
                .where(_user_roles.c.user_id == user_id)
                .order_by(_roles.c.name)
            ).fetchall()
        return [_row_to_role(r) for r in rows]

    def user_has_role(self, user_id: int, role: str | int) -> bool:
        """Return True if user_id is a member of role (given by ID or name)."""
        clause = _roles.c.id == role if isinstance(role, int) else _roles.c.name == role
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_user_roles.c.user_id)
                .select_from(_user_roles.join(_roles, _user_roles.c.role_id == _roles.c.id))
                .where((_user_roles.c.user_id == user_id) & clause)
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Remember-me tokens
    # ------------------------------------------------------------------

    def create_remember_token(self, user_id: int, selector: str, hashed_validator: str, expires: datetime) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _tokens.insert().values(
                    selector=selector,
                    hashed_validator=hashed_validator,
                    user_id=user_id,
                    expires=expires.isoformat(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_remember_token(self, selector: str) -> RememberToken | None:
        """Return the live token for selector. Expired rows are never returned."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _tokens.select().where((_tokens.c.selector == selector) & (_tokens.c.expires > _now_iso()))
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    def replace_remember_token(
        self,
        user_id: int,
        old_selector: str,
        old_hashed_validator: str,
        new_selector: str,
        new_hashed_validator: str,
        expires: datetime,
    ) -> bool:
        """Atomically consume the old token and issue its replacement.

        Returns False, writing nothing, if the old (selector, validator) row
        was already consumed by a concurrent request.
        """
        with self.engine.begin() as conn:
            consumed = conn.execute(
                _tokens.delete().where(
                    (_tokens.c.selector == old_selector)
                    & (_tokens.c.hashed_validator == old_hashed_validator)
                    & (_tokens.c.user_id == user_id)
                )
            )
            if consumed.rowcount != 1:
                return False
            conn.execute(
                _tokens.insert().values(
                    selector=new_selector,
                    hashed_validator=new_hashed_validator,
                    user_id=user_id,
                    expires=expires.isoformat(),
                )
            )
        return True

    def purge_remember_tokens(self, user_id: int) -> int:
        """Delete every remember-me token owned by user_id (logout everywhere)."""
        with self.engine.connect() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def purge_expired_remember_tokens(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.expires <= _now_iso()))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Login attempts (append-only audit log)
    # ------------------------------------------------------------------

    def record_login_attempt(self, attempt: LoginAttempt) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _logins.insert().values(
                    login=attempt.login,
                    ip_address=attempt.ip_address,
                    user_id=attempt.user_id,
                    success=1 if attempt.success else 0,
                    info=attempt.info,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_login_attempts(self, login: str | None = None, limit: int = 100) -> list[LoginAttempt]:
        """Return recent attempts, newest first, optionally for one identity."""
        query = _logins.select()
        if login is not None:
            query = query.where(_logins.c.login == login)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_logins.c.id.desc()).limit(limit)).fetchall()
        return [_row_to_login_attempt(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def remember_expiry(seconds: int) -> datetime:
    """Return the UTC expiry for a remember-me token issued now."""
    return _now() + timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password_hash,
        active=bool(row.active),
        banned=bool(row.banned),
        status_message=row.status_message,
        force_pass_reset=bool(row.force_pass_reset),
        reset_hash=row.reset_hash,
        activate_hash=row.activate_hash,
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, description=row.description)


def _row_to_token(row) -> RememberToken:
    return RememberToken(
        id=row.id,
        selector=row.selector,
        hashed_validator=row.hashed_validator,
        user_id=row.user_id,
        expires=row.expires,
    )


def _row_to_login_attempt(row) -> LoginAttempt:
    return LoginAttempt(
        id=row.id,
        login=row.login,
        ip_address=row.ip_address,
        user_id=row.user_id,
        success=bool(row.success),
        info=row.info,
        created_at=row.created_at,
    )
