"""
auth/store.py -- SQLAlchemy Core persistence layer for principals.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Route, service and
dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  update_user() only accepts column names from _MUTABLE_FIELDS, so keyword
  arguments can never smuggle in an arbitrary column.

Admin flag:
  is_admin is declared Integer, but rows written by older tooling may hold
  "true" or 1 (SQLite does not enforce column affinity strictly).
  _row_to_user runs coerce_admin_flag() once, so every User leaving this
  module carries a canonical bool.

DB path: auth/assetmis_auth.db by default. SessionStore (auth/sessions.py)
uses the same file with its own tables.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import User
from auth.permissions import coerce_admin_flag

DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'assetmis_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # "<hex key>.<hex salt>" or legacy plaintext
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("email", String(255)),
    Column("department", String(255)),
    Column("is_admin", Integer, nullable=False, server_default="0"),
    Column("role_id", Integer),
    Column("mfa_enabled", Integer, nullable=False, server_default="0"),
    Column("mfa_secret", Text),  # base32, NULL until enrollment is confirmed
    Column("force_password_change", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_BOOL_FIELDS = {"is_admin", "mfa_enabled", "force_password_change"}
_MUTABLE_FIELDS = {
    "password",
    "first_name",
    "last_name",
    "email",
    "department",
    "is_admin",
    "role_id",
    "mfa_enabled",
    "mfa_secret",
    "force_password_change",
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite settings both auth stores need."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(username="admin", password=hash_password("secret"), is_admin=True))
        user = store.get_by_username("admin")
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def has_users(self) -> bool:
        """Return True if at least one user record exists.

        Used by the setup gate middleware and POST /api/setup/admin to detect
        first-run state.
        """
        return self.count_users() > 0

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        Callers check get_by_username() first for a friendly 400, and still
        catch IntegrityError for the race where two requests pass that check.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    password=user.password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    email=user.email,
                    department=user.department,
                    is_admin=1 if user.is_admin else 0,
                    role_id=user.role_id,
                    mfa_enabled=1 if user.mfa_enabled else 0,
                    mfa_secret=user.mfa_secret,
                    force_password_change=1 if user.force_password_change else 0,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: see _MUTABLE_FIELDS. Boolean fields are passed as bool
        and converted to 0/1 here. Unknown keys raise ValueError rather than
        being silently dropped.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return False
        values = {k: (1 if v else 0) if k in _BOOL_FIELDS else v for k, v in fields.items()}
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user.

        Called when a login reaches a state that establishes a session.
        """
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        password=row.password,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email,
        department=row.department,
        is_admin=coerce_admin_flag(row.is_admin),
        role_id=row.role_id,
        mfa_enabled=bool(row.mfa_enabled) and bool(row.mfa_secret),
        mfa_secret=row.mfa_secret,
        force_password_change=bool(row.force_password_change),
        created_at=row.created_at,
        last_login=row.last_login,
    )
