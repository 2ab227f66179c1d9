"""
auth/sessions.py -- Server-side session persistence and the session cookie.

The client holds only an opaque random id (secrets.token_urlsafe(32)) in an
httpOnly cookie. The server stores HMAC-SHA256(SECRET_KEY, id) as the row key,
the same construction used for long-lived credentials: deterministic for O(1)
lookup, useless to anyone who reads the table without SECRET_KEY.

Lifetime: sliding. touch() pushes expires_at forward by
session_max_age_seconds on every authenticated request, and the API refreshes
the cookie's max_age in step. An expired row is deleted when it is next looked
up and get() returns None -- expiry means "not authenticated", never an error.

Enrollment tickets: a pending MFA secret lives in enrollment_tickets, keyed by
the same session key, with its own (short) expiry. Destroying a session
removes its ticket too.

Pattern: Repository (same shape as auth/store.py). Timestamps are epoch
seconds (REAL) so expiry comparisons are plain numeric comparisons in SQL.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.models import EnrollmentTicket, Session
from auth.store import DEFAULT_DB_URL, make_engine
from core.config import get_settings

logger = logging.getLogger("assetmis.auth.sessions")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("key", String(64), primary_key=True),  # HMAC-SHA256 hex of the raw id
    Column("user_id", Integer, nullable=False, index=True),
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False),
)

_tickets = Table(
    "enrollment_tickets",
    _metadata,
    Column("session_key", String(64), primary_key=True),
    Column("secret", Text, nullable=False),
    Column("expires_at", Float, nullable=False),
)


def session_key(session_id: str) -> str:
    """Return the storage key for a raw session id."""
    return hmac.new(_settings.secret_key.encode(), session_id.encode(), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for Session and EnrollmentTicket records.

    Usage:
        sessions = SessionStore()
        sid = sessions.create(user_id=7)      # raw id -> cookie
        session = sessions.get(sid)           # Session or None
        sessions.destroy(sid)
        sessions.close()

    clock is injectable so tests can step past expiry without sleeping.
    """

    def __init__(
        self,
        db_url: str = DEFAULT_DB_URL,
        max_age: int | None = None,
        enrollment_ttl: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine: Engine = make_engine(db_url)
        self.max_age = max_age if max_age is not None else _settings.session_max_age_seconds
        self.enrollment_ttl = enrollment_ttl if enrollment_ttl is not None else _settings.enrollment_ttl_seconds
        self._clock = clock
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create(self, user_id: int) -> str:
        """Open a session for user_id and return the raw id for the cookie."""
        session_id = secrets.token_urlsafe(32)
        now = self._clock()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    key=session_key(session_id),
                    user_id=user_id,
                    created_at=now,
                    expires_at=now + self.max_age,
                )
            )
            conn.commit()
        return session_id

    def get(self, session_id: str | None) -> Session | None:
        """Return the live session for session_id, or None if unknown or expired."""
        if not session_id:
            return None
        key = session_key(session_id)
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.key == key)).fetchone()
        if row is None:
            return None
        if row.expires_at <= self._clock():
            self._delete(key)
            return None
        return Session(key=row.key, user_id=row.user_id, created_at=row.created_at, expires_at=row.expires_at)

    def touch(self, session_id: str) -> None:
        """Slide the expiry of a live session forward by max_age."""
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.update()
                .where(_sessions.c.key == session_key(session_id))
                .values(expires_at=self._clock() + self.max_age)
            )
            conn.commit()

    def destroy(self, session_id: str) -> bool:
        """Remove a session and any enrollment ticket it holds. Returns True if a session existed."""
        return self._delete(session_key(session_id))

    def destroy_all_for_user(self, user_id: int, keep_session_id: str | None = None) -> int:
        """Remove every session of user_id except keep_session_id. Returns the number removed."""
        keep = session_key(keep_session_id) if keep_session_id else None
        with self.engine.connect() as conn:
            query = _sessions.select().where(_sessions.c.user_id == user_id)
            keys = [r.key for r in conn.execute(query).fetchall() if r.key != keep]
            if keys:
                conn.execute(_tickets.delete().where(_tickets.c.session_key.in_(keys)))
                conn.execute(_sessions.delete().where(_sessions.c.key.in_(keys)))
            conn.commit()
        return len(keys)

    def purge_expired(self) -> int:
        """Delete expired sessions and tickets. Returns the number of sessions removed."""
        now = self._clock()
        with self.engine.connect() as conn:
            expired = [
                r.key for r in conn.execute(_sessions.select().where(_sessions.c.expires_at <= now)).fetchall()
            ]
            if expired:
                conn.execute(_tickets.delete().where(_tickets.c.session_key.in_(expired)))
                conn.execute(_sessions.delete().where(_sessions.c.key.in_(expired)))
            conn.execute(_tickets.delete().where(_tickets.c.expires_at <= now))
            conn.commit()
        if expired:
            logger.info("Purged %d expired session(s)", len(expired))
        return len(expired)

    def _delete(self, key: str) -> bool:
        with self.engine.connect() as conn:
            conn.execute(_tickets.delete().where(_tickets.c.session_key == key))
            result = conn.execute(_sessions.delete().where(_sessions.c.key == key))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Enrollment tickets
    # ------------------------------------------------------------------

    def put_enrollment_secret(self, session_id: str, secret: str) -> EnrollmentTicket:
        """Hold secret for session_id until it is confirmed. Replaces any earlier ticket."""
        ticket = EnrollmentTicket(
            session_key=session_key(session_id),
            secret=secret,
            expires_at=self._clock() + self.enrollment_ttl,
        )
        with self.engine.connect() as conn:
            conn.execute(_tickets.delete().where(_tickets.c.session_key == ticket.session_key))
            conn.execute(
                _tickets.insert().values(
                    session_key=ticket.session_key,
                    secret=ticket.secret,
                    expires_at=ticket.expires_at,
                )
            )
            conn.commit()
        return ticket

    def get_enrollment_secret(self, session_id: str) -> str | None:
        """Return the pending secret for session_id, or None if absent or expired."""
        key = session_key(session_id)
        with self.engine.connect() as conn:
            row = conn.execute(_tickets.select().where(_tickets.c.session_key == key)).fetchone()
        if row is None:
            return None
        if row.expires_at <= self._clock():
            self.clear_enrollment_secret(session_id)
            return None
        return row.secret

    def clear_enrollment_secret(self, session_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_tickets.delete().where(_tickets.c.session_key == session_key(session_id)))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, session_id: str) -> None:
    """Write the session id as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for the
        state-changing auth endpoints.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: the sliding session lifetime; re-sent on every authenticated
        request so cookie and server-side expiry move together.
    """
    response.set_cookie(
        _settings.session_cookie_name,
        value=session_id,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_max_age_seconds,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(
        _settings.session_cookie_name,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
    )
