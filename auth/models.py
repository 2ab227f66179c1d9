"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; stores, the service and the routes do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """A principal: one local account of the asset management application.

    password holds "<hex key>.<hex salt>" for hashed credentials. A value
    without the "." separator is a legacy plaintext password; it is replaced by
    a hash the first time it is used successfully (see AuthService.authenticate).

    is_admin is always a real bool here. The store coerces the truthy encodings
    found in older rows (1, "true") when it maps a row, so no caller repeats
    that check.

    mfa_secret is only written once a code generated from it has verified;
    mfa_enabled is never True while mfa_secret is None.
    """

    username: str
    password: str
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    department: str | None = None
    is_admin: bool = False
    role_id: int | None = None
    mfa_enabled: bool = False
    mfa_secret: str | None = None
    force_password_change: bool = False
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class Session:
    """A server-side login session.

    key is HMAC-SHA256(SECRET_KEY, raw session id). The raw id only ever lives
    in the client's cookie, so a leaked sessions table cannot be replayed.
    """

    key: str
    user_id: int
    created_at: float  # epoch seconds
    expires_at: float  # epoch seconds, pushed forward on every authenticated request


@dataclass
class EnrollmentTicket:
    """A generated-but-unconfirmed MFA secret, bound to one session.

    Lives in its own table with its own expiry instead of on the session row.
    Removed as soon as the secret is persisted to the principal.
    """

    session_key: str
    secret: str
    expires_at: float  # epoch seconds


@dataclass
class Role:
    """A named permission template. Non-admin principals take their matrix from here."""

    id: int
    name: str
    description: str
    permissions: dict[str, dict[str, bool]] = field(default_factory=dict)
