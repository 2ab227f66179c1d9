"""
auth/service.py -- The login / MFA / password-change state machine.

    ANONYMOUS --(POST /login)--> CREDENTIALS_PENDING --+--> MFA_REQUIRED --(POST /mfa/verify)--> AUTHENTICATED
                                                       +--> PASSWORD_CHANGE_REQUIRED  (session opened)
                                                       +--> MFA_SETUP_REQUIRED        (session opened)

After the credential check the branches are tried in strict priority order:

  1. mfa_enabled and mfa_secret -> MFA_REQUIRED. No session yet and no
     permission matrix: the caller is not logged in until a code verifies.
  2. force_password_change      -> PASSWORD_CHANGE_REQUIRED. A session is opened
     because the change-password endpoint requires one.
  3. otherwise                  -> MFA_SETUP_REQUIRED. Session opened, matrix
     returned, client must enroll before anything else. Enrollment is
     mandatory: there is no path that opens a session for a principal without
     MFA and calls it AUTHENTICATED.

Every login attempt first destroys the caller's current session (if any), so
between POST /login and a successful POST /mfa/verify the caller is anonymous.

Failures raise auth.errors.AuthError subclasses; api/main.py renders them.
Invalid credentials are a LoginState rather than an exception so the route can
write the failed_login audit line before answering 401.

The service is synchronous on purpose. The KDF and TOTP work is CPU-bound and
the routes that call into it are plain `def` handlers, which Starlette runs on
its worker thread pool instead of the event loop.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import (
    AuthenticationFailure,
    Conflict,
    InternalFailure,
    MfaVerificationFailure,
    NotFound,
    TooManyAttempts,
    ValidationFailure,
)
from auth.models import User
from auth.passwords import DUMMY_HASH, hash_password, is_legacy_plaintext, verify_password
from auth.permissions import PermissionMatrix, permissions_for_user
from auth.roles import RoleRegistry
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.throttle import FailureThrottle
from auth.totp import generate_secret, is_well_formed, render_qr_code, verify_code

logger = logging.getLogger("assetmis.auth")


class LoginState(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    MFA_REQUIRED = "mfa_required"
    PASSWORD_CHANGE_REQUIRED = "password_change_required"
    MFA_SETUP_REQUIRED = "mfa_setup_required"
    AUTHENTICATED = "authenticated"


@dataclass
class LoginResult:
    state: LoginState
    user: User | None = None
    session_id: str | None = None  # set only for states that open a session
    permissions: PermissionMatrix | None = None


@dataclass(frozen=True)
class EnrollmentStart:
    secret: str
    otpauth_url: str
    qr_code: str  # PNG data URI


class AuthService:
    """Composes the user store, session store, role registry and throttle.

    Usage:
        service = AuthService(UserStore(), SessionStore(), RoleRegistry(), FailureThrottle(5, 30, 900))
        result = service.begin_login("alice", "password123")
        if result.state is LoginState.MFA_REQUIRED:
            result = service.verify_mfa_login(result.user.id, "123456")
    """

    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        roles: RoleRegistry,
        throttle: FailureThrottle,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.roles = roles
        self.throttle = throttle

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def permissions_for(self, user: User) -> PermissionMatrix:
        return permissions_for_user(user, self.roles)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def open_session(self, user: User, replaces: str | None = None) -> str:
        """Create a session for user, dropping the caller's previous one. Returns the raw id.

        Raises InternalFailure if the session cannot be persisted: the client
        must not believe it is logged in when it is not.
        """
        try:
            if replaces:
                self.sessions.destroy(replaces)
            session_id = self.sessions.create(user.id)
            self.users.update_last_login(user.id)
        except SQLAlchemyError as exc:
            logger.exception("Could not persist session for user id=%s", user.id)
            raise InternalFailure("Could not establish a session. Please try again.") from exc
        return session_id

    def current_user(self, session_id: str | None) -> User | None:
        """Resolve a session cookie to its principal, sliding the session's expiry.

        Returns None for a missing, unknown or expired session, and for a
        session whose principal no longer exists (that session is removed).
        """
        session = self.sessions.get(session_id)
        if session is None:
            return None
        user = self.users.get_by_id(session.user_id)
        if user is None:
            logger.info("Session references missing user id=%s; destroying it", session.user_id)
            self.sessions.destroy(session_id)
            return None
        self.sessions.touch(session_id)
        return user

    def end_session(self, session_id: str | None) -> None:
        """Destroy a session. Store failures are logged, never raised: logout always succeeds."""
        if not session_id:
            return
        try:
            self.sessions.destroy(session_id)
        except SQLAlchemyError:
            logger.exception("Session destroy failed during logout; continuing")

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def _password_matches(self, user: User, password: str) -> bool:
        if is_legacy_plaintext(user.password):
            return hmac.compare_digest(user.password.encode("utf-8"), password.encode("utf-8"))
        return verify_password(password, user.password)

    def authenticate(self, username: str, password: str) -> User | None:
        """Check a username/password pair. Returns the User or None; never says which half was wrong.

        Unknown usernames still pay for one KDF run against DUMMY_HASH so
        response time does not reveal whether the account exists.

        A legacy plaintext credential that matches is upgraded to a hash on the
        spot, so the plaintext does not outlive its first successful use.
        """
        key = f"user:{username}"
        retry_after = self.throttle.retry_after(key)
        if retry_after:
            raise TooManyAttempts(retry_after)

        user = self.users.get_by_username(username)
        if user is None:
            verify_password(password, DUMMY_HASH)
            self.throttle.record_failure(key)
            return None

        if not self._password_matches(user, password):
            self.throttle.record_failure(key)
            return None

        if is_legacy_plaintext(user.password):
            logger.warning("Upgrading legacy plaintext password for user %s", user.username)
            user.password = hash_password(password)
            self.users.update_user(user.id, password=user.password)

        self.throttle.reset(key)
        return user

    # ------------------------------------------------------------------
    # Login state machine
    # ------------------------------------------------------------------

    def begin_login(self, username: str, password: str, current_session_id: str | None = None) -> LoginResult:
        """Run the credential step and pick the continuation state."""
        self.end_session(current_session_id)

        user = self.authenticate(username, password)
        if user is None:
            return LoginResult(LoginState.INVALID_CREDENTIALS)

        if user.mfa_enabled and user.mfa_secret:
            logger.info("MFA required for user %s", user.username)
            return LoginResult(LoginState.MFA_REQUIRED, user=user)

        if user.force_password_change:
            logger.info("Password change required for user %s", user.username)
            return LoginResult(LoginState.PASSWORD_CHANGE_REQUIRED, user=user, session_id=self.open_session(user))

        logger.info("MFA not enrolled for user %s; requiring setup", user.username)
        return LoginResult(
            LoginState.MFA_SETUP_REQUIRED,
            user=user,
            session_id=self.open_session(user),
            permissions=self.permissions_for(user),
        )

    def verify_mfa_login(self, user_id: int, code: str, current_session_id: str | None = None) -> LoginResult:
        """Second login step: the only place an MFA login becomes a real session.

        The principal is re-read from the store; nothing the client sent about
        roles or admin status is trusted.
        """
        key = f"mfa:{user_id}"
        retry_after = self.throttle.retry_after(key)
        if retry_after:
            raise TooManyAttempts(retry_after)

        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFound()
        if not (user.mfa_enabled and user.mfa_secret):
            raise ValidationFailure("MFA is not enabled for this user")

        if not verify_code(user.mfa_secret, code):
            self.throttle.record_failure(key)
            logger.info("MFA verification failed for user %s", user.username)
            raise MfaVerificationFailure()
        self.throttle.reset(key)

        try:
            session_id = self.open_session(user, replaces=current_session_id)
        except InternalFailure as exc:
            raise InternalFailure("Session error after verification") from exc
        logger.info("MFA verification successful for user %s", user.username)
        return LoginResult(
            LoginState.AUTHENTICATED,
            user=user,
            session_id=session_id,
            permissions=self.permissions_for(user),
        )

    # ------------------------------------------------------------------
    # MFA enrollment and removal
    # ------------------------------------------------------------------

    def start_enrollment(self, session_id: str, user: User) -> EnrollmentStart:
        """Generate a secret and QR code. The secret is held on an enrollment ticket only."""
        totp_secret = generate_secret(user.username)
        self.sessions.put_enrollment_secret(session_id, totp_secret.secret)
        return EnrollmentStart(
            secret=totp_secret.secret,
            otpauth_url=totp_secret.otpauth_url,
            qr_code=render_qr_code(totp_secret.otpauth_url),
        )

    def confirm_enrollment(self, session_id: str, user: User, code: str) -> None:
        """Persist the pending secret once a code generated from it verifies.

        On any failure the principal is left untouched and the ticket kept, so
        the user can retry with the next code.
        """
        secret = self.sessions.get_enrollment_secret(session_id)
        if secret is None:
            raise ValidationFailure("MFA setup not initiated. Please scan the QR code first.")
        if not is_well_formed(code):
            raise ValidationFailure("Please enter a valid 6-digit code from your authenticator app")

        key = f"mfa:{user.id}"
        retry_after = self.throttle.retry_after(key)
        if retry_after:
            raise TooManyAttempts(retry_after)
        if not verify_code(secret, code):
            self.throttle.record_failure(key)
            raise MfaVerificationFailure()
        self.throttle.reset(key)

        self.users.update_user(user.id, mfa_secret=secret, mfa_enabled=True)
        self.sessions.clear_enrollment_secret(session_id)
        logger.info("MFA enabled for user %s", user.username)

    def disable_mfa(self, user: User, code: str) -> None:
        """Self-service removal; requires a currently valid code."""
        fresh = self.users.get_by_id(user.id)
        if fresh is None:
            raise NotFound()
        if not (fresh.mfa_enabled and fresh.mfa_secret):
            raise ValidationFailure("MFA is not enabled")

        key = f"mfa:{fresh.id}"
        retry_after = self.throttle.retry_after(key)
        if retry_after:
            raise TooManyAttempts(retry_after)
        if not verify_code(fresh.mfa_secret, code):
            self.throttle.record_failure(key)
            raise MfaVerificationFailure("Invalid verification code")
        self.throttle.reset(key)

        self.users.update_user(fresh.id, mfa_secret=None, mfa_enabled=False)
        logger.info("MFA disabled by user %s", fresh.username)

    def admin_disable_mfa(self, admin: User, target_id: int) -> User:
        """Admin-forced removal; no code required. Caller has already checked admin privilege."""
        target = self.users.get_by_id(target_id)
        if target is None:
            raise NotFound()
        if not target.mfa_enabled:
            raise ValidationFailure("MFA is not enabled for this user")
        self.users.update_user(target.id, mfa_secret=None, mfa_enabled=False)
        logger.info("Admin %s disabled MFA for user %s", admin.username, target.username)
        return target

    def mfa_enabled(self, user: User) -> bool:
        fresh = self.users.get_by_id(user.id)
        return bool(fresh and fresh.mfa_enabled)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def change_password(
        self,
        user: User,
        session_id: str | None,
        current_password: str | None,
        new_password: str,
        force_change: bool = False,
    ) -> None:
        """Replace the caller's password.

        force_change skips the current-password check, but only while the
        principal actually carries force_password_change. Otherwise the
        current password must verify. Other sessions of the principal are
        revoked; the caller's own session survives.
        """
        if not new_password or not new_password.strip():
            raise ValidationFailure("New password is required")
        fresh = self.users.get_by_id(user.id)
        if fresh is None:
            raise NotFound()

        forced = force_change and fresh.force_password_change
        if not forced:
            if not current_password or not current_password.strip():
                raise ValidationFailure("Current password is required")
            if not self._password_matches(fresh, current_password):
                raise AuthenticationFailure("Current password is incorrect")

        self.users.update_user(fresh.id, password=hash_password(new_password), force_password_change=False)
        self.sessions.destroy_all_for_user(fresh.id, keep_session_id=session_id)
        logger.info("User %s changed their password (forced=%s)", fresh.username, forced)

    def admin_reset_password(self, admin: User, target_id: int, new_password: str, force_change: bool) -> User:
        """Set another principal's password; optionally force a change at next login."""
        if not new_password or not new_password.strip():
            raise ValidationFailure("Password is required")
        target = self.users.get_by_id(target_id)
        if target is None:
            raise NotFound()
        self.users.update_user(target.id, password=hash_password(new_password), force_password_change=force_change)
        self.sessions.destroy_all_for_user(target.id)
        logger.info(
            "Admin %s reset password for user %s. Force change: %s", admin.username, target.username, force_change
        )
        return target

    # ------------------------------------------------------------------
    # Account creation
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
        department: str | None = None,
        is_admin: bool = False,
        role_id: int | None = None,
        created_by_admin: bool = False,
    ) -> User:
        """Create a principal. is_admin and role_id are only honoured when an admin creates the account."""
        if self.users.get_by_username(username) is not None:
            raise Conflict()
        new_user = User(
            username=username,
            password=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            email=email,
            department=department,
            is_admin=is_admin and created_by_admin,
            role_id=role_id if created_by_admin else None,
        )
        try:
            user_id = self.users.create_user(new_user)
        except IntegrityError as exc:
            raise Conflict() from exc
        logger.info("Registered user %s (admin=%s)", username, new_user.is_admin)
        return self._reload(user_id)

    def bootstrap_admin(
        self,
        username: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
        department: str | None = None,
    ) -> User:
        """Create the first administrator. Refused once any principal exists."""
        if self.users.has_users():
            raise ValidationFailure("Setup has already been completed")
        admin = User(
            username=username,
            password=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            email=email,
            department=department,
            is_admin=True,
        )
        try:
            user_id = self.users.create_user(admin)
        except IntegrityError as exc:
            # A concurrent request created the first user between the check and the insert.
            raise ValidationFailure("Setup has already been completed") from exc
        logger.info("Initial admin account %s created", username)
        return self._reload(user_id)

    def _reload(self, user_id: int) -> User:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise InternalFailure("User not found after write.")
        return user
