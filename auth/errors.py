"""
auth/errors.py -- Typed failures raised by the auth service.

Every failure the login / MFA / password flows can produce is one of these.
They never escape a request: api/main.py registers a single exception handler
that turns any AuthError into {"message": ..., "code": ...} with the class's
status code. Multi-step continuations (MFA required, password change required,
MFA setup required) are NOT errors -- see auth.service.LoginState.

Messages are written for end users. Anything that could help an attacker
(which half of a credential was wrong, whether a username exists) stays out.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Subclasses fix status_code and code; message may be overridden."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class AuthenticationFailure(AuthError):
    status_code = 401
    code = "bad_credentials"
    message = "Invalid username or password"


class NotAuthenticated(AuthError):
    status_code = 401
    code = "not_authenticated"
    message = "Not authenticated"


class MfaVerificationFailure(AuthError):
    status_code = 400
    code = "invalid_mfa_code"
    message = "Invalid verification code. Please check your authenticator app and try again."


class AuthorizationFailure(AuthError):
    status_code = 403
    code = "forbidden"
    message = "Admin privileges required"


class ValidationFailure(AuthError):
    status_code = 400
    code = "validation_error"
    message = "Request validation failed."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    message = "User not found"


class Conflict(AuthError):
    status_code = 400
    code = "username_taken"
    message = "Username already exists"


class TooManyAttempts(AuthError):
    """Raised while a username or user id is locked out after repeated failures."""

    status_code = 429
    code = "too_many_attempts"
    message = "Too many failed attempts. Please wait before trying again."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class InternalFailure(AuthError):
    status_code = 500
    code = "internal_error"
    message = "An unexpected error occurred."
