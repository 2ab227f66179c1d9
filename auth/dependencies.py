"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The only credential is the session cookie (settings.session_cookie_name). Its
value is an opaque id resolved server-side by AuthService.current_user().

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises NotAuthenticated (401).
require_verified_user() additionally refuses sessions that are still in a
    login continuation state (MFA enrollment or forced password change).
require_admin() wraps require_verified_user() and raises AuthorizationFailure (403).
require_permission(resource, action) checks the resolved permission matrix.

A successful lookup stores the raw session id on request.state.session_id.
The cookie-refresh middleware in api/main.py uses it to re-send the cookie so
its max_age slides together with the server-side expiry.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.errors import AuthorizationFailure, NotAuthenticated
from auth.models import User
from auth.permissions import has_permission
from core.config import get_settings


def session_id_from(request: Request) -> str | None:
    """Return the raw session id from the request cookie, if any."""
    return request.cookies.get(get_settings().session_cookie_name) or None


def client_ip(request: Request) -> str:
    """Best-effort client address for audit lines.

    X-Forwarded-For is only believed when TRUST_PROXY=true; otherwise any
    client could write an arbitrary address into the audit log.
    """
    if get_settings().trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For", "")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def try_get_current_user(request: Request) -> User | None:
    """Resolve the session cookie to a User. Never raises for a bad or expired cookie.

    The result is cached on request.state so stacked dependencies resolve the
    session (and slide its expiry) only once per request.
    """
    if hasattr(request.state, "current_user"):
        return request.state.current_user

    session_id = session_id_from(request)
    user = request.app.state.auth_service.current_user(session_id) if session_id else None
    request.state.current_user = user
    if user is not None:
        request.state.session_id = session_id
    return user


def get_current_user(request: Request) -> User:
    """Require a session. Raises NotAuthenticated (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise NotAuthenticated()
    return user


def is_verified(user: User) -> bool:
    """True once the principal has enrolled MFA and has no pending forced password change."""
    return user.mfa_enabled and not user.force_password_change


def require_verified_user(request: Request) -> User:
    """Require a session that has finished the login state machine.

    Sessions opened for MFA enrollment or a forced password change exist only
    so those two flows can be completed; they do not unlock anything else.
    """
    user = get_current_user(request)
    if user.force_password_change:
        raise AuthorizationFailure("You must change your password before continuing")
    if not user.mfa_enabled:
        raise AuthorizationFailure("MFA setup is required before you can continue")
    return user


def require_admin(request: Request) -> User:
    """Require an admin principal. 401 if unauthenticated, 403 if not admin.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        def route(user: User = Depends(require_admin)): ...
    """
    user = require_verified_user(request)
    if not user.is_admin:
        raise AuthorizationFailure()
    return user


def require_permission(resource: str, action: str) -> Callable[[Request], User]:
    """Build a dependency that requires `action` on `resource` in the caller's matrix.

        @router.get("/users")
        def route(user: User = Depends(require_permission("users", "view"))): ...
    """

    def dependency(request: Request) -> User:
        user = require_verified_user(request)
        matrix = request.app.state.auth_service.permissions_for(user)
        if not has_permission(matrix, resource, action):
            raise AuthorizationFailure(f"Permission denied: {resource}.{action}")
        return user

    return dependency
