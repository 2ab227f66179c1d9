"""
api/routes/auth.py -- Registration, login, logout and the caller's own account.

Routes:
  POST /api/register                -- create an account (201)
  POST /api/login                   -- password step; answers with a LoginState-specific body
  POST /api/logout                  -- destroy the session; always 200
  GET  /api/user                    -- current profile + permission matrix (requires session)
  GET  /api/me                      -- alias of /api/user
  POST /api/user/change-password    -- forced or voluntary password change (requires session)

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT) and per username
      (auth/throttle.py, inside AuthService.authenticate).
  Unknown username and wrong password produce the same 401 body.
  Cache-Control: no-store on every response that carries a session cookie.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import LOGIN_LIMIT, limiter
from api.models import (
    ChangePasswordRequest,
    LoginRequest,
    MessageResponse,
    MfaRequiredResponse,
    MfaSetupRequiredResponse,
    PasswordChangeRequiredResponse,
    RegisterRequest,
    SuccessResponse,
    UserProfile,
)
from auth import audit
from auth.dependencies import client_ip, get_current_user, is_verified, session_id_from, try_get_current_user
from auth.errors import AuthenticationFailure
from auth.models import User
from auth.service import AuthService, LoginState
from auth.sessions import clear_session_cookie, set_session_cookie

logger = logging.getLogger("assetmis.api.auth")

# Auth policy:
# - POST /api/register:              public; isAdmin/roleId honoured only for a verified admin caller
# - POST /api/login:                 public
# - POST /api/logout:                public; ends whatever session the cookie names
# - GET  /api/user, /api/me:         requires session (get_current_user)
# - POST /api/user/change-password:  requires session (get_current_user); continuation sessions allowed
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/register", status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account.

    An anonymous caller is logged into the new account; the session is in the
    MFA-enrollment state like any other first login. A verified admin creating
    an account for someone else keeps their own session.
    """
    service: AuthService = request.app.state.auth_service
    caller = try_get_current_user(request)
    created_by_admin = caller is not None and caller.is_admin and is_verified(caller)

    user = service.register(
        username=body.username,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        department=body.department,
        is_admin=body.is_admin,
        role_id=body.role_id,
        created_by_admin=created_by_admin,
    )

    resp = JSONResponse(status_code=201, content=UserProfile.from_user(user).model_dump(by_alias=True))
    if caller is None:
        set_session_cookie(resp, service.open_session(user, replaces=session_id_from(request)))
    return _no_store(resp)


@limiter.limit(LOGIN_LIMIT)  # must be ABOVE @router so SlowAPIMiddleware sees the undecorated endpoint name
@router.post("/login")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Password step of the login state machine.

    401 for bad credentials. Otherwise 200 with exactly one of the
    requiresMfa / requiresPasswordChange / requiresMfaSetup flags. Only the
    last two carry a session cookie.
    """
    service: AuthService = request.app.state.auth_service
    events: audit.AuthEventLog = request.app.state.audit
    ip = client_ip(request)
    user_agent = request.headers.get("user-agent")

    result = service.begin_login(body.username, body.password, current_session_id=session_id_from(request))

    if result.state is LoginState.INVALID_CREDENTIALS:
        events.record(body.username, audit.FAILED_LOGIN, ip, user_agent)
        raise AuthenticationFailure()

    user = result.user
    if result.state is LoginState.MFA_REQUIRED:
        resp = JSONResponse(
            content=MfaRequiredResponse(user_id=user.id, username=user.username).model_dump(by_alias=True)
        )
        clear_session_cookie(resp)
        return _no_store(resp)

    if result.state is LoginState.PASSWORD_CHANGE_REQUIRED:
        events.record(user.username, audit.LOGIN_PASSWORD_CHANGE_REQUIRED, ip, user_agent)
        content = PasswordChangeRequiredResponse(
            user_id=user.id,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
        ).model_dump(by_alias=True)
    else:
        events.record(user.username, audit.LOGIN_MFA_SETUP_REQUIRED, ip, user_agent)
        profile = UserProfile.from_user(user, result.permissions)
        content = MfaSetupRequiredResponse(**profile.model_dump()).model_dump(by_alias=True)

    resp = JSONResponse(content=content)
    set_session_cookie(resp, result.session_id)
    return _no_store(resp)


async def _logout_reason(request: Request) -> str | None:
    """Read the optional {"reason": ...} body without ever rejecting the request.

    Logout must succeed for any body, so a missing, malformed or mistyped
    payload simply means a manual logout.
    """
    try:
        payload = await request.json()
    except ValueError:
        return None
    reason = payload.get("reason") if isinstance(payload, dict) else None
    return reason if isinstance(reason, str) else None


@router.post("/logout")
def logout(request: Request, reason: str | None = Depends(_logout_reason)) -> JSONResponse:
    """End the session named by the cookie. Always 200.

    reason="inactivity" is recorded as auto-logout. Store failures are logged
    and swallowed: the client must always be able to drop its session.
    """
    service: AuthService = request.app.state.auth_service
    session_id = session_id_from(request)

    user: User | None = None
    try:
        user = try_get_current_user(request)
    except SQLAlchemyError:
        logger.exception("Session lookup failed during logout; continuing")

    if user is not None:
        action = audit.AUTO_LOGOUT if reason == "inactivity" else audit.LOGOUT
        request.app.state.audit.record(user.username, action, client_ip(request), request.headers.get("user-agent"))
        logger.info("User %s logged out (%s)", user.username, action)

    service.end_session(session_id)
    request.state.session_id = None

    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump(by_alias=True))
    clear_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/user", response_model=UserProfile)
@router.get("/me", response_model=UserProfile)
def current_user(request: Request, user: User = Depends(get_current_user)) -> UserProfile:
    """Return the current principal with a freshly resolved permission matrix."""
    return UserProfile.from_user(user, request.app.state.auth_service.permissions_for(user))


@router.post("/user/change-password", response_model=SuccessResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
) -> SuccessResponse:
    """Change the caller's password; other sessions of the caller are revoked."""
    service: AuthService = request.app.state.auth_service
    service.change_password(
        user,
        session_id_from(request),
        body.current_password,
        body.new_password,
        force_change=body.force_change,
    )
    return SuccessResponse(message="Password changed successfully")
