"""
api/routes/mfa.py -- TOTP enrollment, removal and the second login step.

Routes:
  POST /api/mfa/setup     -- new secret + QR code, held on an enrollment ticket (requires session)
  POST /api/mfa/enable    -- confirm the pending secret with a code (requires session)
  POST /api/mfa/disable   -- remove MFA with a currently valid code (requires session)
  POST /api/mfa/verify    -- second login step; opens the session on success (public)
  GET  /api/mfa/status    -- {enabled} for the caller (requires session)

Security:
  enable, disable and verify are rate-limited per IP (MFA_RATE_LIMIT) and
      per user id (auth/throttle.py).
  /verify re-reads the principal from the store; the body carries only
      userId and the code.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import MFA_LIMIT, limiter
from api.models import (
    MessageResponse,
    MfaSetupResponse,
    MfaStatusResponse,
    MfaTokenRequest,
    MfaVerifyRequest,
    MfaVerifyResponse,
    UserProfile,
)
from auth import audit
from auth.dependencies import client_ip, get_current_user, session_id_from
from auth.models import User
from auth.service import AuthService
from auth.sessions import set_session_cookie

# Auth policy:
# - POST /api/mfa/setup, /enable, /disable, GET /api/mfa/status: requires session (get_current_user)
# - POST /api/mfa/verify: public -- the caller has no session until it succeeds
router = APIRouter()


@router.post("/mfa/setup", response_model=MfaSetupResponse)
def setup(request: Request, user: User = Depends(get_current_user)) -> MfaSetupResponse:
    """Start enrollment. Calling it again replaces the pending secret."""
    service: AuthService = request.app.state.auth_service
    enrollment = service.start_enrollment(session_id_from(request), user)
    return MfaSetupResponse(
        secret=enrollment.secret,
        qr_code=enrollment.qr_code,
        manual_entry=enrollment.otpauth_url,
    )


@limiter.limit(MFA_LIMIT)
@router.post("/mfa/enable", response_model=MessageResponse)
def enable(request: Request, body: MfaTokenRequest, user: User = Depends(get_current_user)) -> MessageResponse:
    """Persist the pending secret once body.token verifies against it."""
    service: AuthService = request.app.state.auth_service
    service.confirm_enrollment(session_id_from(request), user, body.token)
    return MessageResponse(message="MFA has been enabled successfully")


@limiter.limit(MFA_LIMIT)
@router.post("/mfa/disable", response_model=MessageResponse)
def disable(request: Request, body: MfaTokenRequest, user: User = Depends(get_current_user)) -> MessageResponse:
    service: AuthService = request.app.state.auth_service
    service.disable_mfa(user, body.token)
    return MessageResponse(message="MFA has been disabled successfully")


@limiter.limit(MFA_LIMIT)
@router.post("/mfa/verify")
def verify(request: Request, body: MfaVerifyRequest) -> JSONResponse:
    """Second login step. The only place an MFA-enabled principal gets a session.

    A wrong code answers 400 and leaves the caller anonymous.
    """
    service: AuthService = request.app.state.auth_service
    result = service.verify_mfa_login(body.user_id, body.token, current_session_id=session_id_from(request))
    user = result.user

    request.app.state.audit.record(
        user.username,
        audit.LOGIN,
        client_ip(request),
        request.headers.get("user-agent"),
    )
    resp = JSONResponse(
        content=MfaVerifyResponse(user=UserProfile.from_user(user, result.permissions)).model_dump(by_alias=True)
    )
    set_session_cookie(resp, result.session_id)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/mfa/status", response_model=MfaStatusResponse)
def status(request: Request, user: User = Depends(get_current_user)) -> MfaStatusResponse:
    return MfaStatusResponse(enabled=request.app.state.auth_service.mfa_enabled(user))
