"""
api/routes/admin.py -- Administrative account operations and the user list.

Routes:
  POST /api/admin/disable-mfa/{user_id}      -- remove another user's MFA, no code (admin only)
  POST /api/admin/reset-password/{user_id}   -- set another user's password (admin only)
  GET  /api/users                            -- all users with MFA status (users.view)

Admin checks use the normalized is_admin flag from the store; the resolver
and these routes never look at the raw column.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AdminResetPasswordRequest, MessageResponse, UserProfile
from auth.dependencies import require_admin, require_permission
from auth.models import User
from auth.service import AuthService

# Auth policy:
# - POST /api/admin/*: requires a verified admin session (require_admin)
# - GET  /api/users:   requires users.view (require_permission)
router = APIRouter()


@router.post("/admin/disable-mfa/{user_id}", response_model=MessageResponse)
def admin_disable_mfa(request: Request, user_id: int, admin: User = Depends(require_admin)) -> MessageResponse:
    """404 for an unknown user, 400 if the user has no MFA to disable."""
    service: AuthService = request.app.state.auth_service
    target = service.admin_disable_mfa(admin, user_id)
    return MessageResponse(message=f"MFA has been disabled for user {target.username}")


@router.post("/admin/reset-password/{user_id}", response_model=MessageResponse)
def admin_reset_password(
    request: Request,
    user_id: int,
    body: AdminResetPasswordRequest,
    admin: User = Depends(require_admin),
) -> MessageResponse:
    """Replace the user's password and end all of their sessions."""
    service: AuthService = request.app.state.auth_service
    target = service.admin_reset_password(admin, user_id, body.password, body.force_change)
    suffix = ". User will be required to change password at next login." if body.force_change else ""
    return MessageResponse(message=f"Password reset successfully for user {target.username}{suffix}")


@router.get("/users", response_model=list[UserProfile])
def list_users(request: Request, user: User = Depends(require_permission("users", "view"))) -> list[UserProfile]:
    """List every principal. Permission matrices are omitted; profiles only."""
    return [UserProfile.from_user(u) for u in request.app.state.auth_service.users.list_users()]
