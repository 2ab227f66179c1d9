"""
api/routes/setup.py -- First-run setup: create the initial administrator.

Routes:
  GET  /api/setup         -- {setupRequired, hasUsers, userCount}
  POST /api/setup/admin   -- create the first admin and log them in (201); 400 once any user exists
  POST /api/setup/reset   -- re-read the user count into the in-memory setup flag

app.state.setup_required drives the setup gate in api/main.py. It is set in
lifespan and cleared here once the first admin exists. POST /setup/admin
re-checks at the DB level, so two concurrent first-run requests cannot both
create an admin.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.models import MessageResponse, SetupAdminRequest, SetupStatusResponse, UserProfile
from auth.dependencies import session_id_from
from auth.service import AuthService
from auth.sessions import set_session_cookie

logger = logging.getLogger("assetmis.api.setup")

# Auth policy: all public. /setup/admin refuses to run once a user exists,
# and /setup/reset can only ever turn the flag off while users exist.
router = APIRouter()


@router.get("/setup", response_model=SetupStatusResponse)
def setup_status(request: Request) -> SetupStatusResponse:
    count = request.app.state.auth_service.users.count_users()
    return SetupStatusResponse(setup_required=count == 0, has_users=count > 0, user_count=count)


@router.post("/setup/admin", status_code=201)
def create_initial_admin(request: Request, body: SetupAdminRequest) -> JSONResponse:
    """Create the initial admin. The new session is an MFA-enrollment session like any first login."""
    service: AuthService = request.app.state.auth_service
    admin = service.bootstrap_admin(
        username=body.username,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        department=body.department,
    )
    request.app.state.setup_required = False

    profile = UserProfile.from_user(admin, service.permissions_for(admin))
    resp = JSONResponse(status_code=201, content=profile.model_dump(by_alias=True))
    set_session_cookie(resp, service.open_session(admin, replaces=session_id_from(request)))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/setup/reset", response_model=MessageResponse)
def reset_setup_flag(request: Request) -> MessageResponse:
    """Recompute the setup flag from the store, e.g. after users were restored out of band."""
    required = not request.app.state.auth_service.users.has_users()
    request.app.state.setup_required = required
    logger.info("Setup flag re-evaluated (setup_required=%s)", required)
    return MessageResponse(message="Setup is required" if required else "Setup is complete")
