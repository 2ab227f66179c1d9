"""
api/routes/roles.py -- Read-only view of the role registry.

Routes:
  GET /api/roles        -- every role with its permission matrix
  GET /api/roles/{id}   -- one role; 404 if unknown

Both require a verified session: a login that is still enrolling MFA or
changing its password cannot browse roles.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import RoleResponse
from auth.dependencies import require_verified_user
from auth.errors import NotFound
from auth.models import User

router = APIRouter()


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request, user: User = Depends(require_verified_user)) -> list[RoleResponse]:
    return [RoleResponse.from_role(role) for role in request.app.state.roles.list_roles()]


@router.get("/roles/{role_id}", response_model=RoleResponse)
def get_role(request: Request, role_id: int, user: User = Depends(require_verified_user)) -> RoleResponse:
    role = request.app.state.roles.get_role(role_id)
    if role is None:
        raise NotFound("Role not found")
    return RoleResponse.from_role(role)
