"""
auth/roles.py -- Role definitions used by the permission resolver.

The registry is an in-memory lookup seeded with the four built-in roles. Role
editing belongs to the user-management screens, outside this package; the
registry only exposes what the resolver and the read-only /api/roles routes
need.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import copy

from auth.models import Role
from auth.permissions import PermissionMatrix, full_access


def _row(view: bool, edit: bool = False, add: bool = False, delete: bool = False) -> dict[str, bool]:
    return {"view": view, "edit": edit, "add": add, "delete": delete}


# Applied when a principal has no role, or a role id that does not exist.
DEFAULT_PERMISSIONS: PermissionMatrix = {
    "assets": _row(True),
    "users": _row(False),
    "licenses": _row(True),
    "components": _row(True),
    "accessories": _row(True),
    "consumables": _row(True),
    "reports": _row(True),
    "admin": _row(False),
    "vmMonitoring": _row(False),
    "networkDiscovery": _row(False),
    "bitlockerKeys": _row(False),
}

_BUILTIN_ROLES: list[Role] = [
    Role(
        id=1,
        name="Administrator",
        description="Full system access with all permissions",
        permissions=full_access(),
    ),
    Role(
        id=2,
        name="Asset Manager",
        description="Can manage all assets and related items",
        permissions={
            "assets": _row(True, True, True),
            "users": _row(True),
            "licenses": _row(True, True, True),
            "components": _row(True, True, True),
            "accessories": _row(True, True, True),
            "consumables": _row(True, True, True),
            "reports": _row(True, True),
            "admin": _row(False),
            "vmMonitoring": _row(True, True),
            "networkDiscovery": _row(True),
            "bitlockerKeys": _row(False),
        },
    ),
    Role(
        id=3,
        name="User Manager",
        description="Can manage users and basic asset operations",
        permissions={
            "assets": _row(True),
            "users": _row(True, True, True),
            "licenses": _row(True),
            "components": _row(True),
            "accessories": _row(True),
            "consumables": _row(True),
            "reports": _row(True),
            "admin": _row(False),
            "vmMonitoring": _row(False),
            "networkDiscovery": _row(False),
            "bitlockerKeys": _row(False),
        },
    ),
    Role(
        id=4,
        name="Read Only",
        description="View-only access to most resources",
        permissions={
            "assets": _row(True),
            "users": _row(True),
            "licenses": _row(True),
            "components": _row(True),
            "accessories": _row(True),
            "consumables": _row(True),
            "reports": _row(True),
            "admin": _row(False),
            "vmMonitoring": _row(False),
            "networkDiscovery": _row(False),
            "bitlockerKeys": _row(False),
        },
    ),
]


class RoleRegistry:
    """Lookup of role definitions by id.

    Returned objects are deep copies; callers cannot mutate the registry by
    editing a matrix they were handed.
    """

    def __init__(self, roles: list[Role] | None = None) -> None:
        source = roles if roles is not None else _BUILTIN_ROLES
        self._roles: dict[int, Role] = {r.id: copy.deepcopy(r) for r in source}

    def list_roles(self) -> list[Role]:
        return [copy.deepcopy(r) for r in sorted(self._roles.values(), key=lambda r: r.id)]

    def get_role(self, role_id: int | None) -> Role | None:
        if role_id is None:
            return None
        role = self._roles.get(role_id)
        return copy.deepcopy(role) if role is not None else None

    def permissions_for(self, role_id: int | None) -> PermissionMatrix:
        """Return the role's matrix, or DEFAULT_PERMISSIONS for a missing/unknown role."""
        role = self.get_role(role_id)
        if role is None:
            return copy.deepcopy(DEFAULT_PERMISSIONS)
        return role.permissions
