"""
auth/permissions.py -- Permission matrix resolution.

A permission matrix maps every resource to its four action flags:

    {"assets": {"view": True, "edit": False, "add": False, "delete": False}, ...}

Matrices are derived, never stored with the principal. They are recomputed on
login, on MFA verification and on every session lookup, always through
resolve(). Admin principals get full_access() unconditionally, whatever their
role_id (None, 0, or an id that no longer exists).

coerce_admin_flag() is the one place the legacy truthy encodings of the admin
flag are interpreted. auth/store.py applies it when mapping a row, so by the
time a User exists its is_admin is a real bool.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auth.models import User
    from auth.roles import RoleRegistry

PermissionMatrix = dict[str, dict[str, bool]]

RESOURCES: tuple[str, ...] = (
    "assets",
    "components",
    "accessories",
    "consumables",
    "licenses",
    "users",
    "reports",
    "vmMonitoring",
    "networkDiscovery",
    "bitlockerKeys",
    "admin",
)

ACTIONS: tuple[str, ...] = ("view", "edit", "add", "delete")


def coerce_admin_flag(value: object) -> bool:
    """Normalize the stored admin flag: True, numeric 1 and the string "true" mean admin."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def full_access() -> PermissionMatrix:
    """Return a fresh all-true matrix. Callers may mutate the result."""
    return {resource: {action: True for action in ACTIONS} for resource in RESOURCES}


def no_access() -> PermissionMatrix:
    return {resource: {action: False for action in ACTIONS} for resource in RESOURCES}


def normalize(matrix: dict | None) -> PermissionMatrix:
    """Fill in missing resources and actions with False and drop unknown keys.

    Role definitions may omit "delete" or whole resources; consumers can then
    index matrix[resource][action] without guarding.
    """
    result = no_access()
    if not isinstance(matrix, dict):
        return result
    for resource, actions in matrix.items():
        if resource not in result or not isinstance(actions, dict):
            continue
        for action in ACTIONS:
            result[resource][action] = actions.get(action) is True
    return result


def resolve(is_admin: object, role_id: int | None, roles: RoleRegistry) -> PermissionMatrix:
    """Return the permission matrix for a principal.

    is_admin goes through coerce_admin_flag, so only True, 1 and "true" grant
    the admin bypass, which ignores role_id entirely. Everyone else gets their role's
    matrix, or the registry's default matrix when role_id is absent or unknown.
    """
    if coerce_admin_flag(is_admin):
        return full_access()
    return normalize(roles.permissions_for(role_id))


def permissions_for_user(user: User, roles: RoleRegistry) -> PermissionMatrix:
    return resolve(user.is_admin, user.role_id, roles)


def has_permission(matrix: PermissionMatrix, resource: str, action: str) -> bool:
    """Return True if matrix grants action on resource. Unknown names are denied."""
    return matrix.get(resource, {}).get(action) is True
