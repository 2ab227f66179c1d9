"""
tests/test_permissions.py -- Unit tests for auth/permissions.py and auth/roles.py.

Covers:
  - admin bypass returns the all-true matrix for any role id (None, 0, unknown, real)
  - non-admins get their role's matrix, normalized to every resource/action
  - missing or unknown role -> default matrix
  - coerce_admin_flag accepts True, 1 and "true" only
  - registry hands out copies
"""

from __future__ import annotations

import pytest

from auth.models import Role, User
from auth.permissions import (
    ACTIONS,
    RESOURCES,
    coerce_admin_flag,
    full_access,
    has_permission,
    normalize,
    permissions_for_user,
    resolve,
)
from auth.roles import DEFAULT_PERMISSIONS, RoleRegistry


@pytest.fixture()
def roles() -> RoleRegistry:
    return RoleRegistry()


def _all_true(matrix) -> bool:
    return all(matrix[r][a] is True for r in RESOURCES for a in ACTIONS)


@pytest.mark.parametrize("role_id", [None, 0, 1, 2, 3, 4, 999])
def test_admin_always_gets_full_access(roles, role_id):
    assert _all_true(resolve(True, role_id, roles))


@pytest.mark.parametrize("flag", ["false", 0, 2, "yes", None])
def test_only_recognised_admin_encodings_bypass_roles(roles, flag):
    matrix = resolve(flag, None, roles)
    assert not _all_true(matrix)
    assert matrix == normalize(DEFAULT_PERMISSIONS)


@pytest.mark.parametrize("flag", [1, "true"])
def test_stored_admin_encodings_get_full_access(roles, flag):
    assert _all_true(resolve(flag, 4, roles))


def test_full_access_covers_every_resource_and_action():
    matrix = full_access()
    assert set(matrix) == set(RESOURCES)
    assert _all_true(matrix)


def test_non_admin_gets_role_matrix(roles):
    matrix = resolve(False, 2, roles)  # Asset Manager
    assert matrix["assets"] == {"view": True, "edit": True, "add": True, "delete": False}
    assert matrix["admin"]["view"] is False
    assert matrix["bitlockerKeys"]["view"] is False


def test_non_admin_with_administrator_role_gets_that_role(roles):
    assert _all_true(resolve(False, 1, roles))


@pytest.mark.parametrize("role_id", [None, 999])
def test_missing_or_unknown_role_gets_default(roles, role_id):
    assert resolve(False, role_id, roles) == normalize(DEFAULT_PERMISSIONS)


def test_normalize_fills_gaps_and_drops_unknown_keys():
    matrix = normalize({"assets": {"view": True}, "spaceships": {"view": True}, "users": "garbage"})
    assert set(matrix) == set(RESOURCES)
    assert matrix["assets"] == {"view": True, "edit": False, "add": False, "delete": False}
    assert matrix["users"]["view"] is False


def test_normalize_only_accepts_real_true():
    assert normalize({"assets": {"view": 1, "edit": "true"}})["assets"]["view"] is False


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (True, True),
        (1, True),
        ("true", True),
        (" TRUE ", True),
        (False, False),
        (0, False),
        (2, False),
        ("false", False),
        ("1", False),
        (None, False),
    ],
)
def test_coerce_admin_flag(value, expected):
    assert coerce_admin_flag(value) is expected


def test_permissions_for_user_uses_admin_flag_and_role(roles):
    admin = User(username="a", password="x", is_admin=True, role_id=4)
    reader = User(username="r", password="x", role_id=4)
    assert _all_true(permissions_for_user(admin, roles))
    assert permissions_for_user(reader, roles)["assets"]["edit"] is False


def test_has_permission_denies_unknown_names():
    matrix = full_access()
    assert has_permission(matrix, "assets", "view") is True
    assert has_permission(matrix, "nope", "view") is False
    assert has_permission(matrix, "assets", "launch") is False


def test_registry_lists_builtin_roles_in_order(roles):
    assert [r.name for r in roles.list_roles()] == ["Administrator", "Asset Manager", "User Manager", "Read Only"]


def test_registry_returns_copies(roles):
    roles.get_role(4).permissions["assets"]["delete"] = True
    assert roles.get_role(4).permissions["assets"]["delete"] is False


def test_registry_accepts_custom_roles():
    custom = RoleRegistry([Role(id=10, name="Auditor", description="", permissions={"reports": {"view": True}})])
    assert custom.get_role(1) is None
    assert resolve(False, 10, custom)["reports"]["view"] is True
