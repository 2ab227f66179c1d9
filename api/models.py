"""
API request and response models for the AssetMIS auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field names are snake_case in Python and camelCase on the wire
(alias_generator=to_camel). populate_by_name lets tests and route code build
models with either spelling. FastAPI serializes response models by alias.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import Role, User
from auth.permissions import PermissionMatrix


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_ApiModel):
    """Request body for POST /api/register.

    is_admin and role_id are accepted from anyone but only applied when the
    caller is an authenticated admin; self-registration always yields a plain
    account.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=1)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    department: Optional[str] = None
    is_admin: bool = False
    role_id: Optional[int] = None


class SetupAdminRequest(_ApiModel):
    """Request body for POST /api/setup/admin."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=1)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    department: Optional[str] = None


class LoginRequest(_ApiModel):
    username: str
    password: str


class ChangePasswordRequest(_ApiModel):
    current_password: Optional[str] = None
    new_password: str
    force_change: bool = False


class AdminResetPasswordRequest(_ApiModel):
    password: str
    force_change: bool = False


class MfaTokenRequest(_ApiModel):
    """Request body for /api/mfa/enable and /api/mfa/disable.

    token is deliberately not pattern-checked here: a malformed code is
    rejected by the TOTP engine with the same 400 as a wrong one.
    """

    token: str


class MfaVerifyRequest(_ApiModel):
    user_id: int
    token: str


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserProfile(_ApiModel):
    """The principal as the client sees it. password and mfa_secret never leave the server."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    department: Optional[str] = None
    is_admin: bool
    role_id: Optional[int] = None
    mfa_enabled: bool
    force_password_change: bool
    created_at: Optional[str] = None
    last_login: Optional[str] = None
    permissions: Optional[PermissionMatrix] = None

    @classmethod
    def from_user(cls, user: User, permissions: PermissionMatrix | None = None) -> "UserProfile":
        """Map a domain User to the wire profile, attaching the resolved matrix when given."""
        return cls(
            id=user.id,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            department=user.department,
            is_admin=user.is_admin,
            role_id=user.role_id,
            mfa_enabled=user.mfa_enabled,
            force_password_change=user.force_password_change,
            created_at=user.created_at,
            last_login=user.last_login,
            permissions=permissions,
        )


class MfaRequiredResponse(_ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    requires_mfa: bool = True
    user_id: int
    username: str
    message: str = "Please enter your MFA code"


class PasswordChangeRequiredResponse(_ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    requires_password_change: bool = True
    user_id: int
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    message: str = "You must change your password before continuing"


class MfaSetupRequiredResponse(UserProfile):
    """UserProfile plus the setup flag. mfa_enabled is always False here."""

    requires_mfa_setup: bool = True
    message: str = "MFA setup is required before you can continue"


class MessageResponse(_ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    message: str


class SuccessResponse(_ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    success: bool = True
    message: str


class MfaSetupResponse(_ApiModel):
    """secret is the base32 key, manual_entry the otpauth:// URL it encodes, qr_code a PNG data URI."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    secret: str
    qr_code: str
    manual_entry: str


class MfaVerifyResponse(_ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    success: bool = True
    user: UserProfile


class MfaStatusResponse(_ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    enabled: bool


class RoleResponse(_ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    name: str
    description: str
    permissions: PermissionMatrix

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(id=role.id, name=role.name, description=role.description, permissions=role.permissions)


class SetupStatusResponse(_ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    setup_required: bool
    has_users: bool
    user_count: int


class ErrorResponse(_ApiModel):
    """Uniform error envelope returned by every exception handler in api/main.py."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    message: str
    code: str
    detail: Optional[str] = None


class HealthResponse(_ApiModel):
    """Response body for GET /api/health."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
