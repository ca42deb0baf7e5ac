"""
API request and response models for ContractPortal REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
contracts/models.py, which own the internal domain representation. Route
handlers map between the two.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Action, Channel, ResourcePermission, Role, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: the OTP round-trip is what proves the address works.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
OTP_PATTERN = r"^\d{4,10}$"

_Password = Annotated[str, Field(min_length=8, max_length=128)]


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    contact_number: str = Field(min_length=10, max_length=20)
    password: _Password
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    address: Optional[str] = Field(default=None, max_length=500)
    pan_number: Optional[str] = Field(default=None, min_length=10, max_length=10)
    aadhaar_number: Optional[str] = Field(default=None, min_length=12, max_length=12)


class VerifyOtpRequest(BaseModel):
    """Request body for POST /api/v1/auth/register/verify-otp.

    Either code may be omitted; the channel it belongs to simply stays
    unverified until a later call supplies it.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(min_length=1, max_length=32)
    email_otp: Optional[str] = Field(default=None, pattern=OTP_PATTERN)
    mobile_otp: Optional[str] = Field(default=None, pattern=OTP_PATTERN)


class ResendOtpRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=32)
    channel: Channel


class RegistrationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    state: str
    is_active: bool
    message: str


# ---------------------------------------------------------------------------
# Login and passwords
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    user_id: str
    role: str


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    otp: str = Field(pattern=OTP_PATTERN)
    new_password: _Password


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: _Password


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    contact_number: Optional[str] = None
    address: Optional[str] = None
    employee_code: Optional[str] = None
    is_active: bool
    registration_state: str
    created_at: str = ""
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role.value,
            first_name=user.first_name,
            last_name=user.last_name,
            contact_number=user.contact_number,
            address=user.address,
            employee_code=user.employee_code,
            is_active=user.is_active,
            registration_state=user.registration_state.value,
            created_at=user.created_at or "",
            last_login=user.last_login,
        )


class RoleUpdate(BaseModel):
    role: Role


class ActiveUpdate(BaseModel):
    is_active: bool


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{id}/profile. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    address: Optional[str] = Field(default=None, max_length=500)
    contact_number: Optional[str] = Field(default=None, min_length=10, max_length=20)
    pan_number: Optional[str] = Field(default=None, min_length=10, max_length=10)
    aadhaar_number: Optional[str] = Field(default=None, min_length=12, max_length=12)


class EmployeeCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: _Password
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    contact_number: Optional[str] = Field(default=None, min_length=10, max_length=20)
    employee_code: Optional[str] = Field(default=None, max_length=50)


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


class PermissionSet(BaseModel):
    """Request body for POST /api/v1/permissions. Every omitted capability is False."""

    employee_id: str = Field(min_length=1, max_length=32)
    contract_id: int = Field(gt=0)
    can_read: bool = False
    can_write: bool = False
    can_edit: bool = False
    can_delete: bool = False
    is_reviewer: bool = False
    is_preparer: bool = False

    def to_record(self) -> ResourcePermission:
        return ResourcePermission(**self.model_dump())


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    employee_id: str
    contract_id: int
    can_read: bool
    can_write: bool
    can_edit: bool
    can_delete: bool
    is_reviewer: bool
    is_preparer: bool

    @classmethod
    def from_record(cls, record: ResourcePermission) -> "PermissionResponse":
        return cls(**record.__dict__)


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


class ContractCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    client_id: Optional[str] = Field(default=None, max_length=32)
    assigned_employee_id: Optional[str] = Field(default=None, max_length=32)


class ContractRename(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)


class AssignmentUpdate(BaseModel):
    assigned_employee_id: Optional[str] = Field(default=None, max_length=32)


class ContractResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    client_id: Optional[str]
    assigned_employee_id: Optional[str]
    created_at: str


class AccessResponse(BaseModel):
    """Response for GET /api/v1/contracts/{id}/access -- one decision per action."""

    model_config = ConfigDict(frozen=True)

    contract_id: int
    role: str
    decisions: dict[Action, str]
    allowed: list[Action]


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
