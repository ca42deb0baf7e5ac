"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic beyond derived
properties). Stores and services do the work.

Layer rule: no imports from api/ or contracts/.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    client = "client"
    employee = "employee"
    admin = "admin"


class Channel(str, Enum):
    email = "email"
    mobile = "mobile"


class Action(str, Enum):
    """Operations a contract or comment handler asks the PermissionEngine about."""

    read = "read"
    comment = "comment"
    status_update = "status_update"
    write = "write"
    edit = "edit"
    delete = "delete"
    review = "review"
    prepare = "prepare"


class RegistrationState(str, Enum):
    pending = "pending"
    email_verified = "email_verified"
    mobile_verified = "mobile_verified"
    active = "active"


@dataclass
class User:
    """An identity record.

    id is a uuid4 hex string assigned by the store on insert. A record is
    created pending (is_active=False, neither channel verified) and becomes
    active only once both email_verified and mobile_verified are set.
    Records are never hard-deleted; deactivation clears is_active but keeps
    the verification flags, which is how a deactivated account is told apart
    from one that never finished registering.
    """

    email: str
    password_hash: str
    role: Role = Role.client
    id: str | None = None
    contact_number: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    address: str | None = None
    pan_number: str | None = None
    aadhaar_number: str | None = None
    employee_code: str | None = None
    is_active: bool = False
    email_verified: bool = False
    mobile_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None

    @property
    def registration_state(self) -> RegistrationState:
        # Activation is the conjunction of both channels, reached in either order.
        if self.email_verified and self.mobile_verified:
            return RegistrationState.active
        if self.email_verified:
            return RegistrationState.email_verified
        if self.mobile_verified:
            return RegistrationState.mobile_verified
        return RegistrationState.pending

    @property
    def registration_complete(self) -> bool:
        return self.email_verified and self.mobile_verified


# Profile fields a user (or an admin on their behalf) may change.
PROFILE_FIELDS: frozenset[str] = frozenset(
    {"first_name", "last_name", "address", "contact_number", "pan_number", "aadhaar_number", "employee_code"}
)


@dataclass
class OTPChallenge:
    """A one-time code keyed by (subject_id, channel).

    At most one challenge exists per key. Issuing again overwrites it.
    Valid in [issued_at, expires_at).
    """

    subject_id: str
    channel: Channel
    code: str
    expires_at: datetime
    consumed: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class ResourcePermission:
    """Fine-grained, additive grant for one (employee, contract) pair.

    Every capability defaults to False: a grant opts in per capability.
    """

    employee_id: str
    contract_id: int
    can_read: bool = False
    can_write: bool = False
    can_edit: bool = False
    can_delete: bool = False
    is_reviewer: bool = False
    is_preparer: bool = False


PERMISSION_FLAGS: tuple[str, ...] = ("can_read", "can_write", "can_edit", "can_delete", "is_reviewer", "is_preparer")


@dataclass(frozen=True)
class ResourceRef:
    """The ownership facts of a contract, as seen by the PermissionEngine."""

    id: int
    client_id: str | None = None
    assigned_employee_id: str | None = None


@dataclass(frozen=True)
class IdentityContext:
    """The resolved {subject id, role} attached to an authenticated request."""

    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.admin


@dataclass(frozen=True)
class TokenClaims:
    subject_id: str
    role: Role
    expires_at: datetime

    def identity(self) -> IdentityContext:
        return IdentityContext(id=self.subject_id, role=self.role)
