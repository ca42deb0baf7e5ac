"""
api/routes/v1/users.py -- User management endpoints.

Routes:
  GET   /api/v1/users                  -- list all users (admin)
  GET   /api/v1/users/role/{role}      -- list users with one role (admin)
  POST  /api/v1/users/employee         -- create an active employee (admin)
  PUT   /api/v1/users/{id}/role        -- change role (admin)
  PUT   /api/v1/users/{id}/profile     -- edit profile (admin, or the user themself)
  PATCH /api/v1/users/{id}/active      -- deactivate / reactivate (admin)

Users are never deleted. Deactivation clears is_active; the record and its
email stay reserved.

[M4] Guards: an admin cannot deactivate themself, and the last active admin
can be neither deactivated nor demoted.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import ActiveUpdate, EmployeeCreate, ProfileUpdate, RoleUpdate, UserResponse
from auth.credentials import CredentialStore
from auth.dependencies import get_identity, require_admin
from auth.errors import Forbidden, ResourceNotFound
from auth.models import IdentityContext, Role, User
from auth.store import UserStore

# Auth policy: every route requires admin except PUT /users/{id}/profile,
# which also admits the profile's owner.
router = APIRouter()


def _get_user_or_404(user_store: UserStore, user_id: str) -> User:
    user = user_store.get_user_by_id(user_id)
    if user is None:
        raise ResourceNotFound("User not found.")
    return user


def _guard_last_admin(user_store: UserStore, target: User) -> None:
    if target.role is Role.admin and target.is_active and user_store.count_active_admins() <= 1:
        raise HTTPException(
            status_code=400,
            detail={"code": "last_admin", "message": "Cannot remove the last active admin account."},
        )


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, admin: IdentityContext = Depends(require_admin)) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users()]


@router.get("/users/role/{role}", response_model=list[UserResponse])
def list_users_by_role(
    request: Request,
    role: Role,
    admin: IdentityContext = Depends(require_admin),
) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users(role=role)]


@router.post("/users/employee", response_model=UserResponse, status_code=201)
async def create_employee(
    request: Request,
    body: EmployeeCreate,
    admin: IdentityContext = Depends(require_admin),
) -> UserResponse:
    """Create an employee account directly. Admin-created accounts skip OTP verification."""
    credentials: CredentialStore = request.app.state.credential_store
    user = await credentials.create_active_user(
        body.email,
        body.password,
        Role.employee,
        first_name=body.first_name,
        last_name=body.last_name,
        contact_number=body.contact_number,
        employee_code=body.employee_code,
    )
    return UserResponse.from_user(user)


@router.put("/users/{user_id}/role", response_model=UserResponse)
def update_role(
    request: Request,
    user_id: str,
    body: RoleUpdate,
    admin: IdentityContext = Depends(require_admin),
) -> UserResponse:
    """Change a user's role. Takes effect on the user's next login."""
    user_store: UserStore = request.app.state.user_store
    target = _get_user_or_404(user_store, user_id)
    if body.role is not Role.admin:
        _guard_last_admin(user_store, target)
    user_store.update_user(user_id, role=body.role)
    return UserResponse.from_user(_get_user_or_404(user_store, user_id))


@router.put("/users/{user_id}/profile", response_model=UserResponse)
def update_profile(
    request: Request,
    user_id: str,
    body: ProfileUpdate,
    identity: IdentityContext = Depends(get_identity),
) -> UserResponse:
    if not identity.is_admin and identity.id != user_id:
        raise Forbidden()
    user_store: UserStore = request.app.state.user_store
    _get_user_or_404(user_store, user_id)
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    user_store.update_user(user_id, **updates)
    return UserResponse.from_user(_get_user_or_404(user_store, user_id))


@router.patch("/users/{user_id}/active", response_model=UserResponse)
def set_active(
    request: Request,
    user_id: str,
    body: ActiveUpdate,
    admin: IdentityContext = Depends(require_admin),
) -> UserResponse:
    """Deactivate or reactivate an account.

    Only accounts that finished registration can be (re)activated; a pending
    account becomes active through OTP verification alone.
    """
    user_store: UserStore = request.app.state.user_store
    target = _get_user_or_404(user_store, user_id)
    if body.is_active:
        if not target.registration_complete:
            raise HTTPException(
                status_code=400,
                detail={"code": "registration_incomplete", "message": "Account has not completed verification."},
            )
    else:
        if target.id == admin.id:
            raise HTTPException(
                status_code=400,
                detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
            )
        _guard_last_admin(user_store, target)
    user_store.update_user(user_id, is_active=body.is_active)
    return UserResponse.from_user(_get_user_or_404(user_store, user_id))
