"""
auth/permissions.py -- PermissionEngine: role baseline + per-contract grants.

Every contract or comment action resolves to exactly one Decision:

  1. admin_bypass -- identity.role is admin. Always allowed.
  2. owner_match  -- a client acting on a contract whose client_id is theirs
                     (read, comment), or an employee acting on a contract
                     assigned to them (read, comment, status_update).
  3. grant_match  -- a ResourcePermission row for (identity.id, contract id)
                     has the flag that corresponds to the action set.
  4. deny

The rules are a monotonic OR evaluated in that order. A grant can only add a
right on top of the baseline; nothing in a grant row is ever consulted to take
a baseline right away, and the first rule that allows wins.

Only admins write grants. set_permission() replaces all six flags of the row,
so any flag the caller leaves out ends up False.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from auth.errors import Forbidden, ResourceNotFound
from auth.models import Action, IdentityContext, ResourcePermission, ResourceRef, Role, User

logger = logging.getLogger("contractportal.auth.permissions")


class Decision(str, Enum):
    admin_bypass = "admin_bypass"
    owner_match = "owner_match"
    grant_match = "grant_match"
    deny = "deny"

    @property
    def allowed(self) -> bool:
        return self is not Decision.deny


# Which grant flag unlocks each action.
ACTION_FLAGS: dict[Action, str] = {
    Action.read: "can_read",
    Action.comment: "can_write",
    Action.write: "can_write",
    Action.status_update: "can_edit",
    Action.edit: "can_edit",
    Action.delete: "can_delete",
    Action.review: "is_reviewer",
    Action.prepare: "is_preparer",
}

CLIENT_BASELINE: frozenset[Action] = frozenset({Action.read, Action.comment})
EMPLOYEE_BASELINE: frozenset[Action] = frozenset({Action.read, Action.comment, Action.status_update})


class PermissionRepository(Protocol):
    def get_user_by_id(self, user_id: str) -> User | None: ...

    def get_permission(self, employee_id: str, contract_id: int) -> ResourcePermission | None: ...

    def set_permission(self, record: ResourcePermission) -> ResourcePermission: ...

    def list_permissions(self, employee_id: str) -> list[ResourcePermission]: ...


class PermissionEngine:
    def __init__(self, repository: PermissionRepository) -> None:
        self.repository = repository

    def authorize(self, identity: IdentityContext, action: Action, resource: ResourceRef) -> Decision:
        action = Action(action)
        if identity.role is Role.admin:
            return Decision.admin_bypass
        if identity.role is Role.client and resource.client_id == identity.id and action in CLIENT_BASELINE:
            return Decision.owner_match
        if (
            identity.role is Role.employee
            and resource.assigned_employee_id == identity.id
            and action in EMPLOYEE_BASELINE
        ):
            return Decision.owner_match
        grant = self.repository.get_permission(identity.id, resource.id)
        if grant is not None and getattr(grant, ACTION_FLAGS[action]):
            return Decision.grant_match
        return Decision.deny

    def require(self, identity: IdentityContext, action: Action, resource: ResourceRef) -> Decision:
        """authorize(), raising Forbidden on deny."""
        decision = self.authorize(identity, action, resource)
        if not decision.allowed:
            logger.info(
                "Forbidden: %s %s attempted %s on contract %s",
                identity.role.value,
                identity.id,
                Action(action).value,
                resource.id,
            )
            raise Forbidden()
        return decision

    def decisions(self, identity: IdentityContext, resource: ResourceRef) -> dict[Action, Decision]:
        return {action: self.authorize(identity, action, resource) for action in Action}

    # ------------------------------------------------------------------
    # Grant administration
    # ------------------------------------------------------------------

    def set_permission(self, actor: IdentityContext, record: ResourcePermission) -> ResourcePermission:
        """Upsert a grant. Admin only; the grantee must be an existing employee."""
        if not actor.is_admin:
            logger.warning("Non-admin %s tried to write a grant for contract %s", actor.id, record.contract_id)
            raise Forbidden("Admin access required.")
        grantee = self.repository.get_user_by_id(record.employee_id)
        if grantee is None or grantee.role is not Role.employee:
            raise ResourceNotFound("Employee not found.")
        saved = self.repository.set_permission(record)
        logger.info(
            "Grant for employee %s on contract %s set by admin %s",
            record.employee_id,
            record.contract_id,
            actor.id,
        )
        return saved

    def list_permissions(self, actor: IdentityContext, employee_id: str) -> list[ResourcePermission]:
        if not actor.is_admin:
            raise Forbidden("Admin access required.")
        return self.repository.list_permissions(employee_id)
