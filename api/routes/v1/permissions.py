"""
api/routes/v1/permissions.py -- Per-contract grant administration (admin only).

Routes:
  GET  /api/v1/permissions/employee/{employee_id}  -- list an employee's grants
  POST /api/v1/permissions                         -- upsert one grant

POST replaces all six capability flags of the (employee_id, contract_id) row.
Omitted flags are False. The contract must exist; the grantee must be an
existing employee (checked by PermissionEngine.set_permission).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.dependencies import load_contract
from api.models import PermissionResponse, PermissionSet
from auth.dependencies import require_admin
from auth.models import IdentityContext
from auth.permissions import PermissionEngine

router = APIRouter()


@router.get("/permissions/employee/{employee_id}", response_model=list[PermissionResponse])
def list_employee_permissions(
    request: Request,
    employee_id: str,
    admin: IdentityContext = Depends(require_admin),
) -> list[PermissionResponse]:
    engine: PermissionEngine = request.app.state.permission_engine
    return [PermissionResponse.from_record(p) for p in engine.list_permissions(admin, employee_id)]


@router.post("/permissions", response_model=PermissionResponse)
def set_permission(
    request: Request,
    body: PermissionSet,
    admin: IdentityContext = Depends(require_admin),
) -> PermissionResponse:
    load_contract(request, body.contract_id)
    engine: PermissionEngine = request.app.state.permission_engine
    saved = engine.set_permission(admin, body.to_record())
    return PermissionResponse.from_record(saved)
