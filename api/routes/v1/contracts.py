"""
api/routes/v1/contracts.py -- Contract ownership facts and the access gate.

Routes:
  POST  /api/v1/contracts                          -- register a contract (admin)
  GET   /api/v1/contracts                          -- contracts the caller may read
  GET   /api/v1/contracts/{contract_id}            -- one contract (read)
  PATCH /api/v1/contracts/{contract_id}            -- rename (edit)
  GET   /api/v1/contracts/{contract_id}/access     -- caller's decision per action
  PUT   /api/v1/contracts/{contract_id}/assignment -- (re)assign employee (admin)

Contract content, status workflow and comments are served elsewhere; those
handlers guard themselves with api.dependencies.require_contract_action().
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from api.dependencies import ContractAccess, load_contract, require_contract_action
from api.models import AccessResponse, AssignmentUpdate, ContractCreate, ContractRename, ContractResponse
from auth.dependencies import get_identity, require_admin
from auth.models import Action, IdentityContext, Role
from auth.permissions import PermissionEngine
from auth.store import UserStore
from contracts.models import Contract
from contracts.store import ContractStore

router = APIRouter()


def _to_response(contract: Contract) -> ContractResponse:
    return ContractResponse(
        id=contract.id,
        name=contract.name,
        client_id=contract.client_id,
        assigned_employee_id=contract.assigned_employee_id,
        created_at=contract.created_at,
    )


def _check_party(user_store: UserStore, user_id: Optional[str], role: Role, field: str) -> None:
    """Reject ids that do not belong to an existing user with the expected role."""
    if user_id is None:
        return
    user = user_store.get_user_by_id(user_id)
    if user is None or user.role is not role:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_party", "message": f"{field} must reference an existing {role.value}."},
        )


@router.post("/contracts", response_model=ContractResponse, status_code=201)
def create_contract(
    request: Request,
    body: ContractCreate,
    admin: IdentityContext = Depends(require_admin),
) -> ContractResponse:
    user_store: UserStore = request.app.state.user_store
    _check_party(user_store, body.client_id, Role.client, "client_id")
    _check_party(user_store, body.assigned_employee_id, Role.employee, "assigned_employee_id")
    contract_store: ContractStore = request.app.state.contract_store
    contract_id = contract_store.create_contract(
        Contract(
            name=body.name,
            client_id=body.client_id,
            assigned_employee_id=body.assigned_employee_id,
            created_by=admin.id,
        )
    )
    return _to_response(contract_store.get_contract(contract_id))


@router.get("/contracts", response_model=list[ContractResponse])
def list_contracts(request: Request, identity: IdentityContext = Depends(get_identity)) -> list[ContractResponse]:
    """Every contract the PermissionEngine lets the caller read."""
    contract_store: ContractStore = request.app.state.contract_store
    engine: PermissionEngine = request.app.state.permission_engine
    return [
        _to_response(c)
        for c in contract_store.list_contracts()
        if engine.authorize(identity, Action.read, c.ref()).allowed
    ]


@router.get("/contracts/{contract_id}", response_model=ContractResponse)
def get_contract(access: ContractAccess = Depends(require_contract_action(Action.read))) -> ContractResponse:
    return _to_response(access.contract)


@router.patch("/contracts/{contract_id}", response_model=ContractResponse)
def rename_contract(
    request: Request,
    body: ContractRename,
    access: ContractAccess = Depends(require_contract_action(Action.edit)),
) -> ContractResponse:
    contract_store: ContractStore = request.app.state.contract_store
    contract_store.rename_contract(access.contract.id, body.name)
    return _to_response(contract_store.get_contract(access.contract.id))


@router.get("/contracts/{contract_id}/access", response_model=AccessResponse)
def get_access(
    request: Request,
    contract_id: int,
    identity: IdentityContext = Depends(get_identity),
) -> AccessResponse:
    """Report the decision for every action, so clients can render only what the caller may do."""
    contract = load_contract(request, contract_id)
    engine: PermissionEngine = request.app.state.permission_engine
    decisions = engine.decisions(identity, contract.ref())
    return AccessResponse(
        contract_id=contract.id,
        role=identity.role.value,
        decisions={action: decision.value for action, decision in decisions.items()},
        allowed=[action for action, decision in decisions.items() if decision.allowed],
    )


@router.put("/contracts/{contract_id}/assignment", response_model=ContractResponse)
def assign_contract(
    request: Request,
    contract_id: int,
    body: AssignmentUpdate,
    admin: IdentityContext = Depends(require_admin),
) -> ContractResponse:
    load_contract(request, contract_id)
    user_store: UserStore = request.app.state.user_store
    _check_party(user_store, body.assigned_employee_id, Role.employee, "assigned_employee_id")
    contract_store: ContractStore = request.app.state.contract_store
    contract_store.assign_employee(contract_id, body.assigned_employee_id)
    return _to_response(contract_store.get_contract(contract_id))
