"""
api/dependencies.py -- The authorization gate for contract and comment handlers.

require_contract_action(action) builds a FastAPI dependency that:
  1. resolves the caller's identity (SessionGuard; 401 on failure),
  2. loads the contract's ownership facts (404 ResourceNotFound),
  3. asks the PermissionEngine for a decision (403 Forbidden on deny),
and hands the handler a ContractAccess bundle. A handler declared with this
dependency never runs for a caller who may not perform the action.

Usage:
    @router.put("/contracts/{contract_id}")
    def update(access: ContractAccess = Depends(require_contract_action(Action.edit))): ...

This lives in api/ rather than auth/ because it joins auth/ with contracts/,
and auth/ may not import contracts/.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from auth.dependencies import get_identity
from auth.errors import ResourceNotFound
from auth.models import Action, IdentityContext
from auth.permissions import Decision, PermissionEngine
from contracts.models import Contract
from contracts.store import ContractStore


@dataclass(frozen=True)
class ContractAccess:
    identity: IdentityContext
    contract: Contract
    decision: Decision


def load_contract(request: Request, contract_id: int) -> Contract:
    contract_store: ContractStore = request.app.state.contract_store
    contract = contract_store.get_contract(contract_id)
    if contract is None:
        raise ResourceNotFound("Contract not found.")
    return contract


def require_contract_action(action: Action):
    """Return a dependency that authorizes `action` on the {contract_id} path parameter."""

    def dependency(request: Request, contract_id: int) -> ContractAccess:
        identity = get_identity(request)
        contract = load_contract(request, contract_id)
        engine: PermissionEngine = request.app.state.permission_engine
        decision = engine.require(identity, action, contract.ref())
        return ContractAccess(identity=identity, contract=contract, decision=decision)

    dependency.__name__ = f"require_contract_{action.value}"
    return dependency
