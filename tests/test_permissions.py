"""Unit tests for auth/permissions.py -- PermissionEngine decisions and grant writes.

Covers:
- admin bypass for every action
- client owner baseline: read and comment on own contract only
- employee owner baseline: read, comment, status_update on assigned contract
- grants add rights and never remove baseline ones
- unassigned employee without grant is denied; with can_read, allowed to read only
- set_permission: admin only, grantee must be an employee, omitted flags default False
"""

import pytest

from auth.errors import Forbidden, ResourceNotFound
from auth.models import Action, IdentityContext, ResourcePermission, ResourceRef, Role, User
from auth.permissions import Decision, PermissionEngine
from auth.store import UserStore

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def people(store):
    """Insert one user per role plus a second client and a second employee."""
    ids = {}
    for key, role in [
        ("admin", Role.admin),
        ("c1", Role.client),
        ("c2", Role.client),
        ("e1", Role.employee),
        ("e2", Role.employee),
    ]:
        ids[key] = store.create_user(User(email=f"{key}@portal.test", password_hash="x", role=role, is_active=True))
    return {key: IdentityContext(id=uid, role=store.get_user_by_id(uid).role) for key, uid in ids.items()}


@pytest.fixture
def engine(store) -> PermissionEngine:
    return PermissionEngine(store)


@pytest.fixture
def contract(people) -> ResourceRef:
    return ResourceRef(id=5, client_id=people["c1"].id, assigned_employee_id=people["e1"].id)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("action", list(Action))
def test_admin_bypass_for_every_action(engine, people, contract, action):
    assert engine.authorize(people["admin"], action, contract) is Decision.admin_bypass


def test_client_owner_baseline(engine, people, contract):
    decisions = engine.decisions(people["c1"], contract)
    allowed = {action for action, d in decisions.items() if d.allowed}
    assert allowed == {Action.read, Action.comment}
    assert decisions[Action.read] is Decision.owner_match


def test_other_client_is_denied(engine, people, contract):
    assert engine.authorize(people["c2"], Action.read, contract) is Decision.deny


def test_assigned_employee_baseline(engine, people, contract):
    decisions = engine.decisions(people["e1"], contract)
    allowed = {action for action, d in decisions.items() if d.allowed}
    assert allowed == {Action.read, Action.comment, Action.status_update}


def test_unassigned_employee_without_grant_is_denied(engine, people, contract):
    assert engine.authorize(people["e2"], Action.read, contract) is Decision.deny


def test_read_grant_allows_only_read(engine, people, contract):
    engine.set_permission(people["admin"], ResourcePermission(employee_id=people["e2"].id, contract_id=5, can_read=True))
    assert engine.authorize(people["e2"], Action.read, contract) is Decision.grant_match
    assert engine.authorize(people["e2"], Action.write, contract) is Decision.deny
    assert engine.authorize(people["e2"], Action.status_update, contract) is Decision.deny


def test_grant_is_scoped_to_its_contract(engine, people, contract):
    engine.set_permission(people["admin"], ResourcePermission(employee_id=people["e2"].id, contract_id=5, can_read=True))
    other = ResourceRef(id=6, client_id=people["c1"].id, assigned_employee_id=people["e1"].id)
    assert engine.authorize(people["e2"], Action.read, other) is Decision.deny


def test_edit_grant_scenario(engine, people, contract):
    e1, e2 = people["e1"], people["e2"]
    unassigned = ResourceRef(id=5, client_id=people["c1"].id)
    assert engine.authorize(e1, Action.edit, unassigned) is Decision.deny

    engine.set_permission(people["admin"], ResourcePermission(employee_id=e1.id, contract_id=5, can_edit=True))
    assert engine.authorize(e1, Action.edit, unassigned) is Decision.grant_match
    assert engine.authorize(e2, Action.edit, unassigned) is Decision.deny


def test_grant_adds_rights_beyond_baseline(engine, people, contract):
    engine.set_permission(
        people["admin"],
        ResourcePermission(employee_id=people["e1"].id, contract_id=5, can_delete=True, is_reviewer=True),
    )
    assert engine.authorize(people["e1"], Action.delete, contract) is Decision.grant_match
    assert engine.authorize(people["e1"], Action.review, contract) is Decision.grant_match


def test_all_false_grant_does_not_remove_baseline(engine, people, contract):
    engine.set_permission(people["admin"], ResourcePermission(employee_id=people["e1"].id, contract_id=5))
    assert engine.authorize(people["e1"], Action.read, contract) is Decision.owner_match
    assert engine.authorize(people["e1"], Action.status_update, contract) is Decision.owner_match


@pytest.mark.parametrize(
    "flag, actions",
    [
        ("can_write", {Action.write, Action.comment}),
        ("can_edit", {Action.edit, Action.status_update}),
        ("is_preparer", {Action.prepare}),
    ],
)
def test_flag_to_action_mapping(engine, people, contract, flag, actions):
    engine.set_permission(
        people["admin"], ResourcePermission(employee_id=people["e2"].id, contract_id=5, **{flag: True})
    )
    allowed = {a for a, d in engine.decisions(people["e2"], contract).items() if d.allowed}
    assert allowed == actions


def test_require_raises_forbidden_on_deny(engine, people, contract):
    with pytest.raises(Forbidden):
        engine.require(people["c2"], Action.read, contract)


def test_require_returns_decision_when_allowed(engine, people, contract):
    assert engine.require(people["c1"], Action.comment, contract) is Decision.owner_match


# ---------------------------------------------------------------------------
# Grant administration
# ---------------------------------------------------------------------------


def test_non_admin_cannot_write_grants(engine, people):
    record = ResourcePermission(employee_id=people["e2"].id, contract_id=5, can_read=True)
    with pytest.raises(Forbidden):
        engine.set_permission(people["e1"], record)


def test_grant_to_client_is_rejected(engine, people):
    with pytest.raises(ResourceNotFound):
        engine.set_permission(people["admin"], ResourcePermission(employee_id=people["c1"].id, contract_id=5))


def test_grant_to_unknown_user_is_rejected(engine, people):
    with pytest.raises(ResourceNotFound):
        engine.set_permission(people["admin"], ResourcePermission(employee_id="missing", contract_id=5))


def test_set_permission_replaces_all_flags(engine, people):
    admin, e2 = people["admin"], people["e2"]
    engine.set_permission(admin, ResourcePermission(employee_id=e2.id, contract_id=5, can_read=True, can_write=True))
    saved = engine.set_permission(admin, ResourcePermission(employee_id=e2.id, contract_id=5, can_edit=True))
    assert saved == ResourcePermission(employee_id=e2.id, contract_id=5, can_edit=True)
    assert len(engine.list_permissions(admin, e2.id)) == 1


def test_list_permissions_requires_admin(engine, people):
    with pytest.raises(Forbidden):
        engine.list_permissions(people["e2"], people["e2"].id)
