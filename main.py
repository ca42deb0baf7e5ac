#!/usr/bin/env python3
"""
ContractPortal -- operator CLI for the identity and access-control core.

Usage:
  python main.py create-admin admin@example.com
  python main.py create-admin admin@example.com --password 's3cret-pass'
  python main.py grant EMPLOYEE_ID 5 --read --write
  python main.py grant EMPLOYEE_ID 5                 # clears every flag
  python main.py users
  python main.py users --role employee

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the portal database (default: sqlite file in the repo root)
  BCRYPT_ROUNDS bcrypt cost factor for new password hashes (default: 12)

The CLI talks to the stores directly; it does not need the API server running.
"""

import argparse
import asyncio
import getpass
import sys

from auth.credentials import CredentialStore
from auth.errors import AuthError
from auth.models import PERMISSION_FLAGS, IdentityContext, ResourcePermission, Role
from auth.permissions import PermissionEngine
from auth.store import UserStore
from contracts.store import ContractStore
from core.config import get_settings

_MIN_PASSWORD_LENGTH = 8

# The CLI acts with operator authority when it writes grants.
_OPERATOR = IdentityContext(id="cli", role=Role.admin)


def _read_password(provided: str | None) -> str | None:
    """Return the password from the flag, or prompt twice for it."""
    if provided is not None:
        return provided
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm:  ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def _create_admin(store: UserStore, args: argparse.Namespace) -> int:
    password = _read_password(args.password)
    if password is None:
        return 1
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return 1

    settings = get_settings()
    credentials = CredentialStore(store, rounds=settings.bcrypt_rounds, workers=1)
    try:
        user = asyncio.run(
            credentials.create_active_user(
                args.email,
                password,
                Role.admin,
                first_name=args.first_name,
                last_name=args.last_name,
            )
        )
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        credentials.close()
    print(f"  Admin {user.email} created (id {user.id}).")
    return 0


def _grant(store: UserStore, args: argparse.Namespace) -> int:
    if ContractStore(engine=store.engine).get_contract(args.contract_id) is None:
        print(f"  [!] Contract {args.contract_id} not found.")
        return 1
    engine = PermissionEngine(store)
    record = ResourcePermission(
        employee_id=args.employee_id,
        contract_id=args.contract_id,
        can_read=args.read,
        can_write=args.write,
        can_edit=args.edit,
        can_delete=args.delete,
        is_reviewer=args.reviewer,
        is_preparer=args.preparer,
    )
    try:
        saved = engine.set_permission(_OPERATOR, record)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    granted = [name for name in PERMISSION_FLAGS if getattr(saved, name)]
    print(f"  Contract {saved.contract_id} for {saved.employee_id}: {', '.join(granted) or 'no capabilities'}")
    return 0


def _users(store: UserStore, args: argparse.Namespace) -> int:
    role = Role(args.role) if args.role else None
    users = store.list_users(role=role)
    if not users:
        print("  No users.")
        return 0
    for user in users:
        status = "active" if user.is_active else user.registration_state.value
        if user.registration_complete and not user.is_active:
            status = "deactivated"
        print(f"  {user.id}  {user.role.value:<8}  {status:<15}  {user.email}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="contractportal",
        description="Operator tasks for the ContractPortal identity and access-control core.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin admin@example.com
  python main.py grant 3f2c... 5 --read --write --reviewer
  python main.py users --role client
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_admin = sub.add_parser("create-admin", help="Create an active admin account")
    p_admin.add_argument("email", help="Login email for the new admin")
    p_admin.add_argument("--password", default=None, help="Password (prompted when omitted)")
    p_admin.add_argument("--first-name", default=None)
    p_admin.add_argument("--last-name", default=None)

    p_grant = sub.add_parser(
        "grant",
        help="Set an employee's capabilities on one contract (flags not given are cleared)",
    )
    p_grant.add_argument("employee_id", help="User id of the employee")
    p_grant.add_argument("contract_id", type=int, help="Contract id")
    p_grant.add_argument("--read", action="store_true", help="Read the contract")
    p_grant.add_argument("--write", action="store_true", help="Write and comment")
    p_grant.add_argument("--edit", action="store_true", help="Edit and update status")
    p_grant.add_argument("--delete", action="store_true", help="Delete")
    p_grant.add_argument("--reviewer", action="store_true", help="Review")
    p_grant.add_argument("--preparer", action="store_true", help="Prepare")

    p_users = sub.add_parser("users", help="List accounts")
    p_users.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=None,
        help="Only list accounts with this role",
    )

    args = parser.parse_args()
    handlers = {"create-admin": _create_admin, "grant": _grant, "users": _users}
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return

    store = UserStore(get_settings().database_url)
    try:
        code = handler(store, args)
    finally:
        store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
