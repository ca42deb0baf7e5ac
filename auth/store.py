"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository for users and resource permissions; SqlOTPStore is
the repository for one-time-code challenges. _row_to_* functions are the
mappers. Services and routes never touch SQL directly.

These are the storage-collaborator operations the auth core consumes:
  get_user_by_email, get_user_by_id, upsert_user,
  get_permission(employee_id, contract_id), set_permission(record)

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  Every method opens a short-lived connection. Updates for a single key are
  last-writer-wins; nothing here needs a cross-key transaction. The OTP
  consume step is a compare-and-set (UPDATE ... WHERE consumed = 0) so two
  concurrent verifications of the same code cannot both succeed.

Layer rule: no imports from api/ or contracts/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import PERMISSION_FLAGS, Channel, OTPChallenge, ResourcePermission, Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.client.value),
    Column("contact_number", String(32)),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("address", Text),
    Column("pan_number", String(10)),
    Column("aadhaar_number", String(12)),
    Column("employee_code", String(50)),
    Column("is_active", Boolean, nullable=False, server_default="0"),
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("mobile_verified", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_permissions = Table(
    "resource_permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("employee_id", String(32), nullable=False),
    Column("contract_id", Integer, nullable=False),
    Column("can_read", Boolean, nullable=False, server_default="0"),
    Column("can_write", Boolean, nullable=False, server_default="0"),
    Column("can_edit", Boolean, nullable=False, server_default="0"),
    Column("can_delete", Boolean, nullable=False, server_default="0"),
    Column("is_reviewer", Boolean, nullable=False, server_default="0"),
    Column("is_preparer", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("employee_id", "contract_id", name="uq_permission_employee_contract"),
)

_otp_challenges = Table(
    "otp_challenges",
    metadata,
    Column("subject_id", String(32), nullable=False),
    Column("channel", String(10), nullable=False),
    Column("code", String(10), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("consumed", Boolean, nullable=False, server_default="0"),
    PrimaryKeyConstraint("subject_id", "channel"),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def build_engine(db_url: str) -> Engine:
    """Create an engine for db_url and make sure every auth table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


def to_iso(value: datetime) -> str:
    # Fixed width so ISO strings compare in chronological order inside SQL.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# User + permission repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and ResourcePermission entities.

    Usage:
        store = UserStore("sqlite:///portal.db")
        user_id = store.create_user(User(email="a@x.com", password_hash=h))
        user = store.get_user_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if db_url is None:
                raise ValueError("UserStore needs either db_url or engine")
            engine = build_engine(db_url)
        self.engine: Engine = engine

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The CredentialStore translates that into DuplicateEmail so two
        concurrent registrations for one address cannot both win.
        """
        user_id = user.id or uuid.uuid4().hex
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(_users.insert().values(id=user_id, created_at=now, updated_at=now, **_user_values(user)))
            conn.commit()
        return user_id

    def get_user_by_email(self, email: str) -> User | None:
        """Exact match. Callers normalise the address before asking."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def upsert_user(self, user: User) -> User:
        """Insert the user if it has no id or the id is unknown, else replace its fields."""
        if user.id is not None:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.update()
                    .where(_users.c.id == user.id)
                    .values(updated_at=_now_iso(), **_user_values(user))
                )
                conn.commit()
            if result.rowcount > 0:
                return self.get_user_by_id(user.id)
        user_id = self.create_user(user)
        return self.get_user_by_id(user_id)

    def update_user(self, user_id: str, **fields) -> bool:
        """Update individual columns on an existing user.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "role" in fields and isinstance(fields["role"], Role):
            fields["role"] = fields["role"].value
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def list_users(self, role: Role | None = None) -> list[User]:
        query = _users.select().order_by(_users.c.email)
        if role is not None:
            query = query.where(_users.c.role == role.value)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_active_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.admin.value) & (_users.c.is_active.is_(True)))
            ).scalar()
        return result or 0

    def update_last_login(self, user_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Resource permissions
    # ------------------------------------------------------------------

    def get_permission(self, employee_id: str, contract_id: int) -> ResourcePermission | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _permissions.select().where(
                    (_permissions.c.employee_id == employee_id) & (_permissions.c.contract_id == contract_id)
                )
            ).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self, employee_id: str) -> list[ResourcePermission]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _permissions.select()
                .where(_permissions.c.employee_id == employee_id)
                .order_by(_permissions.c.contract_id)
            ).fetchall()
        return [_row_to_permission(r) for r in rows]

    def set_permission(self, record: ResourcePermission) -> ResourcePermission:
        """Upsert the row for (employee_id, contract_id), replacing all six flags.

        UPDATE first, INSERT if nothing matched. A concurrent INSERT for the
        same key trips the UNIQUE constraint; the loser retries as an UPDATE
        so the later write still wins.
        """
        flags = {name: getattr(record, name) for name in PERMISSION_FLAGS}
        key = (_permissions.c.employee_id == record.employee_id) & (_permissions.c.contract_id == record.contract_id)
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_permissions.update().where(key).values(updated_at=now, **flags))
            if result.rowcount == 0:
                try:
                    conn.execute(
                        _permissions.insert().values(
                            employee_id=record.employee_id,
                            contract_id=record.contract_id,
                            created_at=now,
                            updated_at=now,
                            **flags,
                        )
                    )
                except IntegrityError:
                    conn.rollback()
                    conn.execute(_permissions.update().where(key).values(updated_at=now, **flags))
            conn.commit()
        return self.get_permission(record.employee_id, record.contract_id)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# OTP challenge repository
# ---------------------------------------------------------------------------


class SqlOTPStore:
    """OTPStore backed by the otp_challenges table.

    PRIMARY KEY(subject_id, channel) is what enforces "at most one live
    challenge per key": put() replaces the row.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get(self, subject_id: str, channel: Channel) -> OTPChallenge | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _otp_challenges.select().where(
                    (_otp_challenges.c.subject_id == subject_id) & (_otp_challenges.c.channel == channel.value)
                )
            ).fetchone()
        return _row_to_challenge(row) if row is not None else None

    def put(self, challenge: OTPChallenge) -> None:
        key = (_otp_challenges.c.subject_id == challenge.subject_id) & (
            _otp_challenges.c.channel == challenge.channel.value
        )
        values = {
            "code": challenge.code,
            "expires_at": to_iso(challenge.expires_at),
            "consumed": challenge.consumed,
        }
        with self.engine.connect() as conn:
            result = conn.execute(_otp_challenges.update().where(key).values(**values))
            if result.rowcount == 0:
                try:
                    conn.execute(
                        _otp_challenges.insert().values(
                            subject_id=challenge.subject_id, channel=challenge.channel.value, **values
                        )
                    )
                except IntegrityError:
                    conn.rollback()
                    conn.execute(_otp_challenges.update().where(key).values(**values))
            conn.commit()

    def mark_consumed(self, subject_id: str, channel: Channel, code: str) -> bool:
        """Flip consumed for the exact (key, code) if still unconsumed. True if this call won."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _otp_challenges.update()
                .where(
                    (_otp_challenges.c.subject_id == subject_id)
                    & (_otp_challenges.c.channel == channel.value)
                    & (_otp_challenges.c.code == code)
                    & (_otp_challenges.c.consumed.is_(False))
                )
                .values(consumed=True)
            )
            conn.commit()
        return result.rowcount > 0

    def purge_expired(self, cutoff: datetime) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_otp_challenges.delete().where(_otp_challenges.c.expires_at <= to_iso(cutoff)))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _user_values(user: User) -> dict:
    return {
        "email": user.email,
        "password_hash": user.password_hash,
        "role": Role(user.role).value,
        "contact_number": user.contact_number,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "address": user.address,
        "pan_number": user.pan_number,
        "aadhaar_number": user.aadhaar_number,
        "employee_code": user.employee_code,
        "is_active": user.is_active,
        "email_verified": user.email_verified,
        "mobile_verified": user.mobile_verified,
    }


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        contact_number=row.contact_number,
        first_name=row.first_name,
        last_name=row.last_name,
        address=row.address,
        pan_number=row.pan_number,
        aadhaar_number=row.aadhaar_number,
        employee_code=row.employee_code,
        is_active=bool(row.is_active),
        email_verified=bool(row.email_verified),
        mobile_verified=bool(row.mobile_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )


def _row_to_permission(row) -> ResourcePermission:
    return ResourcePermission(
        employee_id=row.employee_id,
        contract_id=row.contract_id,
        **{name: bool(getattr(row, name)) for name in PERMISSION_FLAGS},
    )


def _row_to_challenge(row) -> OTPChallenge:
    return OTPChallenge(
        subject_id=row.subject_id,
        channel=Channel(row.channel),
        code=row.code,
        expires_at=datetime.fromisoformat(row.expires_at),
        consumed=bool(row.consumed),
    )
