"""
contracts/store.py -- SQLAlchemy Core repository for contract ownership facts.

Pattern: Repository + Data Mapper, same as auth/store.py. The contracts table
here holds only the columns authorization depends on; the full contract record
belongs to the contract service.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.store import build_engine
from contracts.models import Contract

_metadata = MetaData()

_contracts = Table(
    "contracts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("client_id", String(32), index=True),
    Column("assigned_employee_id", String(32), index=True),
    Column("created_by", String(32)),
    Column("created_at", String(32), nullable=False),
)


class ContractStore:
    def __init__(self, db_url: Optional[str] = None, engine: Optional[Engine] = None) -> None:
        if engine is None:
            if db_url is None:
                raise ValueError("ContractStore needs either db_url or engine")
            engine = build_engine(db_url)
        self.engine: Engine = engine
        _metadata.create_all(self.engine)

    def create_contract(self, contract: Contract) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _contracts.insert().values(
                    name=contract.name,
                    client_id=contract.client_id,
                    assigned_employee_id=contract.assigned_employee_id,
                    created_by=contract.created_by,
                    created_at=datetime.now(timezone.utc).isoformat(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_contract(self, contract_id: int) -> Optional[Contract]:
        with self.engine.connect() as conn:
            row = conn.execute(_contracts.select().where(_contracts.c.id == contract_id)).fetchone()
        return _row_to_contract(row) if row is not None else None

    def list_contracts(
        self, client_id: Optional[str] = None, assigned_employee_id: Optional[str] = None
    ) -> list[Contract]:
        """All contracts, or only those matching the given owner column."""
        query = _contracts.select().order_by(_contracts.c.id)
        if client_id is not None:
            query = query.where(_contracts.c.client_id == client_id)
        if assigned_employee_id is not None:
            query = query.where(_contracts.c.assigned_employee_id == assigned_employee_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_contract(r) for r in rows]

    def rename_contract(self, contract_id: int, name: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_contracts.update().where(_contracts.c.id == contract_id).values(name=name))
            conn.commit()
        return result.rowcount > 0

    def assign_employee(self, contract_id: int, employee_id: Optional[str]) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _contracts.update().where(_contracts.c.id == contract_id).values(assigned_employee_id=employee_id)
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_contract(row) -> Contract:
    return Contract(
        id=row.id,
        name=row.name,
        client_id=row.client_id,
        assigned_employee_id=row.assigned_employee_id,
        created_by=row.created_by,
        created_at=row.created_at,
    )
