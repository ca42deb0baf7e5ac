"""
contracts/models.py -- Domain dataclass for a contract's ownership facts.

Pure data container. The store maps rows to Contract; the permission gate maps
Contract to auth.models.ResourceRef, which is all the PermissionEngine sees.
"""

from dataclasses import dataclass
from typing import Optional

from auth.models import ResourceRef


@dataclass
class Contract:
    """id is None before the record is written to the database."""

    name: str
    client_id: Optional[str] = None
    assigned_employee_id: Optional[str] = None
    created_by: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert

    def ref(self) -> ResourceRef:
        return ResourceRef(id=self.id, client_id=self.client_id, assigned_employee_id=self.assigned_employee_id)
