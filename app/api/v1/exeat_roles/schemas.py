from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from app.core.enums import ExeatRoleName


class ExeatRoleResponse(BaseModel):
    id: UUID
    name: str
    display_name: str
    description: Optional[str] = None
    actionable_statuses: List[str]


class RoleAssign(BaseModel):
    role: ExeatRoleName


class StaffRolesResponse(BaseModel):
    staff_id: UUID
    roles: List[str]
    actionable_statuses: List[str]


class RoleAssignmentResponse(BaseModel):
    staff_id: UUID
    role: str
    assigned_by: Optional[UUID] = None
    created_at: datetime
