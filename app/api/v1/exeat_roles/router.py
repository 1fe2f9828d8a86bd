from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import require_staff
from app.auth.rbac import require_exeat_role
from app.auth.schemas import CurrentUser
from app.core.enums import ExeatRoleName
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import service
from .schemas import ExeatRoleResponse, RoleAssign, RoleAssignmentResponse, StaffRolesResponse

router = APIRouter(prefix="/api/v1/exeat-roles", tags=["exeat-roles"])

require_role_manager = require_exeat_role(ExeatRoleName.ADMIN, ExeatRoleName.DEAN)


@router.get("", response_model=List[ExeatRoleResponse])
async def list_exeat_roles(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> List[ExeatRoleResponse]:
    """All exeat roles with the statuses each may act on."""
    return await service.list_roles(db)


@router.get("/staff/{staff_id}", response_model=StaffRolesResponse)
async def get_staff_roles(
    staff_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> StaffRolesResponse:
    try:
        return await service.get_staff_roles(db, staff_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/staff/{staff_id}",
    response_model=RoleAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_exeat_role(
    staff_id: UUID,
    payload: RoleAssign,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_role_manager),
) -> RoleAssignmentResponse:
    """Grant a role to a staff member. Admin or dean only."""
    try:
        return await service.assign_role(db, current_user, staff_id, payload.role.value)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/staff/{staff_id}/{role_name}", status_code=status.HTTP_204_NO_CONTENT)
async def unassign_exeat_role(
    staff_id: UUID,
    role_name: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_role_manager),
) -> None:
    try:
        await service.unassign_role(db, current_user, staff_id, role_name)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
