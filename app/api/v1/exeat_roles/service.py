"""Role registry: which staff hold which exeat roles. Assignments are audit-logged."""

from typing import List
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.exeats import audit_service
from app.auth.dependencies import load_role_names
from app.auth.models import ExeatRole, StaffExeatRole, User
from app.auth.rbac import ROLE_STATUS_MAP, allowed_statuses
from app.auth.schemas import CurrentUser
from app.core.enums import ExeatRoleName, UserType
from app.core.exceptions import ConflictError, NotFoundError

from .schemas import ExeatRoleResponse, RoleAssignmentResponse, StaffRolesResponse

log = structlog.get_logger(__name__)


def _role_statuses(name: str) -> List[str]:
    try:
        return sorted(ROLE_STATUS_MAP[ExeatRoleName(name)])
    except ValueError:
        return []


async def list_roles(db: AsyncSession) -> List[ExeatRoleResponse]:
    result = await db.execute(select(ExeatRole).order_by(ExeatRole.name))
    return [
        ExeatRoleResponse(
            id=r.id,
            name=r.name,
            display_name=r.display_name,
            description=r.description,
            actionable_statuses=_role_statuses(r.name),
        )
        for r in result.scalars().all()
    ]


async def _get_staff(db: AsyncSession, staff_id: UUID) -> User:
    staff = await db.get(User, staff_id)
    if not staff or staff.user_type != UserType.STAFF.value:
        raise NotFoundError("Staff member not found.")
    return staff


async def _get_role(db: AsyncSession, name: str) -> ExeatRole:
    role = (await db.execute(select(ExeatRole).where(ExeatRole.name == name))).scalar_one_or_none()
    if not role:
        raise NotFoundError(f"Exeat role '{name}' not found.")
    return role


async def get_staff_roles(db: AsyncSession, staff_id: UUID) -> StaffRolesResponse:
    await _get_staff(db, staff_id)
    roles = await load_role_names(db, staff_id)
    return StaffRolesResponse(
        staff_id=staff_id,
        roles=roles,
        actionable_statuses=sorted(allowed_statuses(roles)),
    )


async def assign_role(
    db: AsyncSession,
    actor: CurrentUser,
    staff_id: UUID,
    role_name: str,
) -> RoleAssignmentResponse:
    await _get_staff(db, staff_id)
    role = await _get_role(db, role_name)
    existing = (
        await db.execute(
            select(StaffExeatRole).where(
                StaffExeatRole.staff_id == staff_id,
                StaffExeatRole.exeat_role_id == role.id,
            )
        )
    ).scalar_one_or_none()
    if existing:
        raise ConflictError(f"Staff member already holds the '{role_name}' role.")

    assignment = StaffExeatRole(staff_id=staff_id, exeat_role_id=role.id, assigned_by=actor.id)
    db.add(assignment)
    await audit_service.record(
        db,
        actor.id,
        "assign_exeat_role",
        audit_service.TARGET_STAFF,
        staff_id,
        f"Assigned role {role_name}",
        actor_type="staff",
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Staff member already holds the '{role_name}' role.")
    await db.refresh(assignment)
    log.info("exeat_role_assigned", staff_id=str(staff_id), role=role_name, assigned_by=str(actor.id))
    return RoleAssignmentResponse(
        staff_id=staff_id,
        role=role_name,
        assigned_by=assignment.assigned_by,
        created_at=assignment.created_at,
    )


async def unassign_role(
    db: AsyncSession,
    actor: CurrentUser,
    staff_id: UUID,
    role_name: str,
) -> None:
    await _get_staff(db, staff_id)
    role = await _get_role(db, role_name)
    assignment = (
        await db.execute(
            select(StaffExeatRole).where(
                StaffExeatRole.staff_id == staff_id,
                StaffExeatRole.exeat_role_id == role.id,
            )
        )
    ).scalar_one_or_none()
    if not assignment:
        raise NotFoundError(f"Staff member does not hold the '{role_name}' role.")
    await db.delete(assignment)
    await audit_service.record(
        db,
        actor.id,
        "unassign_exeat_role",
        audit_service.TARGET_STAFF,
        staff_id,
        f"Removed role {role_name}",
        actor_type="staff",
    )
    await db.commit()
    log.info("exeat_role_unassigned", staff_id=str(staff_id), role=role_name, removed_by=str(actor.id))
