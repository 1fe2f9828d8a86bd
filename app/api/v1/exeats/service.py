"""Exeat submission, appeal, listings, history and dashboard counts."""

from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import StudentProfile
from app.auth.rbac import allowed_statuses
from app.auth.schemas import CurrentUser
from app.core.enums import ConsentStatus, ExeatRoleName, ExeatStatus, TERMINAL_STATUSES
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.core.models import AuditLog, ExeatApproval, ExeatCategory, ExeatRequest, ParentConsent
from app.core.notifier import Notifier, deliver

from . import audit_service, workflow
from .schemas import (
    ApprovalResponse,
    AuditLogResponse,
    DashboardAnalytics,
    DateCount,
    ExeatCategoryResponse,
    ExeatHistoryResponse,
    ExeatRequestCreate,
    ExeatRequestResponse,
    StaffDashboardResponse,
    StatusCount,
    StudentProfileResponse,
)

log = structlog.get_logger(__name__)

_TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]
_REQUEST_STATUSES = {s.value for s in ExeatStatus}

DASHBOARD_PENDING_STATUSES = [
    ExeatStatus.CMD_REVIEW.value,
    ExeatStatus.DEPUTY_DEAN_REVIEW.value,
    ExeatStatus.PARENT_CONSENT.value,
    ExeatStatus.DEAN_REVIEW.value,
]


def request_to_response(r: ExeatRequest) -> ExeatRequestResponse:
    return ExeatRequestResponse.model_validate(r)


async def _active_request_id(db: AsyncSession, student_id: UUID, exclude_id: Optional[UUID] = None) -> Optional[UUID]:
    q = select(ExeatRequest.id).where(
        ExeatRequest.student_id == student_id,
        ExeatRequest.status.not_in(_TERMINAL_VALUES),
    )
    if exclude_id is not None:
        q = q.where(ExeatRequest.id != exclude_id)
    return (await db.execute(q.limit(1))).scalar_one_or_none()


# ----- Student -----

async def list_categories(db: AsyncSession) -> List[ExeatCategoryResponse]:
    result = await db.execute(select(ExeatCategory).order_by(ExeatCategory.name))
    return [ExeatCategoryResponse.model_validate(c) for c in result.scalars().all()]


async def get_profile_snapshot(db: AsyncSession, student_id: UUID) -> StudentProfileResponse:
    profile = (
        await db.execute(select(StudentProfile).where(StudentProfile.user_id == student_id))
    ).scalar_one_or_none()
    if not profile:
        return StudentProfileResponse()
    return StudentProfileResponse(
        matric_no=profile.matric_no,
        parent_surname=profile.parent_surname,
        parent_othernames=profile.parent_othernames,
        parent_phone_no=profile.parent_phone_no,
        parent_phone_no_two=profile.parent_phone_no_two,
        parent_email=profile.parent_email,
        student_accommodation=profile.accommodation,
    )


async def submit_request(
    db: AsyncSession,
    notifier: Notifier,
    student: CurrentUser,
    payload: ExeatRequestCreate,
) -> ExeatRequest:
    """Create a request in its initial stage; one non-terminal request per student."""
    if payload.return_date < payload.departure_date:
        raise ValidationError("return_date must be on or after departure_date")
    category = await db.get(ExeatCategory, payload.category_id)
    if not category:
        raise NotFoundError("Exeat category not found.")
    if await _active_request_id(db, student.id):
        raise ConflictError(
            "You already have an active exeat request. Please wait until it is completed "
            "or rejected before submitting a new one."
        )

    snapshot = await get_profile_snapshot(db, student.id)
    status = workflow.initial_status(category.is_medical)
    exeat = ExeatRequest(
        student_id=student.id,
        category_id=category.id,
        is_medical=category.is_medical,
        reason=payload.reason.strip(),
        destination=payload.destination.strip(),
        departure_date=payload.departure_date,
        return_date=payload.return_date,
        preferred_contact_mode=payload.preferred_contact_mode.value,
        status=status.value,
        **snapshot.model_dump(),
    )

    async def steps() -> None:
        db.add(exeat)
        # Partial unique index closes the race between the check above and this insert
        await db.flush()
        workflow.open_stage(db, exeat, status)
        await audit_service.record(
            db,
            student.id,
            "submit",
            audit_service.TARGET_EXEAT_REQUEST,
            exeat.id,
            f"Exeat request submitted with status {status.value}",
            actor_type="student",
            to_status=status.value,
        )

    await workflow.run_atomically(db, None, "submit", steps)
    await db.refresh(exeat)
    log.info("exeat_submitted", exeat_id=str(exeat.id), student_id=str(student.id), status=exeat.status)

    await deliver(
        notifier,
        student.email,
        "Exeat Request Submitted",
        "Your exeat request has been submitted and is now under review.\n\n"
        f"Reason: {exeat.reason}\nStatus: {exeat.status}\n",
    )
    return exeat


async def list_student_requests(db: AsyncSession, student_id: UUID) -> List[ExeatRequestResponse]:
    result = await db.execute(
        select(ExeatRequest)
        .where(ExeatRequest.student_id == student_id)
        .order_by(ExeatRequest.created_at.desc())
    )
    return [request_to_response(r) for r in result.scalars().all()]


async def get_student_request(db: AsyncSession, student_id: UUID, exeat_id: UUID) -> ExeatRequest:
    exeat = await db.get(ExeatRequest, exeat_id)
    if not exeat or exeat.student_id != student_id:
        raise NotFoundError("Exeat request not found.")
    return exeat


async def appeal_request(
    db: AsyncSession,
    student: CurrentUser,
    exeat_id: UUID,
    appeal_reason: str,
) -> ExeatRequest:
    """Re-open a rejected request as an appeal. Re-entry into the pipeline is an administrative act."""
    exeat = await get_student_request(db, student.id, exeat_id)
    if exeat.status != ExeatStatus.REJECTED.value:
        raise ForbiddenError("Only rejected exeat requests can be appealed.")
    if await _active_request_id(db, student.id, exclude_id=exeat.id):
        raise ConflictError("You already have an active exeat request; it must finish before appealing another.")
    reason = appeal_reason.strip()
    if not reason:
        raise ValidationError("appeal_reason is required")

    async def steps() -> None:
        result = await db.execute(
            update(ExeatRequest)
            .where(ExeatRequest.id == exeat.id, ExeatRequest.status == ExeatStatus.REJECTED.value)
            .values(status=ExeatStatus.APPEAL.value, appeal_reason=reason, updated_at=datetime.utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise ConflictError("This request is no longer rejected.")
        await audit_service.record(
            db,
            student.id,
            "appeal",
            audit_service.TARGET_EXEAT_REQUEST,
            exeat.id,
            f"{audit_service.transition_details(ExeatStatus.REJECTED.value, ExeatStatus.APPEAL.value)} | Appeal: {reason}",
            actor_type="student",
            from_status=ExeatStatus.REJECTED.value,
            to_status=ExeatStatus.APPEAL.value,
        )

    await workflow.run_atomically(db, exeat.id, "appeal", steps)
    await db.refresh(exeat)
    log.info("exeat_appealed", exeat_id=str(exeat.id), student_id=str(student.id))
    return exeat


async def get_history(db: AsyncSession, exeat: ExeatRequest) -> ExeatHistoryResponse:
    audit_logs = (
        await db.execute(
            select(AuditLog)
            .where(
                AuditLog.target_type == audit_service.TARGET_EXEAT_REQUEST,
                AuditLog.target_id == exeat.id,
            )
            .order_by(AuditLog.timestamp.desc())
        )
    ).scalars().all()
    approvals = (
        await db.execute(
            select(ExeatApproval)
            .where(ExeatApproval.exeat_request_id == exeat.id)
            .order_by(ExeatApproval.updated_at.desc())
        )
    ).scalars().all()
    return ExeatHistoryResponse(
        exeat_request=request_to_response(exeat),
        approvals=[ApprovalResponse.model_validate(a) for a in approvals],
        audit_logs=[AuditLogResponse.model_validate(a) for a in audit_logs],
    )


# ----- Staff -----

def actionable_statuses(actor: CurrentUser) -> List[str]:
    """Request statuses the staff member may act on; ``parent_review`` is a capability, not a status."""
    return sorted(s for s in allowed_statuses(actor.roles) if s in _REQUEST_STATUSES)


async def list_actionable_requests(
    db: AsyncSession,
    actor: CurrentUser,
    status: Optional[str] = None,
) -> List[ExeatRequestResponse]:
    allowed = actionable_statuses(actor)
    if not allowed:
        raise ForbiddenError("No access to exeat requests.")
    q = select(ExeatRequest).where(ExeatRequest.status.in_(allowed))
    if status:
        q = q.where(ExeatRequest.status == status)
    result = await db.execute(q.order_by(ExeatRequest.created_at.desc()))
    return [request_to_response(r) for r in result.scalars().all()]


async def get_staff_request(
    db: AsyncSession,
    actor: CurrentUser,
    exeat_id: UUID,
    message: str = "You do not have permission to view this request.",
) -> ExeatRequest:
    exeat = await workflow.get_request(db, exeat_id)
    if exeat.status not in allowed_statuses(actor.roles):
        raise ForbiddenError(message)
    return exeat


async def get_dashboard(db: AsyncSession, actor: CurrentUser) -> StaffDashboardResponse:
    """Counts over requests the staff member has decided; admins and deans also get analytics."""
    touched = select(ExeatApproval.exeat_request_id).where(ExeatApproval.staff_id == actor.id)

    async def _count(*criteria) -> int:
        q = select(func.count(ExeatRequest.id)).where(ExeatRequest.id.in_(touched), *criteria)
        return (await db.execute(q)).scalar_one()

    data = StaffDashboardResponse(
        total_requests=await _count(),
        pending_requests=await _count(ExeatRequest.status.in_(DASHBOARD_PENDING_STATUSES)),
        approved_requests=await _count(ExeatRequest.status == ExeatStatus.COMPLETED.value),
        rejected_requests=await _count(ExeatRequest.status == ExeatStatus.REJECTED.value),
    )

    if {ExeatRoleName.ADMIN.value, ExeatRoleName.DEAN.value} & set(actor.roles):
        by_status = await db.execute(
            select(ExeatRequest.status, func.count(ExeatRequest.id))
            .group_by(ExeatRequest.status)
            .order_by(ExeatRequest.status)
        )
        day = func.date(ExeatRequest.created_at)
        by_date = await db.execute(
            select(day, func.count(ExeatRequest.id))
            .where(ExeatRequest.created_at >= datetime.utcnow() - timedelta(days=30))
            .group_by(day)
            .order_by(day)
        )
        data.analytics = DashboardAnalytics(
            by_status=[StatusCount(status=s, count=c) for s, c in by_status.all()],
            by_date=[DateCount(day=d, count=c) for d, c in by_date.all()],
        )
    return data


async def remind_pending_consents(db: AsyncSession, notifier: Notifier) -> int:
    """Re-deliver every pending, unexpired consent request. Returns how many were sent."""
    now = workflow.as_utc(datetime.utcnow())
    consents = (
        await db.execute(
            select(ParentConsent).where(ParentConsent.consent_status == ConsentStatus.pending.value)
        )
    ).scalars().all()
    reminded = 0
    for consent in consents:
        if workflow.as_utc(consent.expires_at) <= now:
            continue
        exeat = await db.get(ExeatRequest, consent.exeat_request_id)
        if not exeat or exeat.status != ExeatStatus.PARENT_CONSENT.value:
            continue
        if await workflow.deliver_consent(db, notifier, exeat, consent):
            reminded += 1
    log.info("parent_consent_reminders_sent", reminded=reminded)
    return reminded
