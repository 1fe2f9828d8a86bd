"""
Exeat workflow engine: owns the transition table.

Every transition (staff approve/reject, parent consent approve/decline, consent
send) runs in one transaction: ledger row, status change, next-stage row and
audit entry commit together or not at all. Status and ledger writes are
compare-and-swap updates guarded by the expected current value, so the loser of
a concurrent race gets ConflictError instead of a second effect. Notifications
go out after commit and never fail the transition.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.rbac import STAGE_ROLES, can_send_consent, ensure_can_act
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.enums import ApprovalStatus, ConsentStatus, ExeatStatus
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from app.core.models import ExeatApproval, ExeatRequest, ParentConsent
from app.core.notifier import Notifier, deliver

from . import audit_service

log = structlog.get_logger(__name__)


# Forward table. parent_consent only advances through the consent protocol.
FORWARD_TRANSITIONS: Dict[ExeatStatus, ExeatStatus] = {
    ExeatStatus.CMD_REVIEW: ExeatStatus.DEAN_REVIEW,
    ExeatStatus.DEPUTY_DEAN_REVIEW: ExeatStatus.DEAN_REVIEW,
    ExeatStatus.DEAN_REVIEW: ExeatStatus.PARENT_CONSENT,
    ExeatStatus.PARENT_CONSENT: ExeatStatus.HOSTEL_SIGNOUT,
    ExeatStatus.HOSTEL_SIGNOUT: ExeatStatus.SECURITY_SIGNOUT,
    ExeatStatus.SECURITY_SIGNOUT: ExeatStatus.SECURITY_SIGNIN,
    ExeatStatus.SECURITY_SIGNIN: ExeatStatus.HOSTEL_SIGNIN,
    ExeatStatus.HOSTEL_SIGNIN: ExeatStatus.COMPLETED,
}

PIPELINE_ORDER: List[ExeatStatus] = [
    ExeatStatus.CMD_REVIEW,
    ExeatStatus.DEPUTY_DEAN_REVIEW,
    ExeatStatus.DEAN_REVIEW,
    ExeatStatus.PARENT_CONSENT,
    ExeatStatus.HOSTEL_SIGNOUT,
    ExeatStatus.SECURITY_SIGNOUT,
    ExeatStatus.SECURITY_SIGNIN,
    ExeatStatus.HOSTEL_SIGNIN,
    ExeatStatus.COMPLETED,
]


def initial_status(is_medical: bool) -> ExeatStatus:
    return ExeatStatus.CMD_REVIEW if is_medical else ExeatStatus.DEPUTY_DEAN_REVIEW


def next_status(current: str) -> ExeatStatus:
    try:
        return FORWARD_TRANSITIONS[ExeatStatus(current)]
    except (KeyError, ValueError):
        raise ForbiddenError(f"No forward transition from status '{current}'.")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def consent_link(token: str, action: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/api/v1/parent/exeat-consent/{token}/{action}"


async def get_request(db: AsyncSession, exeat_id: UUID) -> ExeatRequest:
    exeat = await db.get(ExeatRequest, exeat_id)
    if not exeat:
        raise NotFoundError("Exeat request not found.")
    return exeat


# ----- Stage bookkeeping (inside the caller's transaction) -----

def open_stage(db: AsyncSession, exeat: ExeatRequest, status: ExeatStatus) -> Optional[ExeatApproval]:
    """Create the pending ledger row for a staff-gated stage."""
    role = STAGE_ROLES.get(status)
    if role is None:
        return None
    entry = ExeatApproval(
        exeat_request_id=exeat.id,
        role=role.value,
        stage=status.value,
        status=ApprovalStatus.pending.value,
    )
    db.add(entry)
    return entry


async def move_status(db: AsyncSession, exeat: ExeatRequest, from_status: str, to_status: ExeatStatus) -> None:
    result = await db.execute(
        update(ExeatRequest)
        .where(ExeatRequest.id == exeat.id, ExeatRequest.status == from_status)
        .values(status=to_status.value, updated_at=datetime.utcnow())
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        raise ConflictError(f"This request is no longer at the '{from_status}' stage.")


async def _decide_stage(
    db: AsyncSession,
    exeat: ExeatRequest,
    stage: str,
    acting_role: str,
    staff_id: UUID,
    decision: ApprovalStatus,
    comment: Optional[str],
) -> ExeatApproval:
    """Flip the stage's pending ledger row to ``decision``; a second decision is a conflict."""
    stage_role = STAGE_ROLES[ExeatStatus(stage)].value
    entry = (
        await db.execute(
            select(ExeatApproval).where(
                ExeatApproval.exeat_request_id == exeat.id,
                ExeatApproval.stage == stage,
            )
        )
    ).scalar_one_or_none()
    if entry is not None and entry.status != ApprovalStatus.pending.value:
        raise ConflictError(f"This request has already been {entry.status} at the '{stage_role}' stage.")

    now = datetime.utcnow()
    if entry is None:
        # Requests re-entering a stage by administrative action may lack the pending row
        entry = ExeatApproval(
            exeat_request_id=exeat.id,
            role=stage_role,
            stage=stage,
            staff_id=staff_id,
            acting_role=acting_role,
            status=decision.value,
            comment=comment,
            decided_at=now,
        )
        db.add(entry)
        await db.flush()
        return entry

    result = await db.execute(
        update(ExeatApproval)
        .where(
            ExeatApproval.id == entry.id,
            ExeatApproval.status == ApprovalStatus.pending.value,
        )
        .values(
            status=decision.value,
            staff_id=staff_id,
            acting_role=acting_role,
            comment=comment,
            decided_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        raise ConflictError(f"This request has already been decided at the '{stage_role}' stage.")
    return entry


async def _issue_consent(
    db: AsyncSession,
    exeat: ExeatRequest,
    method: str,
    message: Optional[str],
    sent_by: Optional[UUID],
) -> ParentConsent:
    """Create the consent row, or re-issue token and expiry on a still-pending one."""
    consent = (
        await db.execute(select(ParentConsent).where(ParentConsent.exeat_request_id == exeat.id))
    ).scalar_one_or_none()
    token = secrets.token_urlsafe(32)
    expires_at = _utcnow() + timedelta(hours=settings.consent_expiry_hours)
    if consent is None:
        consent = ParentConsent(
            exeat_request_id=exeat.id,
            consent_token=token,
            consent_status=ConsentStatus.pending.value,
            method=method,
            message=message,
            sent_by=sent_by,
            expires_at=expires_at,
        )
        db.add(consent)
    else:
        if consent.consent_status != ConsentStatus.pending.value:
            raise ConflictError(f"Parent consent has already been {consent.consent_status}.")
        consent.consent_token = token
        consent.expires_at = expires_at
        consent.method = method
        consent.message = message
        consent.sent_by = sent_by
    await db.flush()
    return consent


async def _commit(db: AsyncSession, exeat_id: Optional[UUID], action: str) -> None:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        log.warning("exeat_transition_conflict", exeat_id=str(exeat_id) if exeat_id else None, action=action, error=str(e.orig))
        raise ConflictError("This action conflicts with another decision on the same request.")
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("exeat_transition_failed", exeat_id=str(exeat_id) if exeat_id else None, action=action, error=str(e))
        raise InternalError()


async def run_atomically(db: AsyncSession, exeat_id: Optional[UUID], action: str, steps) -> None:
    """Run ``steps`` and commit atomically; any failure rolls the whole transition back."""
    try:
        await steps()
    except ServiceError:
        await db.rollback()
        raise
    except IntegrityError as e:
        await db.rollback()
        log.warning("exeat_transition_conflict", exeat_id=str(exeat_id) if exeat_id else None, action=action, error=str(e.orig))
        raise ConflictError("This action conflicts with another decision on the same request.")
    except SQLAlchemyError as e:
        await db.rollback()
        log.error("exeat_transition_failed", exeat_id=str(exeat_id) if exeat_id else None, action=action, error=str(e))
        raise InternalError()
    await _commit(db, exeat_id, action)


# ----- Notifications (after commit, best effort) -----

async def notify_student_status(db: AsyncSession, notifier: Notifier, exeat: ExeatRequest) -> bool:
    student = await db.get(User, exeat.student_id)
    if not student:
        log.warning("student_missing_for_notification", exeat_id=str(exeat.id))
        return False
    body = (
        f"Dear {student.full_name},\n\n"
        "Your exeat request status has changed.\n\n"
        f"Current status: {exeat.status}\n"
        f"Reason: {exeat.reason}\n\n"
        "Thank you.\n"
    )
    return await deliver(notifier, student.email, "Exeat Request Status Updated", body)


async def deliver_consent(db: AsyncSession, notifier: Notifier, exeat: ExeatRequest, consent: ParentConsent) -> bool:
    student = await db.get(User, exeat.student_id)
    student_name = student.full_name if student else ""
    expiry_text = as_utc(consent.expires_at).strftime("%B %d, %Y %H:%M UTC")
    body = (
        "Hello,\n\n"
        f'{student_name} has requested permission to leave campus for the following reason: "{exeat.reason}".\n'
        f"Destination: {exeat.destination}, from {exeat.departure_date} to {exeat.return_date}.\n\n"
    )
    if consent.message:
        body += f"{consent.message}\n\n"
    body += (
        f"Please review and provide your consent before {expiry_text}:\n\n"
        f"Approve: {consent_link(consent.consent_token, 'approve')}\n"
        f"Decline: {consent_link(consent.consent_token, 'decline')}\n\n"
        "Thank you for your support.\n"
    )
    subject = "Exeat Consent Request"
    ok = await deliver(notifier, exeat.parent_email, subject, body)
    if settings.consent_copy_email:
        await deliver(notifier, settings.consent_copy_email, subject, body)
    log.info(
        "parent_consent_delivered" if ok else "parent_consent_not_delivered",
        exeat_id=str(exeat.id),
        method=consent.method,
        expires_at=expiry_text,
    )
    return ok


# ----- Staff transitions -----

async def approve(
    db: AsyncSession,
    notifier: Notifier,
    exeat_id: UUID,
    actor: CurrentUser,
    comment: Optional[str] = None,
) -> ExeatRequest:
    """Approve the current stage and advance along the forward table."""
    exeat = await get_request(db, exeat_id)
    old_status = exeat.status
    acting_role = ensure_can_act(
        actor.roles, old_status, "You do not have permission to approve this request at this stage."
    )
    new_status = next_status(old_status)
    consent: Optional[ParentConsent] = None

    async def steps() -> None:
        nonlocal consent
        await _decide_stage(db, exeat, old_status, acting_role.value, actor.id, ApprovalStatus.approved, comment)
        await move_status(db, exeat, old_status, new_status)
        open_stage(db, exeat, new_status)
        if new_status == ExeatStatus.PARENT_CONSENT:
            consent = await _issue_consent(db, exeat, exeat.preferred_contact_mode, None, actor.id)
        await audit_service.record(
            db,
            actor.id,
            "approve",
            audit_service.TARGET_EXEAT_REQUEST,
            exeat.id,
            audit_service.transition_details(old_status, new_status.value, comment),
            actor_type="staff",
            from_status=old_status,
            to_status=new_status.value,
        )

    await run_atomically(db, exeat.id, "approve", steps)
    await db.refresh(exeat)
    log.info(
        "exeat_approved",
        exeat_id=str(exeat.id),
        staff_id=str(actor.id),
        acting_role=acting_role.value,
        old_status=old_status,
        new_status=exeat.status,
    )

    await notify_student_status(db, notifier, exeat)
    if consent is not None:
        await deliver_consent(db, notifier, exeat, consent)
    return exeat


async def reject(
    db: AsyncSession,
    notifier: Notifier,
    exeat_id: UUID,
    actor: CurrentUser,
    comment: str,
) -> ExeatRequest:
    """Reject at the current stage. Rejection is terminal from any stage."""
    if not comment or not comment.strip():
        raise ValidationError("A comment is required when rejecting a request.")
    exeat = await get_request(db, exeat_id)
    old_status = exeat.status
    acting_role = ensure_can_act(actor.roles, old_status, "You do not have permission to reject this request.")

    async def steps() -> None:
        await _decide_stage(db, exeat, old_status, acting_role.value, actor.id, ApprovalStatus.rejected, comment)
        await move_status(db, exeat, old_status, ExeatStatus.REJECTED)
        await audit_service.record(
            db,
            actor.id,
            "reject",
            audit_service.TARGET_EXEAT_REQUEST,
            exeat.id,
            audit_service.transition_details(old_status, ExeatStatus.REJECTED.value, comment),
            actor_type="staff",
            from_status=old_status,
            to_status=ExeatStatus.REJECTED.value,
        )

    await run_atomically(db, exeat.id, "reject", steps)
    await db.refresh(exeat)
    log.info(
        "exeat_rejected",
        exeat_id=str(exeat.id),
        staff_id=str(actor.id),
        acting_role=acting_role.value,
        old_status=old_status,
    )
    await notify_student_status(db, notifier, exeat)
    return exeat


async def send_parent_consent(
    db: AsyncSession,
    notifier: Notifier,
    exeat_id: UUID,
    actor: CurrentUser,
    method: str,
    message: Optional[str] = None,
) -> ParentConsent:
    """(Re)issue the consent token for a request at the parent_consent stage and deliver it."""
    exeat = await get_request(db, exeat_id)
    if exeat.status != ExeatStatus.PARENT_CONSENT.value:
        raise ForbiddenError("Parent consent can only be sent at the parent_consent stage.")
    if not can_send_consent(actor.roles):
        raise ForbiddenError("You do not have permission to send parent consent requests.")
    consent: Optional[ParentConsent] = None

    async def steps() -> None:
        nonlocal consent
        consent = await _issue_consent(db, exeat, method, message, actor.id)
        await audit_service.record(
            db,
            actor.id,
            "parent_consent_request",
            audit_service.TARGET_EXEAT_REQUEST,
            exeat.id,
            f"Parent consent requested | Method: {method}",
            actor_type="staff",
            from_status=exeat.status,
            to_status=exeat.status,
        )

    await run_atomically(db, exeat.id, "parent_consent_request", steps)
    await db.refresh(consent)
    log.info("parent_consent_sent", exeat_id=str(exeat.id), staff_id=str(actor.id), method=method)
    await deliver_consent(db, notifier, exeat, consent)
    return consent


# ----- Parent consent transitions -----

async def resolve_parent_consent(
    db: AsyncSession,
    notifier: Notifier,
    consent: ParentConsent,
    decision: ConsentStatus,
) -> bool:
    """
    Apply the parent's decision. Returns False when another caller resolved the
    token first; the consent row is then refreshed to the winning outcome.
    """
    exeat = await get_request(db, consent.exeat_request_id)
    old_status = exeat.status
    if decision == ConsentStatus.approved:
        new_status = next_status(ExeatStatus.PARENT_CONSENT.value)
        action = "parent_consent_approve"
        details = "Parent approved consent request"
    else:
        new_status = ExeatStatus.REJECTED
        action = "parent_consent_decline"
        details = "Parent declined consent request"
    won = True

    async def steps() -> None:
        nonlocal won
        result = await db.execute(
            update(ParentConsent)
            .where(
                ParentConsent.id == consent.id,
                ParentConsent.consent_status == ConsentStatus.pending.value,
            )
            .values(consent_status=decision.value, consent_timestamp=_utcnow(), updated_at=datetime.utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            won = False
            return
        await move_status(db, exeat, ExeatStatus.PARENT_CONSENT.value, new_status)
        open_stage(db, exeat, new_status)
        await audit_service.record(
            db,
            None,
            action,
            audit_service.TARGET_EXEAT_REQUEST,
            exeat.id,
            f"{audit_service.transition_details(old_status, new_status.value)} | {details}",
            actor_type="parent",
            from_status=old_status,
            to_status=new_status.value,
        )

    await run_atomically(db, exeat.id, action, steps)
    await db.refresh(consent)
    if not won:
        log.info("parent_consent_already_resolved", consent_id=str(consent.id), status=consent.consent_status)
        return False

    await db.refresh(exeat)
    log.info(
        "parent_consent_approved" if decision == ConsentStatus.approved else "parent_consent_declined",
        exeat_id=str(exeat.id),
        consent_id=str(consent.id),
        new_status=exeat.status,
    )
    await notify_student_status(db, notifier, exeat)
    return True
