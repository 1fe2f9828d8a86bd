from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import require_staff
from app.auth.rbac import require_exeat_role
from app.auth.schemas import CurrentUser
from app.core.enums import ExeatRoleName
from app.core.exceptions import ServiceError
from app.core.notifier import Notifier, get_notifier
from app.db.session import get_db

from . import service, workflow
from .schemas import (
    ConsentReminderResponse,
    ExeatApprove,
    ExeatHistoryResponse,
    ExeatReject,
    ExeatRequestResponse,
    MessageWithConsent,
    MessageWithExeat,
    ParentConsentResponse,
    SendParentConsent,
    StaffDashboardResponse,
)

router = APIRouter(prefix="/api/v1/staff", tags=["staff-exeats"])


@router.get("/dashboard", response_model=StaffDashboardResponse)
async def staff_dashboard(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> StaffDashboardResponse:
    return await service.get_dashboard(db, current_user)


@router.get("/exeat-requests", response_model=List[ExeatRequestResponse])
async def list_actionable_exeat_requests(
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> List[ExeatRequestResponse]:
    """Requests at a stage the caller's roles may act on."""
    try:
        return await service.list_actionable_requests(db, current_user, status)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/exeat-requests/{exeat_id}", response_model=ExeatRequestResponse)
async def get_exeat_request(
    exeat_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> ExeatRequestResponse:
    try:
        exeat = await service.get_staff_request(db, current_user, exeat_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return service.request_to_response(exeat)


@router.post("/exeat-requests/{exeat_id}/approve", response_model=MessageWithExeat)
async def approve_exeat_request(
    exeat_id: UUID,
    payload: ExeatApprove,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: CurrentUser = Depends(require_staff),
) -> MessageWithExeat:
    """Approve the current stage. Only roles mapped to the request's status may act, once per stage."""
    try:
        exeat = await workflow.approve(db, notifier, exeat_id, current_user, payload.comment)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return MessageWithExeat(
        message="Exeat request approved.",
        exeat_request=service.request_to_response(exeat),
    )


@router.post("/exeat-requests/{exeat_id}/reject", response_model=MessageWithExeat)
async def reject_exeat_request(
    exeat_id: UUID,
    payload: ExeatReject,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: CurrentUser = Depends(require_staff),
) -> MessageWithExeat:
    """Reject at the current stage. A comment is mandatory."""
    try:
        exeat = await workflow.reject(db, notifier, exeat_id, current_user, payload.comment)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return MessageWithExeat(
        message="Exeat request rejected.",
        exeat_request=service.request_to_response(exeat),
    )


@router.post("/exeat-requests/{exeat_id}/send-parent-consent", response_model=MessageWithConsent)
async def send_parent_consent(
    exeat_id: UUID,
    payload: SendParentConsent,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: CurrentUser = Depends(require_staff),
) -> MessageWithConsent:
    try:
        consent = await workflow.send_parent_consent(
            db, notifier, exeat_id, current_user, payload.method.value, payload.message
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return MessageWithConsent(
        message="Parent consent request sent.",
        parent_consent=ParentConsentResponse.model_validate(consent),
    )


@router.get("/exeat-requests/{exeat_id}/history", response_model=ExeatHistoryResponse)
async def get_exeat_history(
    exeat_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> ExeatHistoryResponse:
    try:
        exeat = await service.get_staff_request(
            db, current_user, exeat_id, "You do not have permission to view this history."
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return await service.get_history(db, exeat)


@router.post(
    "/parent-consents/remind",
    response_model=ConsentReminderResponse,
    dependencies=[Depends(require_exeat_role(ExeatRoleName.ADMIN, ExeatRoleName.DEAN))],
)
async def remind_parent_consents(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: CurrentUser = Depends(require_staff),
) -> ConsentReminderResponse:
    """Re-send every pending, unexpired parent consent request."""
    return ConsentReminderResponse(reminded=await service.remind_pending_consents(db, notifier))
