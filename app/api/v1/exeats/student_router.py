from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import require_student
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.core.notifier import Notifier, get_notifier
from app.db.session import get_db

from . import service
from .schemas import (
    ExeatAppeal,
    ExeatCategoryResponse,
    ExeatHistoryResponse,
    ExeatRequestCreate,
    ExeatRequestResponse,
    MessageWithExeat,
    StudentProfileResponse,
)

router = APIRouter(prefix="/api/v1/student", tags=["student-exeats"])


@router.get("/exeat-categories", response_model=List[ExeatCategoryResponse])
async def list_exeat_categories(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> List[ExeatCategoryResponse]:
    return await service.list_categories(db)


@router.get("/profile", response_model=StudentProfileResponse)
async def get_profile(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> StudentProfileResponse:
    """Parent contact and accommodation that a new request will copy."""
    return await service.get_profile_snapshot(db, current_user.id)


@router.post(
    "/exeat-requests",
    response_model=MessageWithExeat,
    status_code=status.HTTP_201_CREATED,
)
async def create_exeat_request(
    payload: ExeatRequestCreate,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: CurrentUser = Depends(require_student),
) -> MessageWithExeat:
    """Submit an exeat request. Medical categories start at CMD review, all others at deputy dean review."""
    try:
        exeat = await service.submit_request(db, notifier, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return MessageWithExeat(
        message="Exeat request created successfully.",
        exeat_request=service.request_to_response(exeat),
    )


@router.get("/exeat-requests", response_model=List[ExeatRequestResponse])
async def list_my_exeat_requests(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> List[ExeatRequestResponse]:
    return await service.list_student_requests(db, current_user.id)


@router.get("/exeat-requests/{exeat_id}", response_model=ExeatRequestResponse)
async def get_my_exeat_request(
    exeat_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> ExeatRequestResponse:
    try:
        exeat = await service.get_student_request(db, current_user.id, exeat_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return service.request_to_response(exeat)


@router.post("/exeat-requests/{exeat_id}/appeal", response_model=MessageWithExeat)
async def appeal_exeat_request(
    exeat_id: UUID,
    payload: ExeatAppeal,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> MessageWithExeat:
    """Appeal a rejected request."""
    try:
        exeat = await service.appeal_request(db, current_user, exeat_id, payload.appeal_reason)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return MessageWithExeat(
        message="Appeal submitted successfully.",
        exeat_request=service.request_to_response(exeat),
    )


@router.get("/exeat-requests/{exeat_id}/history", response_model=ExeatHistoryResponse)
async def get_my_exeat_history(
    exeat_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_student),
) -> ExeatHistoryResponse:
    try:
        exeat = await service.get_student_request(db, current_user.id, exeat_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return await service.get_history(db, exeat)
