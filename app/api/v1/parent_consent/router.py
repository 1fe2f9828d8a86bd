"""
Public consent endpoints for parents/guardians. No session: the token is the credential.
404 unknown token, 410 expired, 200 both for the first resolution and for a replay.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.exeats.schemas import ExeatRequestResponse, ParentConsentResponse
from app.core.enums import ConsentStatus
from app.core.exceptions import ServiceError
from app.core.notifier import Notifier, get_notifier
from app.db.session import get_db

from . import service
from .schemas import ConsentActionResponse, ConsentView

router = APIRouter(prefix="/api/v1/parent", tags=["parent-consent"])

WEB_ACTIONS = {
    "approve": ConsentStatus.approved,
    "decline": ConsentStatus.declined,
    # Older consent emails link to /reject
    "reject": ConsentStatus.declined,
}

WEB_RESOLVED_MESSAGES = {
    ConsentStatus.approved: "Consent approved. Thank you!",
    ConsentStatus.declined: "Consent declined. Thank you for your feedback.",
}


def _to_action_response(outcome: service.ConsentOutcome) -> ConsentActionResponse:
    return ConsentActionResponse(
        message=outcome.message,
        changed=outcome.changed,
        parent_consent=ParentConsentResponse.model_validate(outcome.consent),
        exeat_request=ExeatRequestResponse.model_validate(outcome.exeat),
    )


def _page(message: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(f"<h2>{message}</h2>", status_code=status_code)


@router.get("/consent/{token}", response_model=ConsentView)
async def show_consent(
    token: str,
    db: AsyncSession = Depends(get_db),
) -> ConsentView:
    try:
        consent, exeat, student = await service.show_consent(db, token)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return ConsentView(
        parent_consent=ParentConsentResponse.model_validate(consent),
        exeat_request=ExeatRequestResponse.model_validate(exeat),
        student_name=student.full_name if student else None,
    )


@router.post("/consent/{token}/approve", response_model=ConsentActionResponse)
async def approve_consent(
    token: str,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> ConsentActionResponse:
    try:
        outcome = await service.act_on_consent(db, notifier, token, ConsentStatus.approved)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return _to_action_response(outcome)


@router.post("/consent/{token}/decline", response_model=ConsentActionResponse)
async def decline_consent(
    token: str,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> ConsentActionResponse:
    try:
        outcome = await service.act_on_consent(db, notifier, token, ConsentStatus.declined)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return _to_action_response(outcome)


@router.get("/exeat-consent/{token}/{action}", response_class=HTMLResponse)
async def web_consent(
    token: str,
    action: str,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> HTMLResponse:
    """Link target from the consent email; renders a page instead of JSON."""
    decision = WEB_ACTIONS.get(action)
    if decision is None:
        return _page("Invalid action specified.", 400)
    try:
        outcome = await service.act_on_consent(db, notifier, token, decision)
    except ServiceError as e:
        return _page(e.message, e.status_code)
    if outcome.changed:
        return _page(WEB_RESOLVED_MESSAGES[decision], 200)
    return _page(outcome.message, 200)
