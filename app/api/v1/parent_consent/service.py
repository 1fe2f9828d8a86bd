"""
Public, token-keyed parent consent actions. Both the JSON and the HTML surfaces
call ``act_on_consent``; the rules live here once.

Order of checks: unknown token -> NotFound; already decided -> idempotent replay
of the stored outcome; past expiry while pending -> Expired; else resolve.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.exeats import workflow
from app.auth.models import User
from app.core.enums import ConsentStatus
from app.core.exceptions import ExpiredError, NotFoundError
from app.core.models import ExeatRequest, ParentConsent
from app.core.notifier import Notifier

log = structlog.get_logger(__name__)

ALREADY_DECIDED_MESSAGES = {
    ConsentStatus.approved.value: "This request has already been approved.",
    ConsentStatus.declined.value: "This request has already been declined.",
}

RESOLVED_MESSAGES = {
    ConsentStatus.approved: "Consent approved.",
    ConsentStatus.declined: "Consent declined.",
}


@dataclass
class ConsentOutcome:
    consent: ParentConsent
    exeat: ExeatRequest
    changed: bool
    message: str


async def get_consent_by_token(db: AsyncSession, token: str) -> ParentConsent:
    consent = (
        await db.execute(select(ParentConsent).where(ParentConsent.consent_token == token))
    ).scalar_one_or_none()
    if not consent:
        raise NotFoundError("Consent request not found.")
    return consent


def is_expired(consent: ParentConsent) -> bool:
    return datetime.now(timezone.utc) > workflow.as_utc(consent.expires_at)


async def show_consent(db: AsyncSession, token: str):
    """Returns (consent, exeat, student). Expired pending tokens are Gone."""
    consent = await get_consent_by_token(db, token)
    if consent.consent_status == ConsentStatus.pending.value and is_expired(consent):
        raise ExpiredError()
    exeat = await workflow.get_request(db, consent.exeat_request_id)
    student = await db.get(User, exeat.student_id)
    return consent, exeat, student


async def act_on_consent(
    db: AsyncSession,
    notifier: Notifier,
    token: str,
    decision: ConsentStatus,
) -> ConsentOutcome:
    consent = await get_consent_by_token(db, token)

    if consent.consent_status != ConsentStatus.pending.value:
        exeat = await workflow.get_request(db, consent.exeat_request_id)
        return ConsentOutcome(consent, exeat, False, ALREADY_DECIDED_MESSAGES[consent.consent_status])

    if is_expired(consent):
        log.info("parent_consent_expired", consent_id=str(consent.id))
        raise ExpiredError()

    changed = await workflow.resolve_parent_consent(db, notifier, consent, decision)
    exeat = await workflow.get_request(db, consent.exeat_request_id)
    if not changed:
        # Lost a concurrent race; report whatever the winner decided
        await db.refresh(exeat)
        return ConsentOutcome(consent, exeat, False, ALREADY_DECIDED_MESSAGES[consent.consent_status])
    return ConsentOutcome(consent, exeat, True, RESOLVED_MESSAGES[decision])
