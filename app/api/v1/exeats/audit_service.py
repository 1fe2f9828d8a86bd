"""
Audit logging for exeat state changes. Call on every state change.
Write-only: no update or delete is exposed, and recording never alters the outcome of the caller.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.models import AuditLog

log = structlog.get_logger(__name__)

TARGET_EXEAT_REQUEST = "exeat_request"
TARGET_STAFF = "staff"


def transition_details(from_status: Optional[str], to_status: Optional[str], comment: Optional[str] = None) -> str:
    details = f"Status changed from {from_status} to {to_status}"
    if comment:
        details += f" | Comment: {comment}"
    return details


async def record(
    db: AsyncSession,
    actor_id: Optional[UUID],
    action: str,
    target_type: str,
    target_id: UUID,
    details: Optional[str] = None,
    *,
    actor_type: Optional[str] = None,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
) -> AuditLog:
    """Append one audit log entry. Caller must commit."""
    entry = AuditLog(
        actor_id=actor_id,
        actor_type=actor_type,
        action=action,
        target_type=target_type,
        target_id=target_id,
        from_status=from_status,
        to_status=to_status,
        details=details,
        timestamp=datetime.utcnow(),
    )
    db.add(entry)
    log.debug("audit_recorded", action=action, target_type=target_type, target_id=str(target_id))
    return entry
