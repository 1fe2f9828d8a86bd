"""
Access guard for the exeat pipeline.

Each exeat role may act on a fixed set of request statuses. A staff member's
reach is the union over every role they hold. ``parent_review`` is not a request
status: it is the capability to trigger the parent consent step.
"""

from typing import Dict, FrozenSet, Iterable, Set

import structlog
from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.enums import ExeatRoleName, ExeatStatus
from app.core.exceptions import ForbiddenError

log = structlog.get_logger(__name__)

PARENT_REVIEW = "parent_review"

_ALL_STAFF_STAGES: FrozenSet[str] = frozenset(
    {
        ExeatStatus.CMD_REVIEW.value,
        ExeatStatus.DEPUTY_DEAN_REVIEW.value,
        ExeatStatus.DEAN_REVIEW.value,
        PARENT_REVIEW,
        ExeatStatus.HOSTEL_SIGNOUT.value,
        ExeatStatus.HOSTEL_SIGNIN.value,
        ExeatStatus.SECURITY_SIGNOUT.value,
        ExeatStatus.SECURITY_SIGNIN.value,
    }
)

ROLE_STATUS_MAP: Dict[ExeatRoleName, FrozenSet[str]] = {
    ExeatRoleName.CMD: frozenset({ExeatStatus.CMD_REVIEW.value}),
    ExeatRoleName.DEPUTY_DEAN: frozenset({ExeatStatus.DEPUTY_DEAN_REVIEW.value}),
    ExeatRoleName.DEAN: _ALL_STAFF_STAGES,
    ExeatRoleName.DEAN2: frozenset(
        {
            ExeatStatus.CMD_REVIEW.value,
            ExeatStatus.DEAN_REVIEW.value,
            ExeatStatus.DEPUTY_DEAN_REVIEW.value,
        }
    ),
    ExeatRoleName.HOSTEL_ADMIN: frozenset({ExeatStatus.HOSTEL_SIGNOUT.value, ExeatStatus.HOSTEL_SIGNIN.value}),
    ExeatRoleName.SECURITY: frozenset({ExeatStatus.SECURITY_SIGNOUT.value, ExeatStatus.SECURITY_SIGNIN.value}),
    ExeatRoleName.ADMIN: _ALL_STAFF_STAGES,
}

# Pipeline role that owns each staff-gated stage; keys the approval ledger
STAGE_ROLES: Dict[ExeatStatus, ExeatRoleName] = {
    ExeatStatus.CMD_REVIEW: ExeatRoleName.CMD,
    ExeatStatus.DEPUTY_DEAN_REVIEW: ExeatRoleName.DEPUTY_DEAN,
    ExeatStatus.DEAN_REVIEW: ExeatRoleName.DEAN,
    ExeatStatus.HOSTEL_SIGNOUT: ExeatRoleName.HOSTEL_ADMIN,
    ExeatStatus.SECURITY_SIGNOUT: ExeatRoleName.SECURITY,
    ExeatStatus.SECURITY_SIGNIN: ExeatRoleName.SECURITY,
    ExeatStatus.HOSTEL_SIGNIN: ExeatRoleName.HOSTEL_ADMIN,
}

# Tie-break between equally specific roles
_ROLE_PRECEDENCE = [
    ExeatRoleName.CMD,
    ExeatRoleName.DEPUTY_DEAN,
    ExeatRoleName.HOSTEL_ADMIN,
    ExeatRoleName.SECURITY,
    ExeatRoleName.DEAN2,
    ExeatRoleName.DEAN,
    ExeatRoleName.ADMIN,
]


def _known_roles(role_names: Iterable[str]) -> Set[ExeatRoleName]:
    roles: Set[ExeatRoleName] = set()
    for name in role_names:
        try:
            roles.add(ExeatRoleName(name))
        except ValueError:
            log.info("role_not_mapped_to_statuses", role=name)
    return roles


def allowed_statuses(role_names: Iterable[str]) -> Set[str]:
    """Union of actionable statuses over every role held."""
    allowed: Set[str] = set()
    for role in _known_roles(role_names):
        allowed |= ROLE_STATUS_MAP[role]
    return allowed


def resolve_acting_role(role_names: Iterable[str], current_status: str) -> ExeatRoleName:
    """
    Role the staff member acts under for a request in ``current_status``.
    The stage's own pipeline role wins; otherwise the most specific held role
    (smallest status set) that covers the status.
    """
    held = _known_roles(role_names)
    candidates = [r for r in held if current_status in ROLE_STATUS_MAP[r]]
    if not candidates:
        log.warning("acting_role_unresolved", status=current_status, roles=sorted(r.value for r in held))
        raise ForbiddenError("You do not have permission to act on this request at this stage.")
    try:
        stage_role = STAGE_ROLES[ExeatStatus(current_status)]
    except (KeyError, ValueError):
        stage_role = None
    if stage_role in candidates:
        return stage_role
    return min(candidates, key=lambda r: (len(ROLE_STATUS_MAP[r]), _ROLE_PRECEDENCE.index(r)))


def ensure_can_act(
    role_names: Iterable[str],
    current_status: str,
    message: str = "You do not have permission to act on this request at this stage.",
) -> ExeatRoleName:
    """Raise ForbiddenError unless ``current_status`` is in the caller's reach; return the acting role."""
    role_names = list(role_names)
    if current_status not in allowed_statuses(role_names):
        raise ForbiddenError(message)
    return resolve_acting_role(role_names, current_status)


def can_send_consent(role_names: Iterable[str]) -> bool:
    return PARENT_REVIEW in allowed_statuses(role_names)


def require_exeat_role(*role_names: ExeatRoleName):
    """
    Dependency factory: the caller must hold at least one of ``role_names``.

    Example:
        Depends(require_exeat_role(ExeatRoleName.ADMIN, ExeatRoleName.DEAN))
    """
    wanted = {r.value for r in role_names}

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not wanted.intersection(current_user.roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _checker
