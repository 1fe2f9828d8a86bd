"""Unit tests for the role -> status access table and acting-role resolution."""

import pytest

from app.api.v1.exeats import workflow
from app.auth.rbac import (
    PARENT_REVIEW,
    allowed_statuses,
    can_send_consent,
    ensure_can_act,
    resolve_acting_role,
)
from app.core.enums import ExeatRoleName, ExeatStatus
from app.core.exceptions import ForbiddenError


def test_effective_set_is_union_of_roles() -> None:
    assert allowed_statuses(["cmd", "security"]) == {
        "cmd_review",
        "security_signout",
        "security_signin",
    }


def test_unknown_roles_grant_nothing() -> None:
    assert allowed_statuses(["librarian"]) == set()
    assert allowed_statuses(["librarian", "hostel_admin"]) == {"hostel_signout", "hostel_signin"}


def test_dean_and_admin_reach_every_staff_stage() -> None:
    for role in ("dean", "admin"):
        reach = allowed_statuses([role])
        assert PARENT_REVIEW in reach
        for status in ("cmd_review", "deputy-dean_review", "dean_review", "hostel_signin", "security_signout"):
            assert status in reach
        # Consent is resolved by the parent only
        assert "parent_consent" not in reach


def test_dean2_covers_review_stages_only() -> None:
    assert allowed_statuses(["dean2"]) == {"cmd_review", "dean_review", "deputy-dean_review"}


@pytest.mark.parametrize(
    "status",
    ["cmd_review", "deputy-dean_review", "dean_review", "parent_consent"],
)
def test_security_cannot_act_before_signout(status: str) -> None:
    with pytest.raises(ForbiddenError):
        ensure_can_act(["security"], status)


def test_stage_owner_wins_over_broader_roles() -> None:
    assert resolve_acting_role(["admin", "dean"], "dean_review") == ExeatRoleName.DEAN
    assert resolve_acting_role(["dean", "cmd"], "cmd_review") == ExeatRoleName.CMD
    assert resolve_acting_role(["admin", "security"], "security_signin") == ExeatRoleName.SECURITY


def test_most_specific_role_when_owner_not_held() -> None:
    # dean2 reaches three statuses, admin and dean reach eight
    assert resolve_acting_role(["admin", "dean2"], "cmd_review") == ExeatRoleName.DEAN2
    assert resolve_acting_role(["admin"], "dean_review") == ExeatRoleName.ADMIN
    # Equal reach: fixed precedence puts dean before admin
    assert resolve_acting_role(["admin", "dean"], "hostel_signout") == ExeatRoleName.DEAN
    assert resolve_acting_role(["admin", "dean"], "deputy-dean_review") == ExeatRoleName.DEAN


def test_unresolvable_acting_role_is_forbidden() -> None:
    with pytest.raises(ForbiddenError):
        resolve_acting_role(["cmd"], "dean_review")
    with pytest.raises(ForbiddenError):
        resolve_acting_role([], "cmd_review")


def test_ensure_can_act_returns_acting_role() -> None:
    assert ensure_can_act(["deputy_dean"], "deputy-dean_review") == ExeatRoleName.DEPUTY_DEAN


def test_consent_capability() -> None:
    assert can_send_consent(["dean"])
    assert can_send_consent(["admin"])
    assert not can_send_consent(["dean2", "deputy_dean", "cmd", "hostel_admin", "security"])


def test_initial_status_by_category() -> None:
    assert workflow.initial_status(True) == ExeatStatus.CMD_REVIEW
    assert workflow.initial_status(False) == ExeatStatus.DEPUTY_DEAN_REVIEW


def test_forward_table_only_moves_forward() -> None:
    order = workflow.PIPELINE_ORDER
    for current, nxt in workflow.FORWARD_TRANSITIONS.items():
        assert order.index(nxt) > order.index(current)
    assert workflow.next_status("cmd_review") == ExeatStatus.DEAN_REVIEW
    assert workflow.next_status("deputy-dean_review") == ExeatStatus.DEAN_REVIEW
    assert workflow.next_status("dean_review") == ExeatStatus.PARENT_CONSENT
    assert workflow.next_status("hostel_signin") == ExeatStatus.COMPLETED


@pytest.mark.parametrize("status", ["completed", "rejected", "appeal", "bogus"])
def test_no_forward_transition_from_terminal_or_unknown(status: str) -> None:
    with pytest.raises(ForbiddenError):
        workflow.next_status(status)
