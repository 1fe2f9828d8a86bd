from datetime import datetime, timezone
from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.exeats import workflow
from app.auth.schemas import CurrentUser
from app.core.exceptions import ConflictError, InternalError
from app.core.models import AuditLog, ExeatApproval, ExeatRequest, ParentConsent


async def _ledger(db_session: AsyncSession, exeat_id: str):
    result = await db_session.execute(
        select(ExeatApproval)
        .where(ExeatApproval.exeat_request_id == UUID(exeat_id))
        .order_by(ExeatApproval.created_at)
    )
    return {a.stage: a for a in result.scalars().all()}


async def _audit(db_session: AsyncSession, exeat_id: str):
    result = await db_session.execute(
        select(AuditLog).where(AuditLog.target_id == UUID(exeat_id)).order_by(AuditLog.timestamp)
    )
    return result.scalars().all()


@pytest.mark.asyncio
async def test_deputy_dean_approval_advances_to_dean_review(
    db_session: AsyncSession,
    make_student,
    submit,
    approve,
    staff,
    notifier,
) -> None:
    student = await make_student()
    exeat = await submit(student)

    response = await approve(exeat["id"], staff["deputy_dean"], comment="ok")
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Exeat request approved."
    assert data["exeat_request"]["status"] == "dean_review"

    ledger = await _ledger(db_session, exeat["id"])
    assert ledger["deputy-dean_review"].status == "approved"
    assert ledger["deputy-dean_review"].staff_id == staff["deputy_dean"].id
    assert ledger["deputy-dean_review"].acting_role == "deputy_dean"
    assert ledger["deputy-dean_review"].comment == "ok"
    assert ledger["dean_review"].status == "pending"
    assert ledger["dean_review"].role == "dean"

    audit = await _audit(db_session, exeat["id"])
    assert audit[-1].action == "approve"
    assert audit[-1].details == "Status changed from deputy-dean_review to dean_review | Comment: ok"

    subjects = [m[1] for m in notifier.to(student.email)]
    assert subjects == ["Exeat Request Submitted", "Exeat Request Status Updated"]

    # Security holds no review stage
    response = await approve(exeat["id"], staff["security"])
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_medical_path_converges_at_dean_review(make_student, submit, approve, staff) -> None:
    exeat = await submit(await make_student(), category="Medical")
    assert exeat["status"] == "cmd_review"

    response = await approve(exeat["id"], staff["deputy_dean"])
    assert response.status_code == 403

    response = await approve(exeat["id"], staff["cmd"])
    assert response.status_code == 200
    assert response.json()["exeat_request"]["status"] == "dean_review"


@pytest.mark.asyncio
async def test_dean_approval_opens_parent_consent(
    db_session: AsyncSession,
    at_parent_consent,
    notifier,
) -> None:
    student, exeat = await at_parent_consent(parent_email="mum@example.com")

    consent = (
        await db_session.execute(
            select(ParentConsent).where(ParentConsent.exeat_request_id == UUID(exeat["id"]))
        )
    ).scalar_one()
    assert consent.consent_status == "pending"
    assert consent.method == "whatsapp"
    assert workflow.as_utc(consent.expires_at) > datetime.now(timezone.utc)

    to_parent = notifier.to("mum@example.com")
    assert len(to_parent) == 1
    assert to_parent[0][1] == "Exeat Consent Request"
    assert f"/api/v1/parent/exeat-consent/{consent.consent_token}/approve" in to_parent[0][2]
    assert f"/api/v1/parent/exeat-consent/{consent.consent_token}/decline" in to_parent[0][2]


@pytest.mark.asyncio
async def test_staff_cannot_approve_the_consent_stage(at_parent_consent, approve, staff) -> None:
    _, exeat = await at_parent_consent()
    for role in ("dean", "admin"):
        response = await approve(exeat["id"], staff[role])
        assert response.status_code == 403


@pytest.mark.asyncio
async def test_send_consent_outside_consent_stage_forbidden(
    client: AsyncClient,
    make_student,
    submit,
    staff,
    auth_headers,
) -> None:
    exeat = await submit(await make_student())
    response = await client.post(
        f"/api/v1/staff/exeat-requests/{exeat['id']}/send-parent-consent",
        json={"method": "sms"},
        headers=auth_headers(staff["dean"]),
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "Parent consent can only be sent at the parent_consent stage."


@pytest.mark.asyncio
async def test_send_consent_requires_parent_review_capability(
    client: AsyncClient,
    at_parent_consent,
    staff,
    auth_headers,
) -> None:
    _, exeat = await at_parent_consent()
    response = await client.post(
        f"/api/v1/staff/exeat-requests/{exeat['id']}/send-parent-consent",
        json={"method": "email"},
        headers=auth_headers(staff["deputy_dean"]),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_resend_consent_reissues_token_on_same_row(
    client: AsyncClient,
    db_session: AsyncSession,
    at_parent_consent,
    consent_token,
    staff,
    auth_headers,
    notifier,
) -> None:
    _, exeat = await at_parent_consent(parent_email="dad@example.com")
    first_token = await consent_token(exeat["id"])

    response = await client.post(
        f"/api/v1/staff/exeat-requests/{exeat['id']}/send-parent-consent",
        json={"method": "email", "message": "Please reply by Friday."},
        headers=auth_headers(staff["admin"]),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Parent consent request sent."
    assert data["parent_consent"]["method"] == "email"
    assert data["parent_consent"]["sent_by"] == str(staff["admin"].id)
    assert "consent_token" not in data["parent_consent"]

    second_token = await consent_token(exeat["id"])
    assert second_token != first_token
    count = (
        await db_session.execute(
            select(func.count(ParentConsent.id)).where(ParentConsent.exeat_request_id == UUID(exeat["id"]))
        )
    ).scalar_one()
    assert count == 1

    last = notifier.to("dad@example.com")[-1]
    assert "Please reply by Friday." in last[2]
    assert second_token in last[2]

    audit = await _audit(db_session, exeat["id"])
    assert audit[-1].action == "parent_consent_request"


@pytest.mark.asyncio
async def test_full_pipeline_to_completed(
    client: AsyncClient,
    db_session: AsyncSession,
    at_parent_consent,
    consent_token,
    approve,
    staff,
    auth_headers,
) -> None:
    student, exeat = await at_parent_consent()
    token = await consent_token(exeat["id"])
    response = await client.post(f"/api/v1/parent/consent/{token}/approve")
    assert response.status_code == 200
    assert response.json()["exeat_request"]["status"] == "hostel_signout"

    expected = [
        ("hostel_admin", "security_signout"),
        ("security", "security_signin"),
        ("security", "hostel_signin"),
        ("hostel_admin", "completed"),
    ]
    for role, next_status in expected:
        response = await approve(exeat["id"], staff[role])
        assert response.status_code == 200, response.text
        assert response.json()["exeat_request"]["status"] == next_status

    ledger = await _ledger(db_session, exeat["id"])
    assert set(ledger) == {
        "deputy-dean_review",
        "dean_review",
        "hostel_signout",
        "security_signout",
        "security_signin",
        "hostel_signin",
    }
    assert all(entry.status == "approved" for entry in ledger.values())

    # Every status change is audited
    changes = [a for a in await _audit(db_session, exeat["id"]) if a.from_status != a.to_status]
    transitions = [(a.from_status, a.to_status) for a in changes]
    assert transitions == [
        (None, "deputy-dean_review"),
        ("deputy-dean_review", "dean_review"),
        ("dean_review", "parent_consent"),
        ("parent_consent", "hostel_signout"),
        ("hostel_signout", "security_signout"),
        ("security_signout", "security_signin"),
        ("security_signin", "hostel_signin"),
        ("hostel_signin", "completed"),
    ]

    # Completed is terminal
    response = await approve(exeat["id"], staff["admin"])
    assert response.status_code == 403

    # A new request is allowed once the previous one completed
    payload = {
        "category_id": exeat["category_id"],
        "reason": "Next weekend",
        "destination": "Lagos",
        "preferred_contact_mode": "text",
        "departure_date": "2026-12-01",
        "return_date": "2026-12-02",
    }
    response = await client.post("/api/v1/student/exeat-requests", json=payload, headers=auth_headers(student))
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_reject_requires_comment(client: AsyncClient, make_student, submit, staff, auth_headers) -> None:
    exeat = await submit(await make_student())
    url = f"/api/v1/staff/exeat-requests/{exeat['id']}/reject"

    response = await client.post(url, json={}, headers=auth_headers(staff["deputy_dean"]))
    assert response.status_code == 422

    response = await client.post(url, json={"comment": "   "}, headers=auth_headers(staff["deputy_dean"]))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_reject_then_appeal(
    client: AsyncClient,
    db_session: AsyncSession,
    make_student,
    submit,
    approve,
    staff,
    auth_headers,
) -> None:
    student = await make_student()
    exeat = await submit(student)
    await approve(exeat["id"], staff["deputy_dean"])

    response = await client.post(
        f"/api/v1/staff/exeat-requests/{exeat['id']}/reject",
        json={"comment": "Exams are on"},
        headers=auth_headers(staff["dean2"]),
    )
    assert response.status_code == 200
    assert response.json()["exeat_request"]["status"] == "rejected"

    ledger = await _ledger(db_session, exeat["id"])
    assert ledger["dean_review"].status == "rejected"
    assert ledger["dean_review"].acting_role == "dean2"
    assert ledger["dean_review"].comment == "Exams are on"

    # Rejected is terminal for staff
    response = await approve(exeat["id"], staff["admin"])
    assert response.status_code == 403

    response = await client.post(
        f"/api/v1/student/exeat-requests/{exeat['id']}/appeal",
        json={"appeal_reason": "Exams end on Thursday"},
        headers=auth_headers(student),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Appeal submitted successfully."
    assert data["exeat_request"]["status"] == "appeal"
    assert data["exeat_request"]["appeal_reason"] == "Exams end on Thursday"

    actions = [a.action for a in await _audit(db_session, exeat["id"])]
    assert actions == ["submit", "approve", "reject", "appeal"]


@pytest.mark.asyncio
async def test_appeal_blocked_while_another_request_active(
    client: AsyncClient,
    make_student,
    submit,
    staff,
    auth_headers,
) -> None:
    student = await make_student()
    exeat = await submit(student)
    await client.post(
        f"/api/v1/staff/exeat-requests/{exeat['id']}/reject",
        json={"comment": "No"},
        headers=auth_headers(staff["deputy_dean"]),
    )
    await submit(student, reason="Second try")

    response = await client.post(
        f"/api/v1/student/exeat-requests/{exeat['id']}/appeal",
        json={"appeal_reason": "Reconsider"},
        headers=auth_headers(student),
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_decided_stage_cannot_be_decided_again(
    db_session: AsyncSession,
    make_student,
    submit,
    staff,
    notifier,
) -> None:
    """A stale decision on an already-decided ledger row loses with Conflict and changes nothing."""
    exeat = await submit(await make_student())
    ledger = await _ledger(db_session, exeat["id"])
    ledger["deputy-dean_review"].status = "approved"
    await db_session.commit()

    deputy = staff["deputy_dean"]
    actor = CurrentUser(
        id=deputy.id, user_type="staff", email=deputy.email, full_name=deputy.full_name, roles=["deputy_dean"]
    )
    with pytest.raises(ConflictError):
        await workflow.approve(db_session, notifier, UUID(exeat["id"]), actor, None)

    request = await db_session.get(ExeatRequest, UUID(exeat["id"]))
    await db_session.refresh(request)
    assert request.status == "deputy-dean_review"
    assert len(await _ledger(db_session, exeat["id"])) == 1


@pytest.mark.asyncio
async def test_storage_failure_rolls_back_whole_transition(
    db_session: AsyncSession,
    make_student,
    submit,
    staff,
    notifier,
    monkeypatch,
) -> None:
    """A storage error after the ledger write undoes the ledger write and the status change."""
    exeat = await submit(await make_student())
    sent_before = len(notifier.sent)

    async def _failing_record(*args, **kwargs):
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))

    monkeypatch.setattr(workflow.audit_service, "record", _failing_record)

    deputy = staff["deputy_dean"]
    actor = CurrentUser(
        id=deputy.id, user_type="staff", email=deputy.email, full_name=deputy.full_name, roles=["deputy_dean"]
    )
    with pytest.raises(InternalError):
        await workflow.approve(db_session, notifier, UUID(exeat["id"]), actor, "looks fine")

    request = await db_session.get(ExeatRequest, UUID(exeat["id"]))
    await db_session.refresh(request)
    assert request.status == "deputy-dean_review"

    ledger = await _ledger(db_session, exeat["id"])
    assert [(stage, row.status) for stage, row in ledger.items()] == [("deputy-dean_review", "pending")]
    assert ledger["deputy-dean_review"].staff_id is None
    assert [a.action for a in await _audit(db_session, exeat["id"])] == ["submit"]
    assert len(notifier.sent) == sent_before


@pytest.mark.asyncio
async def test_ledger_enforces_one_row_per_stage(db_session: AsyncSession, make_student, submit) -> None:
    exeat = await submit(await make_student())
    db_session.add(
        ExeatApproval(
            exeat_request_id=UUID(exeat["id"]),
            role="deputy_dean",
            stage="deputy-dean_review",
            status="approved",
        )
    )
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()


@pytest.mark.asyncio
async def test_one_active_request_enforced_by_storage(
    db_session: AsyncSession,
    categories,
    make_student,
    submit,
) -> None:
    student = await make_student()
    exeat = await submit(student)
    db_session.add(
        ExeatRequest(
            student_id=student.id,
            category_id=UUID(exeat["category_id"]),
            reason="Bypass",
            destination="Kano",
            departure_date=datetime(2026, 11, 1).date(),
            return_date=datetime(2026, 11, 2).date(),
            preferred_contact_mode="text",
            status="cmd_review",
        )
    )
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()


@pytest.mark.asyncio
async def test_admin_acting_on_dean_stage(db_session: AsyncSession, make_student, submit, approve, staff) -> None:
    exeat = await submit(await make_student())
    await approve(exeat["id"], staff["deputy_dean"])
    response = await approve(exeat["id"], staff["admin"], comment="covering for the dean")
    assert response.status_code == 200

    ledger = await _ledger(db_session, exeat["id"])
    assert ledger["dean_review"].role == "dean"
    assert ledger["dean_review"].acting_role == "admin"
    assert ledger["dean_review"].staff_id == staff["admin"].id


@pytest.mark.asyncio
async def test_approval_survives_notifier_outage(
    make_student,
    submit,
    approve,
    staff,
    notifier,
) -> None:
    exeat = await submit(await make_student())
    notifier.fail = True
    response = await approve(exeat["id"], staff["deputy_dean"])
    assert response.status_code == 200
    assert response.json()["exeat_request"]["status"] == "dean_review"


@pytest.mark.asyncio
async def test_unknown_request_not_found(approve, staff, categories) -> None:
    response = await approve("00000000-0000-0000-0000-000000000042", staff["dean"])
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_actionable_list_follows_roles(
    client: AsyncClient,
    make_student,
    make_staff,
    submit,
    staff,
    auth_headers,
) -> None:
    medical = await submit(await make_student(), category="Medical")
    general = await submit(await make_student())

    async def ids(user, **params):
        response = await client.get("/api/v1/staff/exeat-requests", params=params, headers=auth_headers(user))
        assert response.status_code == 200
        return {r["id"] for r in response.json()}

    assert await ids(staff["cmd"]) == {medical["id"]}
    assert await ids(staff["deputy_dean"]) == {general["id"]}
    assert await ids(staff["dean2"]) == {medical["id"], general["id"]}
    assert await ids(staff["security"]) == set()
    assert await ids(staff["admin"], status="cmd_review") == {medical["id"]}

    multi = await make_staff("cmd", "deputy_dean")
    assert await ids(multi) == {medical["id"], general["id"]}

    nobody = await make_staff()
    response = await client.get("/api/v1/staff/exeat-requests", headers=auth_headers(nobody))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_staff_view_guarded_like_actions(
    client: AsyncClient,
    make_student,
    submit,
    staff,
    auth_headers,
) -> None:
    exeat = await submit(await make_student())

    response = await client.get(
        f"/api/v1/staff/exeat-requests/{exeat['id']}", headers=auth_headers(staff["deputy_dean"])
    )
    assert response.status_code == 200

    response = await client.get(
        f"/api/v1/staff/exeat-requests/{exeat['id']}/history", headers=auth_headers(staff["hostel_admin"])
    )
    assert response.status_code == 403

    response = await client.get(
        f"/api/v1/staff/exeat-requests/{exeat['id']}/history", headers=auth_headers(staff["dean"])
    )
    assert response.status_code == 200
    assert response.json()["audit_logs"][0]["action"] == "submit"


@pytest.mark.asyncio
async def test_students_cannot_use_staff_surface(client: AsyncClient, make_student, categories, auth_headers) -> None:
    student = await make_student()
    response = await client.get("/api/v1/staff/exeat-requests", headers=auth_headers(student))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_dashboard_counts_and_analytics(
    client: AsyncClient,
    make_student,
    submit,
    approve,
    staff,
    auth_headers,
) -> None:
    first = await submit(await make_student())
    second = await submit(await make_student())
    await submit(await make_student())

    await approve(first["id"], staff["deputy_dean"])
    await client.post(
        f"/api/v1/staff/exeat-requests/{second['id']}/reject",
        json={"comment": "Incomplete"},
        headers=auth_headers(staff["deputy_dean"]),
    )

    response = await client.get("/api/v1/staff/dashboard", headers=auth_headers(staff["deputy_dean"]))
    assert response.status_code == 200
    data = response.json()
    assert data["total_requests"] == 2
    assert data["pending_requests"] == 1
    assert data["rejected_requests"] == 1
    assert data["approved_requests"] == 0
    assert data["analytics"] is None

    response = await client.get("/api/v1/staff/dashboard", headers=auth_headers(staff["admin"]))
    data = response.json()
    assert data["total_requests"] == 0
    by_status = {row["status"]: row["count"] for row in data["analytics"]["by_status"]}
    assert by_status == {"deputy-dean_review": 1, "dean_review": 1, "rejected": 1}
    assert sum(row["count"] for row in data["analytics"]["by_date"]) == 3


@pytest.mark.asyncio
async def test_remind_pending_consents(
    client: AsyncClient,
    at_parent_consent,
    staff,
    auth_headers,
    notifier,
) -> None:
    await at_parent_consent(parent_email="p1@example.com")
    await at_parent_consent(parent_email="p2@example.com")

    response = await client.post("/api/v1/staff/parent-consents/remind", headers=auth_headers(staff["deputy_dean"]))
    assert response.status_code == 403

    response = await client.post("/api/v1/staff/parent-consents/remind", headers=auth_headers(staff["admin"]))
    assert response.status_code == 200
    assert response.json() == {"reminded": 2}
    assert len(notifier.to("p1@example.com")) == 2
    assert len(notifier.to("p2@example.com")) == 2
