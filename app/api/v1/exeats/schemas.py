from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.core.enums import ConsentMethod, ContactMode


# ----- Categories / profile -----
class ExeatCategoryResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    is_medical: bool

    class Config:
        from_attributes = True


class StudentProfileResponse(BaseModel):
    """Contact and accommodation data that a new request would snapshot."""

    matric_no: Optional[str] = None
    parent_surname: Optional[str] = None
    parent_othernames: Optional[str] = None
    parent_phone_no: Optional[str] = None
    parent_phone_no_two: Optional[str] = None
    parent_email: Optional[str] = None
    student_accommodation: Optional[str] = None


# ----- Submit / appeal -----
class ExeatRequestCreate(BaseModel):
    """Student id comes from the session, parent contact from the profile."""

    category_id: UUID
    reason: str = Field(..., min_length=1, max_length=2000)
    destination: str = Field(..., min_length=1, max_length=255)
    departure_date: date
    return_date: date
    preferred_contact_mode: ContactMode

    @model_validator(mode="after")
    def check_dates(self) -> "ExeatRequestCreate":
        if self.return_date < self.departure_date:
            raise ValueError("return_date must be on or after departure_date")
        return self


class ExeatAppeal(BaseModel):
    appeal_reason: str = Field(..., min_length=1, max_length=2000)


# ----- Staff actions -----
class ExeatApprove(BaseModel):
    comment: Optional[str] = Field(None, max_length=2000)


class ExeatReject(BaseModel):
    comment: str = Field(..., min_length=1, max_length=2000)


class SendParentConsent(BaseModel):
    method: ConsentMethod
    message: Optional[str] = Field(None, max_length=2000)


# ----- Responses -----
class ExeatRequestResponse(BaseModel):
    id: UUID
    student_id: UUID
    category_id: UUID
    is_medical: bool
    reason: str
    destination: str
    departure_date: date
    return_date: date
    preferred_contact_mode: str
    matric_no: Optional[str] = None
    parent_surname: Optional[str] = None
    parent_othernames: Optional[str] = None
    parent_phone_no: Optional[str] = None
    parent_phone_no_two: Optional[str] = None
    parent_email: Optional[str] = None
    student_accommodation: Optional[str] = None
    status: str
    appeal_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ApprovalResponse(BaseModel):
    id: UUID
    exeat_request_id: UUID
    role: str
    stage: str
    staff_id: Optional[UUID] = None
    acting_role: Optional[str] = None
    status: str
    comment: Optional[str] = None
    decided_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogResponse(BaseModel):
    id: UUID
    actor_id: Optional[UUID] = None
    actor_type: Optional[str] = None
    action: str
    target_type: str
    target_id: UUID
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    details: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class ParentConsentResponse(BaseModel):
    """Consent state without the token; the token is only ever delivered to the parent."""

    id: UUID
    exeat_request_id: UUID
    consent_status: str
    method: str
    message: Optional[str] = None
    sent_by: Optional[UUID] = None
    expires_at: datetime
    consent_timestamp: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExeatHistoryResponse(BaseModel):
    exeat_request: ExeatRequestResponse
    approvals: List[ApprovalResponse]
    audit_logs: List[AuditLogResponse]


class StatusCount(BaseModel):
    status: str
    count: int


class DateCount(BaseModel):
    day: date
    count: int


class DashboardAnalytics(BaseModel):
    by_status: List[StatusCount]
    by_date: List[DateCount]


class StaffDashboardResponse(BaseModel):
    total_requests: int
    pending_requests: int
    approved_requests: int
    rejected_requests: int
    analytics: Optional[DashboardAnalytics] = None


class ConsentReminderResponse(BaseModel):
    reminded: int


class MessageWithExeat(BaseModel):
    message: str
    exeat_request: ExeatRequestResponse


class MessageWithConsent(BaseModel):
    message: str
    parent_consent: ParentConsentResponse

