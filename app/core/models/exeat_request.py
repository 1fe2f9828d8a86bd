"""
One student's leave request. Status is mutated only by the workflow engine
(and by the student when appealing a rejection); rows are never deleted.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import relationship

from app.db.session import Base


# Partial unique index: one request per student outside the terminal statuses
_ACTIVE_REQUEST_PREDICATE = text("status NOT IN ('completed', 'rejected')")


class ExeatRequest(Base):
    __tablename__ = "exeat_requests"
    __table_args__ = (
        Index(
            "uq_exeat_requests_one_active_per_student",
            "student_id",
            unique=True,
            postgresql_where=_ACTIVE_REQUEST_PREDICATE,
            sqlite_where=_ACTIVE_REQUEST_PREDICATE,
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    category_id = Column(Uuid(as_uuid=True), ForeignKey("exeat_categories.id", ondelete="RESTRICT"), nullable=False)
    is_medical = Column(Boolean, nullable=False, default=False)
    reason = Column(Text, nullable=False)
    destination = Column(String(255), nullable=False)
    departure_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=False)
    preferred_contact_mode = Column(String(20), nullable=False)

    # Snapshot of the student's profile at submission time
    matric_no = Column(String(50), nullable=True)
    parent_surname = Column(String(100), nullable=True)
    parent_othernames = Column(String(255), nullable=True)
    parent_phone_no = Column(String(50), nullable=True)
    parent_phone_no_two = Column(String(50), nullable=True)
    parent_email = Column(String(255), nullable=True)
    student_accommodation = Column(String(255), nullable=True)

    status = Column(String(30), nullable=False, index=True)
    appeal_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student = relationship("User", foreign_keys=[student_id])
    category = relationship("ExeatCategory", foreign_keys=[category_id])
    approvals = relationship("ExeatApproval", back_populates="exeat_request", order_by="ExeatApproval.created_at")
    parent_consent = relationship("ParentConsent", back_populates="exeat_request", uselist=False)
