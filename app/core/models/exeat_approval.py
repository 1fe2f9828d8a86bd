"""
Approval ledger: one row per (request, stage). Created pending when the request
enters the stage, then decided exactly once by a staff member.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class ExeatApproval(Base):
    __tablename__ = "exeat_approvals"
    __table_args__ = (
        UniqueConstraint("exeat_request_id", "stage", name="uq_exeat_approval_request_stage"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    exeat_request_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("exeat_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Pipeline role gating the stage (not the actor's full role set)
    role = Column(String(50), nullable=False)
    # Status value this row gates; hostel_admin and security gate two stages each
    stage = Column(String(30), nullable=False)
    staff_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    # Role the staff member acted under, e.g. admin acting on the dean stage
    acting_role = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    comment = Column(Text, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    exeat_request = relationship("ExeatRequest", back_populates="approvals", foreign_keys=[exeat_request_id])
    staff = relationship("User", foreign_keys=[staff_id])
