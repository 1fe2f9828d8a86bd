"""Token-authenticated consent step addressed to a parent/guardian without an account."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class ParentConsent(Base):
    __tablename__ = "parent_consents"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    exeat_request_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("exeat_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    consent_token = Column(String(128), nullable=False, unique=True, index=True)
    consent_status = Column(String(20), nullable=False, default="pending")
    method = Column(String(20), nullable=False)
    message = Column(Text, nullable=True)
    sent_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consent_timestamp = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    exeat_request = relationship("ExeatRequest", back_populates="parent_consent", foreign_keys=[exeat_request_id])
