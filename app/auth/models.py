import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from app.db.session import Base


class User(Base):
    """Student or staff account. Credentials live with the identity provider, not here."""

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    fname = Column(String(100), nullable=False)
    lname = Column(String(100), nullable=False)
    # Notifications for the user are sent here
    email = Column(String(255), nullable=False, unique=True)
    # student | staff
    user_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student_profile = relationship(
        "StudentProfile", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    exeat_role_assignments = relationship(
        "StaffExeatRole",
        back_populates="staff",
        cascade="all, delete-orphan",
        foreign_keys="StaffExeatRole.staff_id",
    )

    @property
    def full_name(self) -> str:
        return f"{self.fname} {self.lname}".strip()


class StudentProfile(Base):
    """
    Parent/guardian contact and accommodation for a student.
    Copied into every new exeat request at submission; later edits do not reach in-flight requests.
    """

    __tablename__ = "student_profiles"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    matric_no = Column(String(50), nullable=True)
    parent_surname = Column(String(100), nullable=True)
    parent_othernames = Column(String(255), nullable=True)
    parent_phone_no = Column(String(50), nullable=True)
    parent_phone_no_two = Column(String(50), nullable=True)
    parent_email = Column(String(255), nullable=True)
    accommodation = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="student_profile")


class ExeatRole(Base):
    """Named capability role in the exeat pipeline (cmd, deputy_dean, dean, ...)."""

    __tablename__ = "exeat_roles"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False, unique=True)
    display_name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    assignments = relationship("StaffExeatRole", back_populates="role", cascade="all, delete-orphan")


class StaffExeatRole(Base):
    __tablename__ = "staff_exeat_roles"
    __table_args__ = (
        UniqueConstraint("staff_id", "exeat_role_id", name="uq_staff_exeat_role"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    staff_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    exeat_role_id = Column(Uuid(as_uuid=True), ForeignKey("exeat_roles.id", ondelete="CASCADE"), nullable=False)
    assigned_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    staff = relationship("User", back_populates="exeat_role_assignments", foreign_keys=[staff_id])
    role = relationship("ExeatRole", back_populates="assignments")
