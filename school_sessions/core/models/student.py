import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from school_sessions.core.enums import PromotionStatus
from school_sessions.db.session import Base


class Student(Base):
    """
    Student enrollment state. grade/section/current_session_id describe where the student is now.
    Promotion fields are written only by promotion and rollover; current_session_id is null
    for graduates and for students promoted manually but not yet enrolled in the next session.
    """

    __tablename__ = "students"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    roll_number = Column(String(50), nullable=True)
    grade = Column(String(20), nullable=False)
    section = Column(String(10), nullable=True, default="A")
    current_session_id = Column(
        UUID(as_uuid=True),
        ForeignKey("sessions.id", ondelete="SET NULL"),
        nullable=True,
    )
    promotion_status = Column(String(20), nullable=False, default=PromotionStatus.PENDING.value)
    previous_grade = Column(String(20), nullable=True)
    previous_section = Column(String(10), nullable=True)
    promotion_date = Column(DateTime(timezone=True), nullable=True)
    promotion_notes = Column(Text, nullable=True)
    # Last rollover run that migrated this student; lets a resumed run skip finished students
    promotion_run_id = Column(
        UUID(as_uuid=True),
        ForeignKey("rollover_runs.id", ondelete="SET NULL"),
        nullable=True,
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    current_session = relationship("AcademicSession", foreign_keys=[current_session_id], lazy="joined")
