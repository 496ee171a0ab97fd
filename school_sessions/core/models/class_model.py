"""Session-scoped classes (e.g. nursery A, 10 B). Model named SchoolClass to avoid Python 'class' keyword."""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from school_sessions.db.session import Base


class SchoolClass(Base):
    """Class-section of one session. Copied (not moved) into the next session on rollover."""

    __tablename__ = "classes"
    __table_args__ = (
        UniqueConstraint("name", "section", "session_id", name="uq_class_name_section_session"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False)
    section = Column(String(10), nullable=False)
    academic_year = Column(String(50), nullable=False)
    session_id = Column(UUID(as_uuid=True), ForeignKey("sessions.id", ondelete="RESTRICT"), nullable=False)
    capacity = Column(Integer, nullable=False, default=40)
    current_strength = Column(Integer, nullable=False, default=0)
    room_number = Column(String(20), nullable=True)
    is_active_session = Column(Boolean, nullable=False, default=True)
    session_start_date = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=True)
    session_end_date = Column(DateTime(timezone=True), nullable=True)
    # Teachers are managed outside this service
    class_teacher_id = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    session = relationship("AcademicSession", backref="classes", lazy="joined")
