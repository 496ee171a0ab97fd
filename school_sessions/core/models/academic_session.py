import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID

from school_sessions.core.enums import SessionStatus
from school_sessions.db.session import Base

DEFAULT_PROMOTION_CRITERIA = {
    "minimum_attendance": 75,
    "minimum_grade": "D",
    "require_all_subjects": True,
}


def _default_promotion_criteria() -> dict:
    return dict(DEFAULT_PROMOTION_CRITERIA)


class AcademicSession(Base):
    """
    One academic year's administrative period (e.g. "2025-2026").
    At most one session is is_current = true; the partial unique index enforces it.
    Lifecycle: active -> completed -> archived. Archived sessions are read-only.
    """

    __tablename__ = "sessions"
    __table_args__ = (
        Index(
            "uq_sessions_single_current",
            "is_current",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False, unique=True)
    academic_year = Column(String(50), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=SessionStatus.ACTIVE.value)
    is_current = Column(Boolean, nullable=False, default=False)
    description = Column(Text, nullable=False, default="")
    # {"minimum_attendance": 75, "minimum_grade": "D", "require_all_subjects": true}
    promotion_criteria = Column(JSON, nullable=False, default=_default_promotion_criteria)
    # Snapshot taken when archiving: {"students": [...], "classes": [...]}
    archived_data = Column(JSON, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
