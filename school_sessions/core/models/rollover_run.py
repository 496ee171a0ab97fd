import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID

from school_sessions.core.enums import RolloverRunStatus
from school_sessions.db.session import Base


class RolloverRun(Base):
    """
    Audit record and mutual-exclusion token for one rollover attempt.
    Only one run per source session may be 'running'; the partial unique index makes
    the insert itself the lock. completed_steps is the durable step log used to resume.
    Session names are a snapshot taken when the run started.
    """

    __tablename__ = "rollover_runs"
    __table_args__ = (
        Index(
            "uq_rollover_runs_one_running_per_source",
            "source_session_id",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
        Index("ix_rollover_runs_source_status", "source_session_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    source_session_id = Column(
        UUID(as_uuid=True),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    source_session_name = Column(String(50), nullable=False)
    target_session_id = Column(
        UUID(as_uuid=True),
        ForeignKey("sessions.id", ondelete="SET NULL"),
        nullable=True,
    )
    target_session_name = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default=RolloverRunStatus.RUNNING.value)
    classes_copied = Column(Integer, nullable=False, default=0)
    promoted = Column(Integer, nullable=False, default=0)
    retained = Column(Integer, nullable=False, default=0)
    completed_steps = Column(JSON, nullable=False, default=list)
    message = Column(Text, nullable=False, default="")
    started_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
