"""Attendance aggregation and bulk marking."""

import logging
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from school_sessions.core.bulk import run_bulk
from school_sessions.core.enums import AttendanceStatus, SessionStatus
from school_sessions.core.exceptions import InvalidStateError, NotFoundError
from school_sessions.core.models import AcademicSession, Student, StudentAttendance

from .schemas import (
    AttendanceBulkMark,
    AttendanceBulkMarkResponse,
    AttendanceMarkItem,
    AttendancePercentageResponse,
    StudentAttendanceRecord,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttendanceSummary:
    """Full-precision attendance figures; round only when presenting."""

    percentage: float
    total_days: int
    present_days: int


async def get_attendance_summary(
    db: AsyncSession,
    student_id: UUID,
    session_id: UUID,
) -> AttendanceSummary:
    """Percentage of 'present' days over all recorded days. No records means 0%."""
    result = await db.execute(
        select(
            func.count(StudentAttendance.id),
            func.coalesce(
                func.sum(case((StudentAttendance.status == AttendanceStatus.PRESENT.value, 1), else_=0)),
                0,
            ),
        ).where(
            StudentAttendance.student_id == student_id,
            StudentAttendance.session_id == session_id,
        )
    )
    total_days, present_days = result.one()
    total_days = int(total_days or 0)
    present_days = int(present_days or 0)
    percentage = (present_days / total_days) * 100 if total_days > 0 else 0.0
    return AttendanceSummary(percentage=percentage, total_days=total_days, present_days=present_days)


async def get_attendance_percentage(
    db: AsyncSession,
    student_id: UUID,
    session_id: UUID,
) -> AttendancePercentageResponse:
    student = await db.get(Student, student_id)
    if not student or student.deleted_at is not None:
        raise NotFoundError("Student not found")
    session = await db.get(AcademicSession, session_id)
    if not session:
        raise NotFoundError("Session not found")
    summary = await get_attendance_summary(db, student_id, session_id)
    return AttendancePercentageResponse(
        student_id=student_id,
        session_id=session_id,
        session_name=session.name,
        percentage=round(summary.percentage, 2),
        total_days=summary.total_days,
        present_days=summary.present_days,
    )


def _to_record(sa: StudentAttendance, session_name: str) -> StudentAttendanceRecord:
    return StudentAttendanceRecord(
        id=sa.id,
        student_id=sa.student_id,
        session_id=sa.session_id,
        session_name=session_name,
        date=sa.date,
        status=sa.status,
        remarks=sa.remarks,
        created_at=sa.created_at,
    )


async def bulk_mark_attendance(
    db: AsyncSession,
    payload: AttendanceBulkMark,
) -> AttendanceBulkMarkResponse:
    """Upsert one attendance record per item. Session and date problems fail the whole request."""
    if payload.date > date.today():
        raise InvalidStateError("Cannot mark attendance for future dates")
    session = await db.get(AcademicSession, payload.session_id)
    if not session:
        raise NotFoundError("Session not found")
    if session.status == SessionStatus.ARCHIVED.value:
        raise InvalidStateError("Cannot mark attendance for an archived session")
    session_id = session.id
    session_name = session.name

    async def mark_one(item: AttendanceMarkItem) -> StudentAttendanceRecord:
        student = await db.get(Student, item.student_id)
        if not student or student.deleted_at is not None:
            raise NotFoundError(f"Student {item.student_id} not found")
        existing = await db.execute(
            select(StudentAttendance).where(
                StudentAttendance.student_id == item.student_id,
                StudentAttendance.session_id == session_id,
                StudentAttendance.date == payload.date,
            )
        )
        sa = existing.scalars().first()
        if sa:
            sa.status = item.status
            if item.remarks is not None:
                sa.remarks = item.remarks
        else:
            sa = StudentAttendance(
                student_id=item.student_id,
                session_id=session_id,
                date=payload.date,
                status=item.status,
                remarks=item.remarks,
            )
            db.add(sa)
        await db.commit()
        await db.refresh(sa)
        return _to_record(sa, session_name)

    result = await run_bulk(db, payload.records, mark_one, key_of=lambda item: item.student_id)
    if result.errors:
        logger.warning(
            "Bulk attendance for session %s on %s: %d marked, %d failed",
            session_name, payload.date, result.succeeded_count, len(result.errors),
        )
    return AttendanceBulkMarkResponse(
        marked=result.succeeded_count,
        errors=result.errors,
        records=result.records,
    )
