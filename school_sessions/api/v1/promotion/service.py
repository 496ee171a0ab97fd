"""Promotion eligibility and student promotion."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from school_sessions.api.v1.attendance.service import get_attendance_summary
from school_sessions.core.bulk import run_bulk
from school_sessions.core.enums import PromotionStatus, SessionStatus
from school_sessions.core.exceptions import InvalidStateError, NotFoundError
from school_sessions.core.grades import GRADUATE, GRADUATED_GRADE, GRADUATED_SECTION, next_grade
from school_sessions.core.models import DEFAULT_PROMOTION_CRITERIA, AcademicSession, Student

from .schemas import (
    BulkPromoteRequest,
    BulkPromoteResponse,
    PromoteStudentRequest,
    PromotionEvaluationResponse,
    PromotionResultResponse,
    PromotionStats,
    PromotionStatusResponse,
    SessionPromotionResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_SECTION = "A"


@dataclass(frozen=True)
class PromotionEvaluation:
    eligible: bool
    reason: str
    percentage: float
    total_days: int
    present_days: int
    grade_criteria_met: bool


def _criteria(session: AcademicSession) -> Dict[str, Any]:
    return {**DEFAULT_PROMOTION_CRITERIA, **(session.promotion_criteria or {})}


def _grade_criteria_met(student: Student, criteria: Dict[str, Any]) -> bool:
    # TODO: check minimum_grade and require_all_subjects once exam results are stored per session.
    # Until then grade criteria are declared on the session but never enforced.
    return True


async def evaluate_student(
    db: AsyncSession,
    student: Student,
    session: AcademicSession,
) -> PromotionEvaluation:
    """Eligibility of a student against the session's promotion criteria (attendance only)."""
    criteria = _criteria(session)
    minimum_attendance = float(criteria["minimum_attendance"])
    summary = await get_attendance_summary(db, student.id, session.id)

    if summary.percentage < minimum_attendance:
        return PromotionEvaluation(
            eligible=False,
            reason=(
                f"Attendance below minimum requirement "
                f"({summary.percentage:.2f}% < {minimum_attendance:g}%)"
            ),
            percentage=summary.percentage,
            total_days=summary.total_days,
            present_days=summary.present_days,
            grade_criteria_met=False,
        )

    if not _grade_criteria_met(student, criteria):
        return PromotionEvaluation(
            eligible=False,
            reason="Grade below minimum requirement",
            percentage=summary.percentage,
            total_days=summary.total_days,
            present_days=summary.present_days,
            grade_criteria_met=False,
        )

    return PromotionEvaluation(
        eligible=True,
        reason="All criteria met",
        percentage=summary.percentage,
        total_days=summary.total_days,
        present_days=summary.present_days,
        grade_criteria_met=True,
    )


def apply_promotion(
    student: Student,
    *,
    next_grade_code: Optional[str] = None,
    next_section: Optional[str] = None,
    next_session_id: Optional[UUID] = None,
    notes: str = "",
) -> None:
    """
    Move a student up one grade (or to next_grade_code). Graduates leave with grade 'graduated',
    section 'N/A' and no session. Caller commits.
    """
    target = next_grade_code or next_grade(student.grade)
    student.previous_grade = student.grade
    student.previous_section = student.section
    if target == GRADUATE:
        student.promotion_status = PromotionStatus.GRADUATED.value
        student.grade = GRADUATED_GRADE
        student.section = GRADUATED_SECTION
        student.current_session_id = None
    else:
        student.promotion_status = PromotionStatus.PROMOTED.value
        student.grade = target
        student.section = next_section or DEFAULT_SECTION
        student.current_session_id = next_session_id
    student.promotion_date = datetime.now(timezone.utc)
    student.promotion_notes = notes


def _evaluation_response(student: Student, evaluation: PromotionEvaluation) -> PromotionEvaluationResponse:
    return PromotionEvaluationResponse(
        student_id=student.id,
        student_name=student.name,
        grade=student.grade,
        section=student.section,
        eligible=evaluation.eligible,
        reason=evaluation.reason,
        attendance_percentage=round(evaluation.percentage, 2),
        total_days=evaluation.total_days,
        present_days=evaluation.present_days,
        grade_criteria_met=evaluation.grade_criteria_met,
    )


async def _promote(
    db: AsyncSession,
    student: Student,
    evaluation: PromotionEvaluation,
    payload: PromoteStudentRequest,
) -> PromotionResultResponse:
    """Manual promotion: the student leaves the session and awaits enrollment into the next one."""
    evaluation_response = _evaluation_response(student, evaluation)
    apply_promotion(
        student,
        next_grade_code=payload.next_grade,
        next_section=payload.next_section,
        notes=payload.notes,
    )
    await db.commit()
    return PromotionResultResponse(
        student_id=student.id,
        student_name=student.name,
        previous_grade=student.previous_grade,
        previous_section=student.previous_section,
        new_grade=student.grade,
        new_section=student.section,
        promotion_status=student.promotion_status,
        promotion_date=student.promotion_date,
        evaluation=evaluation_response,
    )


async def _get_session(db: AsyncSession, session_id: UUID) -> AcademicSession:
    session = await db.get(AcademicSession, session_id)
    if not session:
        raise NotFoundError("Session not found")
    return session


async def _session_students(db: AsyncSession, session_id: UUID) -> List[Tuple[UUID, str]]:
    """(id, name) of the session's students in evaluation order."""
    result = await db.execute(
        select(Student.id, Student.name)
        .where(Student.current_session_id == session_id, Student.deleted_at.is_(None))
        .order_by(Student.grade, Student.section, Student.name)
    )
    return [(student_id, name) for student_id, name in result.all()]


async def evaluate_session_promotions(
    db: AsyncSession,
    session_id: UUID,
    auto_promote: bool = False,
) -> SessionPromotionResponse:
    """Evaluate every student of a completed session; optionally promote the eligible ones."""
    session = await _get_session(db, session_id)
    if session.status != SessionStatus.COMPLETED.value:
        raise InvalidStateError("Session must be completed before evaluating promotions")
    session_name = session.name
    students = await _session_students(db, session_id)

    async def evaluate_one(row: Tuple[UUID, str]) -> Tuple[PromotionEvaluationResponse, bool]:
        student_id, _ = row
        student = await db.get(Student, student_id)
        current = await _get_session(db, session_id)
        evaluation = await evaluate_student(db, student, current)
        response = _evaluation_response(student, evaluation)
        if auto_promote and evaluation.eligible:
            apply_promotion(student)
            await db.commit()
            return response, True
        return response, False

    result = await run_bulk(
        db,
        students,
        evaluate_one,
        key_of=lambda row: row[0],
        details_of=lambda row: {"student_name": row[1]},
    )
    promoted = sum(1 for _, was_promoted in result.records if was_promoted)
    logger.info(
        "Evaluated %d students of session %s (auto_promote=%s): %d promoted, %d errors",
        len(students), session_name, auto_promote, promoted, len(result.errors),
    )
    return SessionPromotionResponse(
        session=session_name,
        total_students=len(students),
        results=[response for response, _ in result.records],
        promoted=promoted,
        errors=result.errors,
    )


async def auto_promote_session(db: AsyncSession, session_id: UUID) -> int:
    """Promotion runner used when completing a session with auto_promote. Returns promoted count."""
    result = await evaluate_session_promotions(db, session_id, auto_promote=True)
    return result.promoted


async def promote_single_student(
    db: AsyncSession,
    student_id: UUID,
    payload: PromoteStudentRequest,
) -> PromotionResultResponse:
    student = await db.get(Student, student_id)
    if not student or student.deleted_at is not None:
        raise NotFoundError("Student not found")
    if student.current_session_id is None:
        raise NotFoundError("Student session not found")
    session = await _get_session(db, student.current_session_id)
    evaluation = await evaluate_student(db, student, session)
    if not evaluation.eligible:
        raise InvalidStateError(f"Student not eligible for promotion: {evaluation.reason}")
    return await _promote(db, student, evaluation, payload)


async def bulk_promote(db: AsyncSession, payload: BulkPromoteRequest) -> BulkPromoteResponse:
    """Promote an explicit list of students; each failure is reported without stopping the rest."""
    session = await _get_session(db, payload.session_id)
    session_name = session.name

    async def promote_one(student_id: UUID) -> PromotionResultResponse:
        student = await db.get(Student, student_id)
        if not student or student.deleted_at is not None:
            raise NotFoundError("Student not found")
        if student.current_session_id != payload.session_id:
            raise InvalidStateError("Student not in specified session")
        current = await _get_session(db, payload.session_id)
        evaluation = await evaluate_student(db, student, current)
        if not evaluation.eligible:
            raise InvalidStateError(f"Not eligible: {evaluation.reason}")
        return await _promote(db, student, evaluation, payload)

    result = await run_bulk(db, payload.student_ids, promote_one, key_of=lambda sid: sid)
    logger.info(
        "Bulk promotion for session %s: %d promoted, %d errors",
        session_name, result.succeeded_count, len(result.errors),
    )
    return BulkPromoteResponse(
        session=session_name,
        promoted=result.succeeded_count,
        errors=result.errors,
        records=result.records,
    )


async def get_promotion_status(db: AsyncSession, session_id: UUID) -> PromotionStatusResponse:
    session = await _get_session(db, session_id)
    result = await db.execute(
        select(Student.grade, Student.promotion_status).where(
            Student.current_session_id == session_id,
            Student.deleted_at.is_(None),
        )
    )
    stats = PromotionStats()
    by_grade: Dict[str, PromotionStats] = {}
    for grade, promotion_status in result.all():
        grade_stats = by_grade.setdefault(grade, PromotionStats())
        for bucket in (stats, grade_stats):
            bucket.total += 1
            if promotion_status in PromotionStats.model_fields:
                setattr(bucket, promotion_status, getattr(bucket, promotion_status) + 1)
    return PromotionStatusResponse(
        session=session.name,
        status=session.status,
        promotion_stats=stats,
        grade_breakdown=by_grade,
    )
