"""
Session rollover saga.

A run moves one source session into a newly created next session:
create session -> copy classes -> migrate students -> deactivate source classes -> finalize.
Each step commits together with its entry in the run's completed_steps log, so a failed or
abandoned run can be resumed from where it stopped. Nothing is rolled back across steps;
a failure marks the run failed and re-raises.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from school_sessions.api.v1.promotion.service import apply_promotion, evaluate_student
from school_sessions.api.v1.sessions.service import copy_classes, get_session_or_404, insert_session
from school_sessions.core.config import settings
from school_sessions.core.enums import PromotionStatus, RolloverRunStatus, RolloverStep, SessionStatus
from school_sessions.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ServiceError
from school_sessions.core.models import DEFAULT_PROMOTION_CRITERIA, AcademicSession, RolloverRun, SchoolClass, Student

from .planner import NextSessionPlan, plan_next_session
from .schemas import RolloverCounts, RolloverResponse, RolloverRunResponse

logger = logging.getLogger(__name__)

AUTO_ROLLOVER_NOTES = "Auto rollover"
RETAINED_NOTES = "Below attendance criteria"


def _to_response(run: RolloverRun) -> RolloverRunResponse:
    return RolloverRunResponse(
        id=run.id,
        source_session_id=run.source_session_id,
        source_session_name=run.source_session_name,
        target_session_id=run.target_session_id,
        target_session_name=run.target_session_name,
        status=run.status,
        counts=RolloverCounts(
            classes_copied=run.classes_copied or 0,
            promoted=run.promoted or 0,
            retained=run.retained or 0,
        ),
        completed_steps=list(run.completed_steps or []),
        message=run.message or "",
        started_at=run.started_at,
        finished_at=run.finished_at,
    )


def _step_done(run: RolloverRun, step: RolloverStep) -> bool:
    return step.value in (run.completed_steps or [])


def _mark_step(run: RolloverRun, step: RolloverStep) -> None:
    # Reassign so the JSON column is flagged dirty
    run.completed_steps = [*(run.completed_steps or []), step.value]


async def _get_run(db: AsyncSession, run_id: UUID) -> RolloverRun:
    run = await db.get(RolloverRun, run_id)
    if not run:
        raise NotFoundError("Rollover run not found")
    return run


# ----- Steps -----
async def _create_next_session(
    db: AsyncSession,
    run: RolloverRun,
    source: AcademicSession,
    plan: NextSessionPlan,
) -> AcademicSession:
    if _step_done(run, RolloverStep.CREATE_SESSION):
        target = await db.get(AcademicSession, run.target_session_id) if run.target_session_id else None
        if not target:
            raise NotFoundError(f"Target session {run.target_session_name} of this rollover no longer exists")
        return target
    target = await insert_session(
        db,
        name=plan.name,
        academic_year=plan.academic_year,
        start_date=plan.start_date,
        end_date=plan.end_date,
        description=f"Rolled over from {source.name}",
        promotion_criteria=dict(source.promotion_criteria or DEFAULT_PROMOTION_CRITERIA),
        is_current=True,
    )
    run.target_session_id = target.id
    run.target_session_name = target.name
    _mark_step(run, RolloverStep.CREATE_SESSION)
    await db.commit()
    logger.info("Rollover %s: created session %s", run.id, target.name)
    return target


async def _copy_classes(
    db: AsyncSession,
    run: RolloverRun,
    source: AcademicSession,
    target: AcademicSession,
) -> None:
    if _step_done(run, RolloverStep.COPY_CLASSES):
        return
    created, skipped = await copy_classes(db, source.id, target)
    run.classes_copied = len(created)
    _mark_step(run, RolloverStep.COPY_CLASSES)
    await db.commit()
    logger.info("Rollover %s: copied %d classes, %d already present", run.id, len(created), skipped)


async def _migrate_students(
    db: AsyncSession,
    run: RolloverRun,
    source: AcademicSession,
    target: AcademicSession,
) -> None:
    """Evaluate each student of the source session against its criteria, one commit per student."""
    if _step_done(run, RolloverStep.MIGRATE_STUDENTS):
        return
    result = await db.execute(
        select(Student.id)
        .where(
            Student.current_session_id == source.id,
            Student.deleted_at.is_(None),
            or_(Student.promotion_run_id.is_(None), Student.promotion_run_id != run.id),
        )
        .order_by(Student.grade, Student.section, Student.name)
    )
    student_ids: List[UUID] = list(result.scalars().all())
    for student_id in student_ids:
        student = await db.get(Student, student_id)
        evaluation = await evaluate_student(db, student, source)
        if evaluation.eligible:
            apply_promotion(
                student,
                next_section=student.section,
                next_session_id=target.id,
                notes=AUTO_ROLLOVER_NOTES,
            )
            run.promoted = (run.promoted or 0) + 1
        else:
            student.promotion_status = PromotionStatus.RETAINED.value
            student.promotion_notes = RETAINED_NOTES
            run.retained = (run.retained or 0) + 1
        student.promotion_run_id = run.id
        await db.commit()
    _mark_step(run, RolloverStep.MIGRATE_STUDENTS)
    await db.commit()
    logger.info(
        "Rollover %s: migrated %d students (%d promoted, %d retained in total)",
        run.id, len(student_ids), run.promoted, run.retained,
    )


async def _deactivate_source_classes(db: AsyncSession, run: RolloverRun, source: AcademicSession) -> None:
    if _step_done(run, RolloverStep.DEACTIVATE_SOURCE_CLASSES):
        return
    await db.execute(
        update(SchoolClass)
        .where(SchoolClass.session_id == source.id)
        .values(is_active_session=False, session_end_date=datetime.now(timezone.utc))
    )
    _mark_step(run, RolloverStep.DEACTIVATE_SOURCE_CLASSES)
    await db.commit()
    logger.info("Rollover %s: deactivated classes of %s", run.id, source.name)


# ----- Orchestration -----
async def _mark_failed(db: AsyncSession, run_id: UUID, message: str) -> None:
    """Best effort: a failure here is logged and the original error still propagates."""
    try:
        run = await db.get(RolloverRun, run_id)
        if run is None or run.status != RolloverRunStatus.RUNNING.value:
            return
        run.status = RolloverRunStatus.FAILED.value
        run.message = message
        run.finished_at = datetime.now(timezone.utc)
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Could not record failure of rollover run %s", run_id)
        await db.rollback()


async def _execute(db: AsyncSession, run_id: UUID, source_session_id: UUID) -> RolloverResponse:
    try:
        run = await _get_run(db, run_id)
        source = await get_session_or_404(db, source_session_id)
        plan = plan_next_session(source.name, source.academic_year, source.end_date)
        target = await _create_next_session(db, run, source, plan)
        await _copy_classes(db, run, source, target)
        await _migrate_students(db, run, source, target)
        await _deactivate_source_classes(db, run, source)

        message = (
            f"Session {source.name} rolled over to {target.name}: "
            f"{run.promoted} promoted, {run.retained} retained"
        )
        run.status = RolloverRunStatus.COMPLETED.value
        run.message = message
        run.finished_at = datetime.now(timezone.utc)
        await db.commit()
    except Exception as e:
        await db.rollback()
        message = e.message if isinstance(e, ServiceError) else str(e)
        logger.error("Rollover run %s failed: %s", run_id, message)
        await _mark_failed(db, run_id, message)
        raise

    logger.info("Rollover run %s completed: %s", run_id, message)
    return RolloverResponse(message=message, new_session=target.name, run=_to_response(run))


async def start_rollover(db: AsyncSession, session_id: UUID) -> RolloverResponse:
    """
    Roll the session over into the next one.
    Inserting the running RolloverRun is the lock: a second concurrent insert for the same source
    violates the partial unique index and is reported as a conflict before anything else happens.
    """
    source = await get_session_or_404(db, session_id)
    if source.status == SessionStatus.ARCHIVED.value:
        raise InvalidStateError("Cannot roll over an archived session")
    source_name = source.name

    run = RolloverRun(
        source_session_id=source.id,
        source_session_name=source_name,
        status=RolloverRunStatus.RUNNING.value,
        completed_steps=[],
        started_at=datetime.now(timezone.utc),
    )
    db.add(run)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"A rollover is already running for session {source_name}")
    logger.info("Rollover run %s started for session %s", run.id, source_name)
    return await _execute(db, run.id, session_id)


async def resume_rollover(db: AsyncSession, run_id: UUID) -> RolloverResponse:
    """
    Continue a failed run, or a running one abandoned for longer than the stale threshold.
    The run is claimed with a single conditional UPDATE that also restarts started_at, so of
    several concurrent resumers only one gets in and the claimed run is not stale again.
    """
    run = await _get_run(db, run_id)
    if run.status == RolloverRunStatus.COMPLETED.value:
        raise InvalidStateError("Rollover run is already completed")
    previous_status = run.status

    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=settings.rollover_stale_after_minutes)
    claim = (
        update(RolloverRun)
        .where(
            RolloverRun.id == run_id,
            or_(
                RolloverRun.status == RolloverRunStatus.FAILED.value,
                and_(
                    RolloverRun.status == RolloverRunStatus.RUNNING.value,
                    RolloverRun.started_at < cutoff,
                ),
            ),
        )
        .values(status=RolloverRunStatus.RUNNING.value, started_at=now, message="", finished_at=None)
        .execution_options(synchronize_session=False)
    )
    try:
        result = await db.execute(claim)
        claimed = result.rowcount == 1
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"A rollover is already running for session {run.source_session_name}")
    await db.refresh(run)
    if not claimed:
        if run.status == RolloverRunStatus.COMPLETED.value:
            raise InvalidStateError("Rollover run is already completed")
        raise InvalidStateError("Rollover run is still in progress")

    if previous_status == RolloverRunStatus.RUNNING.value:
        logger.warning("Resuming stale rollover run %s", run.id)
    logger.info("Resuming rollover run %s after steps %s", run.id, run.completed_steps)
    return await _execute(db, run.id, run.source_session_id)


async def list_rollover_runs(db: AsyncSession, session_id: UUID) -> List[RolloverRunResponse]:
    await get_session_or_404(db, session_id)
    result = await db.execute(
        select(RolloverRun)
        .where(RolloverRun.source_session_id == session_id)
        .order_by(RolloverRun.started_at.desc())
    )
    return [_to_response(run) for run in result.scalars().all()]
