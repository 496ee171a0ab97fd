import logging
from collections import Counter
from datetime import date, datetime, timezone
from typing import List, Optional, Protocol, Tuple
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from school_sessions.api.v1.attendance.service import get_attendance_summary
from school_sessions.core.enums import AttendanceStatus, PromotionStatus, SessionStatus
from school_sessions.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ServiceError
from school_sessions.core.grades import GRADUATE, next_grade
from school_sessions.core.models import AcademicSession, SchoolClass, Student, StudentAttendance

from .schemas import (
    ArchiveSessionResponse,
    AttendanceAnalytics,
    ClassAnalytics,
    ClassCopyResponse,
    ClassTemplateItem,
    CompleteSessionResponse,
    DeleteClassesResponse,
    FreshStartResponse,
    PromotionCriteria,
    SchoolClassResponse,
    SessionAnalyticsResponse,
    SessionCreate,
    SessionResponse,
    SessionStart,
    SessionUpdate,
    StudentAnalytics,
)

logger = logging.getLogger(__name__)

_PRE_PRIMARY = ("nursery", "lkg", "ukg")

DEFAULT_CLASS_TEMPLATE: List[ClassTemplateItem] = [
    ClassTemplateItem(name=name, sections=["A", "B", "C"], capacity=25) for name in _PRE_PRIMARY
] + [
    ClassTemplateItem(name=str(grade), sections=["A", "B"], capacity=30) for grade in range(1, 13)
]


class PromotionRunner(Protocol):
    """Promotes every eligible student of a session and returns how many were promoted."""

    async def __call__(self, db: AsyncSession, session_id: UUID) -> int:
        ...


def _to_response(s: AcademicSession) -> SessionResponse:
    return SessionResponse(
        id=s.id,
        name=s.name,
        academic_year=s.academic_year,
        start_date=s.start_date,
        end_date=s.end_date,
        status=s.status,
        is_current=s.is_current,
        description=s.description or "",
        promotion_criteria=PromotionCriteria(**(s.promotion_criteria or {})),
        archived_data=s.archived_data,
        completed_at=s.completed_at,
        archived_at=s.archived_at,
        created_at=s.created_at,
        updated_at=s.updated_at,
    )


def _class_response(c: SchoolClass, session_name: str) -> SchoolClassResponse:
    return SchoolClassResponse(
        id=c.id,
        name=c.name,
        section=c.section,
        academic_year=c.academic_year,
        session_id=c.session_id,
        session_name=session_name,
        capacity=c.capacity,
        current_strength=c.current_strength,
        room_number=c.room_number,
        is_active_session=c.is_active_session,
    )


def _validate_dates(start_date: date, end_date: date) -> None:
    if end_date <= start_date:
        raise InvalidStateError("end_date must be after start_date")


async def get_session_or_404(db: AsyncSession, session_id: UUID) -> AcademicSession:
    session = await db.get(AcademicSession, session_id)
    if not session:
        raise NotFoundError("Session not found")
    return session


async def _clear_current_flag(db: AsyncSession, keep_id: Optional[UUID] = None) -> None:
    """Unset is_current everywhere (except keep_id). Must run before a row is flagged current."""
    stmt = update(AcademicSession).where(AcademicSession.is_current.is_(True))
    if keep_id is not None:
        stmt = stmt.where(AcademicSession.id != keep_id)
    await db.execute(stmt.values(is_current=False))


async def insert_session(
    db: AsyncSession,
    *,
    name: str,
    academic_year: str,
    start_date: date,
    end_date: date,
    description: str = "",
    promotion_criteria: Optional[dict] = None,
    is_current: bool = True,
) -> AcademicSession:
    """Add a new active session inside the caller's transaction. Caller commits."""
    _validate_dates(start_date, end_date)
    name = name.strip()
    existing = await db.execute(select(AcademicSession.id).where(AcademicSession.name == name))
    if existing.scalar_one_or_none():
        raise ConflictError(f"Session with name '{name}' already exists")
    if is_current:
        await _clear_current_flag(db)
    session = AcademicSession(
        name=name,
        academic_year=academic_year.strip(),
        start_date=start_date,
        end_date=end_date,
        status=SessionStatus.ACTIVE.value,
        is_current=is_current,
        description=description or "",
        promotion_criteria=promotion_criteria or PromotionCriteria().model_dump(),
    )
    db.add(session)
    await db.flush()
    return session


async def _commit_or_conflict(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Another session is already marked as current or name conflict")


async def create_session(db: AsyncSession, payload: SessionCreate) -> SessionResponse:
    """Create session. With set_as_current, every other session is unset in the same transaction."""
    try:
        session = await insert_session(
            db,
            name=payload.name,
            academic_year=payload.academic_year,
            start_date=payload.start_date,
            end_date=payload.end_date,
            description=payload.description,
            promotion_criteria=payload.promotion_criteria.model_dump(),
            is_current=payload.set_as_current,
        )
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Another session is already marked as current or name conflict")
    await _commit_or_conflict(db)
    await db.refresh(session)
    logger.info("Created session %s (current=%s)", session.name, session.is_current)
    return _to_response(session)


async def start_new_session(db: AsyncSession, payload: SessionStart) -> SessionResponse:
    return await create_session(
        db,
        SessionCreate(
            name=payload.name,
            academic_year=payload.academic_year,
            start_date=payload.start_date,
            end_date=payload.end_date,
            description=payload.description,
            set_as_current=True,
        ),
    )


async def list_sessions(db: AsyncSession, status_filter: Optional[str] = None) -> List[SessionResponse]:
    stmt = select(AcademicSession)
    if status_filter:
        stmt = stmt.where(AcademicSession.status == status_filter)
    stmt = stmt.order_by(AcademicSession.start_date.desc())
    result = await db.execute(stmt)
    return [_to_response(s) for s in result.scalars().all()]


async def get_session(db: AsyncSession, session_id: UUID) -> SessionResponse:
    return _to_response(await get_session_or_404(db, session_id))


async def get_current_session(db: AsyncSession) -> Optional[SessionResponse]:
    result = await db.execute(select(AcademicSession).where(AcademicSession.is_current.is_(True)))
    session = result.scalar_one_or_none()
    return _to_response(session) if session else None


async def update_session(db: AsyncSession, session_id: UUID, payload: SessionUpdate) -> SessionResponse:
    """Update session fields. Only allowed when status is active."""
    session = await get_session_or_404(db, session_id)
    if session.status != SessionStatus.ACTIVE.value:
        raise InvalidStateError(f"Cannot update a {session.status} session")
    if payload.name is not None and payload.name.strip() != session.name:
        other = await db.execute(
            select(AcademicSession.id).where(
                AcademicSession.name == payload.name.strip(),
                AcademicSession.id != session_id,
            )
        )
        if other.scalar_one_or_none():
            raise ConflictError(f"Session with name '{payload.name}' already exists")
        session.name = payload.name.strip()
    if payload.academic_year is not None:
        session.academic_year = payload.academic_year.strip()
    if payload.start_date is not None:
        session.start_date = payload.start_date
    if payload.end_date is not None:
        session.end_date = payload.end_date
    if payload.start_date is not None or payload.end_date is not None:
        _validate_dates(session.start_date, session.end_date)
    if payload.description is not None:
        session.description = payload.description
    if payload.promotion_criteria is not None:
        session.promotion_criteria = payload.promotion_criteria.model_dump()
    await _commit_or_conflict(db)
    await db.refresh(session)
    return _to_response(session)


async def set_current_session(db: AsyncSession, session_id: UUID) -> SessionResponse:
    """Make this session current; all others become non-current in the same transaction."""
    session = await get_session_or_404(db, session_id)
    if session.status != SessionStatus.ACTIVE.value:
        raise InvalidStateError(f"Cannot set a {session.status} session as current")
    await _clear_current_flag(db, keep_id=session_id)
    session.is_current = True
    await _commit_or_conflict(db)
    await db.refresh(session)
    return _to_response(session)


async def complete_session(
    db: AsyncSession,
    session_id: UUID,
    auto_promote: bool = False,
    promoter: Optional[PromotionRunner] = None,
) -> CompleteSessionResponse:
    """
    Close the session (status=completed, end_date=today, no longer current).
    With auto_promote the injected promoter runs afterwards; its failure does not undo completion.
    """
    session = await get_session_or_404(db, session_id)
    if session.status == SessionStatus.COMPLETED.value:
        raise InvalidStateError("Session is already completed")
    if session.status == SessionStatus.ARCHIVED.value:
        raise InvalidStateError("Cannot complete an archived session")

    now = datetime.now(timezone.utc)
    session.status = SessionStatus.COMPLETED.value
    session.is_current = False
    session.end_date = now.date()
    session.completed_at = now
    await db.commit()
    session_name = session.name
    end_date = session.end_date
    logger.info("Completed session %s", session_name)

    promoted: Optional[int] = None
    message = f"Session {session_name} completed successfully"
    if auto_promote and promoter is not None:
        try:
            promoted = await promoter(db, session_id)
            message += f" and {promoted} students promoted"
        except ServiceError as e:
            await db.rollback()
            logger.error("Auto-promotion for session %s failed: %s", session_name, e.message)
            message += " but auto-promotion failed"
        except Exception:
            await db.rollback()
            logger.exception("Auto-promotion for session %s failed", session_name)
            message += " but auto-promotion failed"

    return CompleteSessionResponse(
        session=session_name,
        status=SessionStatus.COMPLETED.value,
        end_date=end_date,
        auto_promote=auto_promote,
        promoted=promoted,
        message=message,
    )


async def archive_session(db: AsyncSession, session_id: UUID) -> ArchiveSessionResponse:
    """Snapshot the session's students and classes into archived_data. Terminal state."""
    session = await get_session_or_404(db, session_id)
    if session.status != SessionStatus.COMPLETED.value:
        raise InvalidStateError("Only completed sessions can be archived")

    now = datetime.now(timezone.utc)
    students_result = await db.execute(
        select(Student).where(Student.current_session_id == session_id, Student.deleted_at.is_(None))
    )
    students = students_result.scalars().unique().all()
    classes_result = await db.execute(select(SchoolClass).where(SchoolClass.session_id == session_id))
    classes = classes_result.scalars().unique().all()

    archived_students = []
    for student in students:
        summary = await get_attendance_summary(db, student.id, session_id)
        archived_students.append(
            {
                "student_id": str(student.id),
                "final_grade": student.grade,
                "promotion_status": student.promotion_status,
                "attendance_percentage": round(summary.percentage, 2),
                "archived_at": now.isoformat(),
            }
        )
    archived_classes = [
        {"class_id": str(c.id), "name": c.name, "section": c.section, "archived_at": now.isoformat()}
        for c in classes
    ]

    session.archived_data = {"students": archived_students, "classes": archived_classes}
    session.status = SessionStatus.ARCHIVED.value
    session.is_current = False
    session.archived_at = now
    await db.commit()
    logger.info(
        "Archived session %s with %d students and %d classes",
        session.name, len(archived_students), len(archived_classes),
    )
    return ArchiveSessionResponse(
        session=session.name,
        status=session.status,
        archived_students=len(archived_students),
        archived_classes=len(archived_classes),
        message=(
            f"Session {session.name} archived successfully with "
            f"{len(archived_students)} students and {len(archived_classes)} classes"
        ),
    )


async def delete_session(db: AsyncSession, session_id: UUID) -> None:
    """Delete an archived session together with its classes and attendance."""
    session = await get_session_or_404(db, session_id)
    if session.status != SessionStatus.ARCHIVED.value:
        raise InvalidStateError("Can only delete archived sessions")
    await db.execute(delete(StudentAttendance).where(StudentAttendance.session_id == session_id))
    await db.execute(delete(SchoolClass).where(SchoolClass.session_id == session_id))
    await db.execute(
        update(Student).where(Student.current_session_id == session_id).values(current_session_id=None)
    )
    await db.delete(session)
    await db.commit()
    logger.info("Deleted archived session %s", session_id)


async def get_session_analytics(db: AsyncSession, session_id: UUID) -> SessionAnalyticsResponse:
    session = await get_session_or_404(db, session_id)

    students_result = await db.execute(
        select(Student.grade, Student.promotion_status).where(
            Student.current_session_id == session_id,
            Student.deleted_at.is_(None),
        )
    )
    student_rows = students_result.all()
    classes_result = await db.execute(select(SchoolClass.name).where(SchoolClass.session_id == session_id))
    class_names = classes_result.scalars().all()

    attendance_result = await db.execute(
        select(StudentAttendance.status, func.count(StudentAttendance.id))
        .where(StudentAttendance.session_id == session_id)
        .group_by(StudentAttendance.status)
    )
    attendance_counts = dict(attendance_result.all())
    total_records = sum(attendance_counts.values())
    present = attendance_counts.get(AttendanceStatus.PRESENT.value, 0)
    average = (present / total_records) * 100 if total_records else 0.0

    return SessionAnalyticsResponse(
        session=session.name,
        status=session.status,
        start_date=session.start_date,
        end_date=session.end_date,
        students=StudentAnalytics(
            total=len(student_rows),
            by_grade=dict(Counter(grade for grade, _ in student_rows)),
            by_promotion_status=dict(Counter(status for _, status in student_rows)),
        ),
        classes=ClassAnalytics(total=len(class_names), by_grade=dict(Counter(class_names))),
        attendance=AttendanceAnalytics(total_records=total_records, average_attendance=round(average, 2)),
    )


async def fresh_start(db: AsyncSession, session_id: UUID) -> FreshStartResponse:
    """
    Prepare the session's promoted students for the next session: each moves up one grade
    (students already in the last grade keep it), leaves the session and returns to pending.
    The session's classes are deactivated.
    """
    session = await get_session_or_404(db, session_id)
    if session.status == SessionStatus.ARCHIVED.value:
        raise InvalidStateError("Cannot prepare a fresh start for an archived session")

    result = await db.execute(
        select(Student).where(
            Student.current_session_id == session_id,
            Student.promotion_status == PromotionStatus.PROMOTED.value,
            Student.deleted_at.is_(None),
        )
    )
    students = result.scalars().unique().all()
    for student in students:
        student.previous_grade = student.grade
        student.previous_section = student.section
        target = next_grade(student.grade)
        if target != GRADUATE:
            student.grade = target
        student.current_session_id = None
        student.promotion_status = PromotionStatus.PENDING.value
        student.promotion_date = None
        student.promotion_notes = ""

    classes = await db.execute(
        update(SchoolClass)
        .where(SchoolClass.session_id == session_id, SchoolClass.is_active_session.is_(True))
        .values(is_active_session=False, session_end_date=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    deactivated = classes.rowcount
    await db.commit()
    logger.info(
        "Fresh start for session %s: %d students moved up, %d classes deactivated",
        session.name, len(students), deactivated,
    )
    return FreshStartResponse(
        session=session.name,
        promoted_students=len(students),
        deactivated_classes=deactivated,
        message="Fresh start completed",
    )


# ----- Classes -----
async def _class_exists(db: AsyncSession, name: str, section: str, session_id: UUID) -> bool:
    result = await db.execute(
        select(SchoolClass.id).where(
            SchoolClass.name == name,
            SchoolClass.section == section,
            SchoolClass.session_id == session_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def copy_classes(
    db: AsyncSession,
    source_session_id: UUID,
    target: AcademicSession,
) -> Tuple[List[SchoolClass], int]:
    """
    Copy every class of the source session into target, skipping (name, section) pairs
    that already exist there. Returns (created classes, skipped count). Caller commits.
    """
    result = await db.execute(
        select(SchoolClass)
        .where(SchoolClass.session_id == source_session_id)
        .order_by(SchoolClass.name, SchoolClass.section)
    )
    created: List[SchoolClass] = []
    skipped = 0
    for source_class in result.scalars().unique().all():
        if await _class_exists(db, source_class.name, source_class.section, target.id):
            skipped += 1
            continue
        new_class = SchoolClass(
            name=source_class.name,
            section=source_class.section,
            academic_year=target.academic_year,
            session_id=target.id,
            capacity=source_class.capacity,
            room_number=source_class.room_number,
            is_active_session=True,
            session_start_date=datetime.now(timezone.utc),
        )
        db.add(new_class)
        created.append(new_class)
    await db.flush()
    return created, skipped


async def copy_classes_from(
    db: AsyncSession,
    session_id: UUID,
    source_session_id: UUID,
) -> ClassCopyResponse:
    target = await get_session_or_404(db, session_id)
    source = await db.get(AcademicSession, source_session_id)
    if not source:
        raise NotFoundError("Source session not found")
    if target.status == SessionStatus.ARCHIVED.value:
        raise InvalidStateError("Cannot add classes to an archived session")
    source_count = await db.execute(
        select(func.count(SchoolClass.id)).where(SchoolClass.session_id == source_session_id)
    )
    if not source_count.scalar_one():
        raise InvalidStateError(f"No classes found in source session: {source.name}")
    created, skipped = await copy_classes(db, source_session_id, target)
    await db.commit()
    return ClassCopyResponse(
        session=target.name,
        source_session=source.name,
        created=len(created),
        skipped=skipped,
        classes=[_class_response(c, target.name) for c in created],
    )


async def auto_create_classes(
    db: AsyncSession,
    session_id: UUID,
    template: Optional[List[ClassTemplateItem]] = None,
) -> ClassCopyResponse:
    """Create classes from a grade template; existing (name, section) pairs are left alone."""
    session = await get_session_or_404(db, session_id)
    if session.status == SessionStatus.ARCHIVED.value:
        raise InvalidStateError("Cannot add classes to an archived session")
    created: List[SchoolClass] = []
    skipped = 0
    for item in template or DEFAULT_CLASS_TEMPLATE:
        for section in item.sections:
            if await _class_exists(db, item.name, section, session_id):
                skipped += 1
                continue
            new_class = SchoolClass(
                name=item.name,
                section=section,
                academic_year=session.academic_year,
                session_id=session_id,
                capacity=item.capacity,
                room_number=f"{item.name.upper()}{section}",
                is_active_session=True,
            )
            db.add(new_class)
            created.append(new_class)
    await db.commit()
    return ClassCopyResponse(
        session=session.name,
        created=len(created),
        skipped=skipped,
        classes=[_class_response(c, session.name) for c in created],
    )


async def delete_session_classes(db: AsyncSession, session_id: UUID) -> DeleteClassesResponse:
    """Remove every class of the session. 400 when there is nothing to remove."""
    session = await get_session_or_404(db, session_id)
    if session.status == SessionStatus.ARCHIVED.value:
        raise InvalidStateError("Cannot remove classes from an archived session")
    count = await db.execute(select(func.count(SchoolClass.id)).where(SchoolClass.session_id == session_id))
    total = count.scalar_one()
    if not total:
        raise InvalidStateError(f"No classes found in session: {session.name}")
    await db.execute(delete(SchoolClass).where(SchoolClass.session_id == session_id))
    await db.commit()
    logger.info("Deleted %d classes of session %s", total, session.name)
    return DeleteClassesResponse(
        session=session.name,
        deleted_classes=total,
        message="All classes deleted successfully",
    )
