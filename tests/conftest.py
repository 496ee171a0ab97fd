import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from datetime import date, timedelta
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from school_sessions.core.models import AcademicSession, SchoolClass, Student, StudentAttendance
from school_sessions.db.init_db import init_models
from school_sessions.db.session import get_db
from school_sessions.main import app

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite database per test; StaticPool keeps the single connection alive."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, future=True, poolclass=StaticPool)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.clear()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def make_session(db_session: AsyncSession):
    async def _make(
        name: str = "2025-2026",
        academic_year: Optional[str] = None,
        start_date: date = date(2025, 4, 1),
        end_date: date = date(2026, 3, 31),
        status: str = "active",
        is_current: bool = False,
        minimum_attendance: float = 75,
        minimum_grade: str = "D",
    ) -> AcademicSession:
        session = AcademicSession(
            name=name,
            academic_year=academic_year or name,
            start_date=start_date,
            end_date=end_date,
            status=status,
            is_current=is_current,
            promotion_criteria={
                "minimum_attendance": minimum_attendance,
                "minimum_grade": minimum_grade,
                "require_all_subjects": True,
            },
        )
        db_session.add(session)
        await db_session.commit()
        return session

    return _make


@pytest.fixture()
def make_class(db_session: AsyncSession):
    async def _make(session: AcademicSession, name: str = "10", section: str = "A", capacity: int = 40) -> SchoolClass:
        school_class = SchoolClass(
            name=name,
            section=section,
            academic_year=session.academic_year,
            session_id=session.id,
            capacity=capacity,
            room_number=f"{name}{section}",
        )
        db_session.add(school_class)
        await db_session.commit()
        return school_class

    return _make


@pytest.fixture()
def make_student(db_session: AsyncSession):
    async def _make(
        session: Optional[AcademicSession],
        name: str = "Alice",
        grade: str = "10",
        section: Optional[str] = "A",
    ) -> Student:
        student = Student(
            name=name,
            grade=grade,
            section=section,
            current_session_id=session.id if session else None,
        )
        db_session.add(student)
        await db_session.commit()
        return student

    return _make


@pytest.fixture()
def add_attendance(db_session: AsyncSession):
    """Record `present` present days followed by `absent` absent days for a student."""

    async def _add(student: Student, session: AcademicSession, present: int, absent: int = 0) -> None:
        day = session.start_date
        for status in ["present"] * present + ["absent"] * absent:
            db_session.add(
                StudentAttendance(student_id=student.id, session_id=session.id, date=day, status=status)
            )
            day += timedelta(days=1)
        await db_session.commit()

    return _add
