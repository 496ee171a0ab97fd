from datetime import date
from uuid import UUID, uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from school_sessions.api.v1.sessions.router import get_promotion_runner
from school_sessions.core.models import AcademicSession, SchoolClass
from school_sessions.main import app


async def _current_count(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(AcademicSession.id)).where(AcademicSession.is_current.is_(True))
    )
    return result.scalar_one()


def _session_payload(name: str, **overrides) -> dict:
    payload = {
        "name": name,
        "academic_year": name,
        "start_date": "2025-04-01",
        "end_date": "2026-03-31",
        "description": "",
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_start_session_is_current_and_unsets_others(client: AsyncClient, db_session: AsyncSession) -> None:
    first = await client.post("/api/v1/sessions/start", json=_session_payload("2024-2025"))
    second = await client.post("/api/v1/sessions/start", json=_session_payload("2025-2026"))

    assert first.status_code == 201
    assert second.status_code == 201
    data = second.json()
    assert data["status"] == "active"
    assert data["is_current"] is True
    assert data["promotion_criteria"]["minimum_attendance"] == 75

    assert await _current_count(db_session) == 1
    current = await client.get("/api/v1/sessions/current")
    assert current.json()["name"] == "2025-2026"


@pytest.mark.asyncio
async def test_create_session_with_criteria_not_current(client: AsyncClient, db_session: AsyncSession) -> None:
    await client.post("/api/v1/sessions/start", json=_session_payload("2024-2025"))

    response = await client.post(
        "/api/v1/sessions",
        json=_session_payload(
            "2025-2026",
            set_as_current=False,
            promotion_criteria={"minimum_attendance": 60, "minimum_grade": "C", "require_all_subjects": False},
        ),
    )

    assert response.status_code == 201
    data = response.json()
    assert data["is_current"] is False
    assert data["promotion_criteria"] == {"minimum_attendance": 60, "minimum_grade": "C", "require_all_subjects": False}
    current = await client.get("/api/v1/sessions/current")
    assert current.json()["name"] == "2024-2025"


@pytest.mark.asyncio
async def test_duplicate_session_name_conflicts(client: AsyncClient) -> None:
    assert (await client.post("/api/v1/sessions/start", json=_session_payload("2025-2026"))).status_code == 201

    response = await client.post("/api/v1/sessions/start", json=_session_payload("2025-2026"))

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_session_dates_validated(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/sessions/start",
        json=_session_payload("2025-2026", start_date="2026-01-01", end_date="2025-01-01"),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_start_requires_fields(client: AsyncClient) -> None:
    response = await client.post("/api/v1/sessions/start", json={"name": "2025-2026"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_set_current_switches_flag(client: AsyncClient, db_session: AsyncSession, make_session) -> None:
    old = await make_session("2024-2025", is_current=True)
    new = await make_session("2025-2026")

    response = await client.patch(f"/api/v1/sessions/{new.id}/set-current")

    assert response.status_code == 200
    assert response.json()["is_current"] is True
    await db_session.refresh(old)
    assert old.is_current is False
    assert await _current_count(db_session) == 1


@pytest.mark.asyncio
async def test_update_session(client: AsyncClient, make_session) -> None:
    session = await make_session("2025-2026")
    await make_session("2024-2025")

    renamed = await client.put(f"/api/v1/sessions/{session.id}", json={"description": "Main year"})
    clash = await client.put(f"/api/v1/sessions/{session.id}", json={"name": "2024-2025"})

    assert renamed.status_code == 200
    assert renamed.json()["description"] == "Main year"
    assert clash.status_code == 409


@pytest.mark.asyncio
async def test_complete_session(client: AsyncClient, make_session) -> None:
    session = await make_session(is_current=True)

    response = await client.put(f"/api/v1/sessions/{session.id}/complete", json={})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["end_date"] == str(date.today())
    assert data["promoted"] is None

    fetched = (await client.get(f"/api/v1/sessions/{session.id}")).json()
    assert fetched["is_current"] is False
    assert fetched["status"] == "completed"


@pytest.mark.asyncio
async def test_complete_twice_is_invalid(client: AsyncClient, make_session) -> None:
    session = await make_session()
    await client.put(f"/api/v1/sessions/{session.id}/complete", json={})

    response = await client.put(f"/api/v1/sessions/{session.id}/complete", json={})

    assert response.status_code == 400
    assert response.json()["detail"] == "Session is already completed"


@pytest.mark.asyncio
async def test_complete_archived_is_invalid(client: AsyncClient, make_session) -> None:
    session = await make_session(status="archived")

    response = await client.put(f"/api/v1/sessions/{session.id}/complete", json={})

    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot complete an archived session"


@pytest.mark.asyncio
async def test_complete_unknown_session(client: AsyncClient) -> None:
    response = await client.put(f"/api/v1/sessions/{uuid4()}/complete", json={})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_complete_with_auto_promote_uses_injected_runner(client: AsyncClient, make_session) -> None:
    session = await make_session()
    calls = []

    async def fake_runner(db: AsyncSession, session_id: UUID) -> int:
        calls.append(session_id)
        return 3

    app.dependency_overrides[get_promotion_runner] = lambda: fake_runner

    response = await client.put(f"/api/v1/sessions/{session.id}/complete", json={"auto_promote": True})

    assert response.status_code == 200
    data = response.json()
    assert data["promoted"] == 3
    assert data["message"].endswith("and 3 students promoted")
    assert calls == [session.id]


@pytest.mark.asyncio
async def test_complete_with_auto_promote_promotes_eligible(
    client: AsyncClient, db_session: AsyncSession, make_session, make_student, add_attendance
) -> None:
    session = await make_session()
    student = await make_student(session, grade="2")
    await add_attendance(student, session, present=5)

    response = await client.put(f"/api/v1/sessions/{session.id}/complete", json={"auto_promote": True})

    assert response.status_code == 200
    assert response.json()["promoted"] == 1
    await db_session.refresh(student)
    assert student.grade == "3"


@pytest.mark.asyncio
async def test_archive_requires_completed(client: AsyncClient, make_session) -> None:
    session = await make_session()

    response = await client.put(f"/api/v1/sessions/{session.id}/archive")

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_archive_snapshots_students_and_classes(
    client: AsyncClient, make_session, make_student, make_class, add_attendance
) -> None:
    session = await make_session(status="completed")
    student = await make_student(session, grade="6")
    await make_class(session, name="6", section="A")
    await make_class(session, name="6", section="B")
    await add_attendance(student, session, present=1, absent=1)

    response = await client.put(f"/api/v1/sessions/{session.id}/archive")

    assert response.status_code == 200
    data = response.json()
    assert data["archived_students"] == 1
    assert data["archived_classes"] == 2

    fetched = (await client.get(f"/api/v1/sessions/{session.id}")).json()
    assert fetched["status"] == "archived"
    snapshot = fetched["archived_data"]
    assert snapshot["students"][0]["student_id"] == str(student.id)
    assert snapshot["students"][0]["final_grade"] == "6"
    assert snapshot["students"][0]["attendance_percentage"] == 50
    assert {c["section"] for c in snapshot["classes"]} == {"A", "B"}

    again = await client.put(f"/api/v1/sessions/{session.id}/archive")
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_delete_only_archived(client: AsyncClient, db_session: AsyncSession, make_session, make_class) -> None:
    active = await make_session("2025-2026")
    archived = await make_session("2023-2024", status="archived")
    await make_class(archived)

    assert (await client.delete(f"/api/v1/sessions/{active.id}")).status_code == 400
    assert (await client.delete(f"/api/v1/sessions/{archived.id}")).status_code == 204
    assert (await client.get(f"/api/v1/sessions/{archived.id}")).status_code == 404
    remaining = await db_session.execute(select(func.count(SchoolClass.id)))
    assert remaining.scalar_one() == 0


@pytest.mark.asyncio
async def test_analytics(client: AsyncClient, make_session, make_student, make_class, add_attendance) -> None:
    session = await make_session()
    a = await make_student(session, name="A", grade="1")
    b = await make_student(session, name="B", grade="2")
    await make_class(session, name="1")
    await add_attendance(a, session, present=3)
    await add_attendance(b, session, present=0, absent=1)

    response = await client.get(f"/api/v1/sessions/{session.id}/analytics")

    assert response.status_code == 200
    data = response.json()
    assert data["students"]["total"] == 2
    assert data["students"]["by_grade"] == {"1": 1, "2": 1}
    assert data["students"]["by_promotion_status"] == {"pending": 2}
    assert data["classes"] == {"total": 1, "by_grade": {"1": 1}}
    assert data["attendance"] == {"total_records": 4, "average_attendance": 75.0}


@pytest.mark.asyncio
async def test_auto_create_classes_is_idempotent(client: AsyncClient, make_session) -> None:
    session = await make_session()
    template = {"class_template": [{"name": "1", "sections": ["A", "B"], "capacity": 30}]}

    first = await client.post(f"/api/v1/sessions/{session.id}/auto-create-classes", json=template)
    second = await client.post(f"/api/v1/sessions/{session.id}/auto-create-classes", json=template)

    assert first.json()["created"] == 2
    assert second.json()["created"] == 0
    assert second.json()["skipped"] == 2


@pytest.mark.asyncio
async def test_auto_create_classes_default_template(client: AsyncClient, make_session) -> None:
    session = await make_session()

    response = await client.post(f"/api/v1/sessions/{session.id}/auto-create-classes")

    assert response.status_code == 200
    # nursery/lkg/ukg with 3 sections, grades 1-12 with 2
    assert response.json()["created"] == 3 * 3 + 12 * 2


@pytest.mark.asyncio
async def test_copy_classes_from(client: AsyncClient, make_session, make_class) -> None:
    source = await make_session("2024-2025")
    target = await make_session("2025-2026")
    await make_class(source, name="4", section="A")
    await make_class(source, name="4", section="B")
    await make_class(target, name="4", section="A")

    response = await client.post(f"/api/v1/sessions/{target.id}/copy-classes-from/{source.id}")

    assert response.status_code == 200
    data = response.json()
    assert data["created"] == 1
    assert data["skipped"] == 1
    assert data["classes"][0]["section"] == "B"
    assert data["classes"][0]["session_name"] == "2025-2026"


@pytest.mark.asyncio
async def test_copy_classes_from_empty_source(client: AsyncClient, make_session) -> None:
    source = await make_session("2024-2025")
    target = await make_session("2025-2026")

    response = await client.post(f"/api/v1/sessions/{target.id}/copy-classes-from/{source.id}")

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_complete_survives_unexpected_promotion_error(client: AsyncClient, make_session) -> None:
    session = await make_session()

    async def broken_runner(db: AsyncSession, session_id: UUID) -> int:
        raise RuntimeError("connection reset")

    app.dependency_overrides[get_promotion_runner] = lambda: broken_runner

    response = await client.put(f"/api/v1/sessions/{session.id}/complete", json={"auto_promote": True})

    assert response.status_code == 200
    data = response.json()
    assert data["promoted"] is None
    assert data["message"] == "Session 2025-2026 completed successfully but auto-promotion failed"
    fetched = (await client.get(f"/api/v1/sessions/{session.id}")).json()
    assert fetched["status"] == "completed"


@pytest.mark.asyncio
async def test_fresh_start_moves_promoted_students_up(
    client: AsyncClient, db_session: AsyncSession, make_session, make_student, make_class
) -> None:
    session = await make_session(status="completed")
    promoted = await make_student(session, name="Promoted", grade="5", section="B")
    final_year = await make_student(session, name="Final", grade="12")
    pending = await make_student(session, name="Pending", grade="5")
    school_class = await make_class(session, name="5", section="B")
    for student in (promoted, final_year):
        student.promotion_status = "promoted"
        student.promotion_notes = "End of year"
    await db_session.commit()

    response = await client.post(f"/api/v1/sessions/{session.id}/fresh-start")

    assert response.status_code == 200
    data = response.json()
    assert data["promoted_students"] == 2
    assert data["deactivated_classes"] == 1

    await db_session.refresh(promoted)
    assert (promoted.grade, promoted.previous_grade, promoted.previous_section) == ("6", "5", "B")
    assert promoted.current_session_id is None
    assert promoted.promotion_status == "pending"
    assert promoted.promotion_date is None
    assert promoted.promotion_notes == ""
    await db_session.refresh(final_year)
    assert final_year.grade == "12"
    assert final_year.current_session_id is None
    await db_session.refresh(pending)
    assert pending.grade == "5"
    assert pending.current_session_id == session.id
    await db_session.refresh(school_class)
    assert school_class.is_active_session is False
    assert school_class.session_end_date is not None


@pytest.mark.asyncio
async def test_fresh_start_rejects_archived_session(client: AsyncClient, make_session) -> None:
    session = await make_session(status="archived")

    response = await client.post(f"/api/v1/sessions/{session.id}/fresh-start")

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_delete_session_classes(client: AsyncClient, db_session: AsyncSession, make_session, make_class) -> None:
    session = await make_session()
    other = await make_session("2024-2025")
    await make_class(session, name="1", section="A")
    await make_class(session, name="1", section="B")
    await make_class(other, name="1", section="A")

    response = await client.delete(f"/api/v1/sessions/{session.id}/classes")

    assert response.status_code == 200
    assert response.json()["deleted_classes"] == 2
    remaining = await db_session.execute(select(SchoolClass.session_id))
    assert remaining.scalars().all() == [other.id]

    again = await client.delete(f"/api/v1/sessions/{session.id}/classes")
    assert again.status_code == 400
    assert again.json()["detail"] == "No classes found in session: 2025-2026"
