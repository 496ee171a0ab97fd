"""Unit tests for next-session naming and dates."""

from datetime import date

from school_sessions.api.v1.rollover.planner import next_dates, next_label, plan_next_session


def test_year_range_advances_both_years() -> None:
    assert next_label("2025-2026") == "2026-2027"


def test_single_year_advances() -> None:
    assert next_label("2025") == "2026"


def test_other_labels_get_suffix() -> None:
    assert next_label("Spring Term") == "Spring Term-next"
    assert next_label("2025-26") == "2025-26-next"


def test_next_dates_start_after_source_end() -> None:
    start, end = next_dates(date(2026, 3, 31))
    assert start == date(2026, 4, 1)
    assert end == date(2027, 3, 31)


def test_next_dates_leap_day_start() -> None:
    start, end = next_dates(date(2028, 2, 28))
    assert start == date(2028, 2, 29)
    assert end == date(2029, 2, 27)


def test_plan_next_session() -> None:
    plan = plan_next_session("2025-2026", "2025-2026", date(2026, 3, 31))
    assert plan.name == "2026-2027"
    assert plan.academic_year == "2026-2027"
    assert plan.start_date == date(2026, 4, 1)
    assert plan.end_date == date(2027, 3, 31)
