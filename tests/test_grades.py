"""Unit tests for the grade progression table."""

import pytest

from school_sessions.core.grades import GRADE_ORDER, GRADUATE, next_grade


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("nursery", "lkg"),
        ("lkg", "ukg"),
        ("ukg", "1"),
        ("3", "4"),
        ("9", "10"),
        ("11", "12"),
    ],
)
def test_next_grade_follows_order(code: str, expected: str) -> None:
    assert next_grade(code) == expected


def test_last_grade_graduates() -> None:
    assert next_grade("12") == GRADUATE == "graduate"


def test_unknown_code_graduates() -> None:
    """Codes outside the table have no successor."""
    assert next_grade("unknown-code") == GRADUATE
    assert next_grade("") == GRADUATE


def test_order_starts_pre_primary() -> None:
    assert GRADE_ORDER[:4] == ("nursery", "lkg", "ukg", "1")
    assert len(GRADE_ORDER) == 15
