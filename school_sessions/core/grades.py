"""Grade progression: each grade code maps to its successor, the last one to GRADUATE."""

from typing import Tuple

GRADE_ORDER: Tuple[str, ...] = (
    "nursery", "lkg", "ukg",
    "1", "2", "3", "4", "5", "6", "7", "8", "9", "10", "11", "12",
)

# Returned by next_grade when there is no further grade
GRADUATE = "graduate"

# Stored on the student record once they graduate
GRADUATED_GRADE = "graduated"
GRADUATED_SECTION = "N/A"


def next_grade(code: str) -> str:
    """Successor of a grade code; GRADUATE for the last grade and for unknown codes."""
    try:
        index = GRADE_ORDER.index(code)
    except ValueError:
        return GRADUATE
    if index == len(GRADE_ORDER) - 1:
        return GRADUATE
    return GRADE_ORDER[index + 1]
