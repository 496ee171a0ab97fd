"""
Next-session identity and dates for a rollover.

"2025-2026" -> "2026-2027", "2025" -> "2026"; anything else gets a "-next" suffix.
"""

import re
from datetime import date, timedelta
from typing import NamedTuple

_YEAR_RANGE = re.compile(r"^(\d{4})-(\d{4})$")
_SINGLE_YEAR = re.compile(r"^(\d{4})$")

NEXT_SUFFIX = "-next"


class NextSessionPlan(NamedTuple):
    name: str
    academic_year: str
    start_date: date
    end_date: date


def next_label(label: str) -> str:
    """Advance a session name or academic year label by one year."""
    match = _YEAR_RANGE.match(label)
    if match:
        return f"{int(match.group(1)) + 1}-{int(match.group(2)) + 1}"
    match = _SINGLE_YEAR.match(label)
    if match:
        return str(int(match.group(1)) + 1)
    return f"{label}{NEXT_SUFFIX}"


def _add_one_year(d: date) -> date:
    try:
        return d.replace(year=d.year + 1)
    except ValueError:
        # 29 February
        return d.replace(year=d.year + 1, day=28)


def next_dates(source_end: date):
    """Start the day after the source ends and run one year."""
    start = source_end + timedelta(days=1)
    return start, _add_one_year(start) - timedelta(days=1)


def plan_next_session(name: str, academic_year: str, source_end: date) -> NextSessionPlan:
    start, end = next_dates(source_end)
    return NextSessionPlan(
        name=next_label(name),
        academic_year=next_label(academic_year),
        start_date=start,
        end_date=end,
    )
