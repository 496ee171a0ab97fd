from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from school_sessions.core.enums import AttendanceStatus

STUDENT_STATUSES = tuple(s.value for s in AttendanceStatus)


class AttendanceMarkItem(BaseModel):
    """Attendance for a single student."""

    student_id: UUID
    status: str = Field(..., description="present, absent, late")
    remarks: Optional[str] = None

    @field_validator("status")
    @classmethod
    def _check_status(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in STUDENT_STATUSES:
            raise ValueError(f"status must be one of {', '.join(STUDENT_STATUSES)}")
        return value


class AttendanceBulkMark(BaseModel):
    """Bulk mark student attendance for a date within a session."""

    session_id: UUID
    date: date
    records: List[AttendanceMarkItem] = Field(..., min_length=1)


class StudentAttendanceRecord(BaseModel):
    id: UUID
    student_id: UUID
    session_id: UUID
    session_name: str
    date: date
    status: str
    remarks: Optional[str] = None
    created_at: datetime


class AttendanceBulkError(BaseModel):
    student_id: UUID
    error: str


class AttendanceBulkMarkResponse(BaseModel):
    """Partial success is possible: check errors even on HTTP 200."""

    marked: int
    errors: List[AttendanceBulkError]
    records: List[StudentAttendanceRecord]


class AttendancePercentageResponse(BaseModel):
    student_id: UUID
    session_id: UUID
    session_name: str
    percentage: float
    total_days: int
    present_days: int
