"""Attendance API router."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from school_sessions.core.exceptions import ServiceError
from school_sessions.db.session import get_db

from . import service
from .schemas import AttendanceBulkMark, AttendanceBulkMarkResponse, AttendancePercentageResponse

router = APIRouter(prefix="/api/v1/attendance", tags=["attendance"])


@router.post("/bulk", response_model=AttendanceBulkMarkResponse)
async def bulk_mark_attendance(
    payload: AttendanceBulkMark,
    db: AsyncSession = Depends(get_db),
) -> AttendanceBulkMarkResponse:
    """Mark attendance for many students on one date. Per-student failures are reported in errors."""
    try:
        return await service.bulk_mark_attendance(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/students/{student_id}/percentage", response_model=AttendancePercentageResponse)
async def get_attendance_percentage(
    student_id: UUID,
    session_id: UUID = Query(..., description="Session to aggregate attendance for"),
    db: AsyncSession = Depends(get_db),
) -> AttendancePercentageResponse:
    try:
        return await service.get_attendance_percentage(db, student_id, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
