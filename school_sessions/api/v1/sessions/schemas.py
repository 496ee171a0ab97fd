from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class PromotionCriteria(BaseModel):
    """Promotion rules of a session. Only minimum_attendance is enforced today."""

    minimum_attendance: float = Field(75, ge=0, le=100, description="Minimum attendance percentage")
    minimum_grade: str = Field("D", max_length=5)
    require_all_subjects: bool = True


class SessionCreate(BaseModel):
    """Create session. name must be unique."""

    name: str = Field(..., min_length=1, max_length=50, description="e.g. 2025-2026")
    academic_year: str = Field(..., min_length=1, max_length=50, description="e.g. 2025-2026")
    start_date: date
    end_date: date = Field(..., description="Must be after start_date")
    description: str = ""
    promotion_criteria: PromotionCriteria = Field(default_factory=PromotionCriteria)
    set_as_current: bool = Field(
        True,
        description="Make this the current session; every other session stops being current.",
    )


class SessionStart(BaseModel):
    """Start a new session. Always becomes the current session."""

    name: str = Field(..., min_length=1, max_length=50)
    academic_year: str = Field(..., min_length=1, max_length=50)
    start_date: date
    end_date: date
    description: str = ""


class SessionUpdate(BaseModel):
    """Update session. Only allowed while status is active. Status changes go through complete/archive."""

    name: Optional[str] = Field(None, min_length=1, max_length=50)
    academic_year: Optional[str] = Field(None, min_length=1, max_length=50)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None
    promotion_criteria: Optional[PromotionCriteria] = None


class SessionResponse(BaseModel):
    id: UUID
    name: str
    academic_year: str
    start_date: date
    end_date: date
    status: str
    is_current: bool
    description: str
    promotion_criteria: PromotionCriteria
    archived_data: Optional[Dict[str, Any]] = None
    completed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CompleteSessionRequest(BaseModel):
    auto_promote: bool = False


class CompleteSessionResponse(BaseModel):
    session: str
    status: str
    end_date: date
    auto_promote: bool
    promoted: Optional[int] = None
    message: str


class ArchiveSessionResponse(BaseModel):
    session: str
    status: str
    archived_students: int
    archived_classes: int
    message: str


class StudentAnalytics(BaseModel):
    total: int
    by_grade: Dict[str, int]
    by_promotion_status: Dict[str, int]


class ClassAnalytics(BaseModel):
    total: int
    by_grade: Dict[str, int]


class AttendanceAnalytics(BaseModel):
    total_records: int
    average_attendance: float


class SessionAnalyticsResponse(BaseModel):
    session: str
    status: str
    start_date: date
    end_date: date
    students: StudentAnalytics
    classes: ClassAnalytics
    attendance: AttendanceAnalytics


class ClassTemplateItem(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    sections: List[str] = Field(..., min_length=1)
    capacity: int = Field(30, ge=1)


class AutoCreateClassesRequest(BaseModel):
    """Classes to create. Without class_template the default nursery..12 template is used."""

    class_template: Optional[List[ClassTemplateItem]] = None


class SchoolClassResponse(BaseModel):
    id: UUID
    name: str
    section: str
    academic_year: str
    session_id: UUID
    session_name: str
    capacity: int
    current_strength: int
    room_number: Optional[str] = None
    is_active_session: bool


class ClassCopyResponse(BaseModel):
    session: str
    source_session: Optional[str] = None
    created: int
    skipped: int
    classes: List[SchoolClassResponse]


class FreshStartResponse(BaseModel):
    session: str
    promoted_students: int
    deactivated_classes: int
    message: str


class DeleteClassesResponse(BaseModel):
    session: str
    deleted_classes: int
    message: str
