from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class EvaluatePromotionsRequest(BaseModel):
    auto_promote: bool = Field(False, description="Promote every eligible student after evaluation")


class PromoteStudentRequest(BaseModel):
    """Manual promotion. Without next_grade the grade progression decides (or graduates)."""

    next_grade: Optional[str] = Field(None, max_length=20)
    next_section: Optional[str] = Field(None, max_length=10)
    notes: str = ""


class BulkPromoteRequest(PromoteStudentRequest):
    session_id: UUID
    student_ids: List[UUID] = Field(..., min_length=1)


class PromotionEvaluationResponse(BaseModel):
    student_id: UUID
    student_name: str
    grade: str
    section: Optional[str] = None
    eligible: bool
    reason: str
    attendance_percentage: float
    total_days: int
    present_days: int
    grade_criteria_met: bool


class PromotionResultResponse(BaseModel):
    student_id: UUID
    student_name: str
    previous_grade: Optional[str] = None
    previous_section: Optional[str] = None
    new_grade: str
    new_section: Optional[str] = None
    promotion_status: str
    promotion_date: Optional[datetime] = None
    evaluation: PromotionEvaluationResponse


class PromotionItemError(BaseModel):
    student_id: UUID
    error: str


class StudentEvaluationError(PromotionItemError):
    student_name: str


class SessionPromotionResponse(BaseModel):
    """Evaluation of a whole session. errors lists students that could not be processed."""

    session: str
    total_students: int
    results: List[PromotionEvaluationResponse]
    promoted: int
    errors: List[StudentEvaluationError]


class BulkPromoteResponse(BaseModel):
    """Partial success is possible: check errors even on HTTP 200."""

    session: str
    promoted: int
    errors: List[PromotionItemError]
    records: List[PromotionResultResponse]


class PromotionStats(BaseModel):
    total: int = 0
    pending: int = 0
    promoted: int = 0
    retained: int = 0
    graduated: int = 0


class PromotionStatusResponse(BaseModel):
    session: str
    status: str
    promotion_stats: PromotionStats
    grade_breakdown: Dict[str, PromotionStats]
