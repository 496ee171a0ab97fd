from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel


class RolloverCounts(BaseModel):
    classes_copied: int
    promoted: int
    retained: int


class RolloverRunResponse(BaseModel):
    id: UUID
    source_session_id: UUID
    source_session_name: str
    target_session_id: Optional[UUID] = None
    target_session_name: Optional[str] = None
    status: str
    counts: RolloverCounts
    completed_steps: List[str]
    message: str
    started_at: datetime
    finished_at: Optional[datetime] = None


class RolloverResponse(BaseModel):
    message: str
    new_session: str
    run: RolloverRunResponse
