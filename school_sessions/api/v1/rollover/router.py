"""Rollover API router. Shares the /sessions prefix with the session registry."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from school_sessions.core.exceptions import ServiceError
from school_sessions.db.session import get_db

from . import service
from .schemas import RolloverResponse, RolloverRunResponse

router = APIRouter(prefix="/api/v1/sessions", tags=["rollover"])


@router.post("/rollover-runs/{run_id}/resume", response_model=RolloverResponse)
async def resume_rollover(
    run_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> RolloverResponse:
    """Resume a failed or stale rollover run from its last completed step."""
    try:
        return await service.resume_rollover(db, run_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{session_id}/auto-rollover", response_model=RolloverResponse)
async def auto_rollover(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> RolloverResponse:
    """Create the next session, copy classes, promote or retain students. 409 if a run is in progress."""
    try:
        return await service.start_rollover(db, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{session_id}/rollover-runs", response_model=List[RolloverRunResponse])
async def list_rollover_runs(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> List[RolloverRunResponse]:
    try:
        return await service.list_rollover_runs(db, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
