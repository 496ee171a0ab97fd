"""Promotion API router."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from school_sessions.core.exceptions import ServiceError
from school_sessions.db.session import get_db

from . import service
from .schemas import (
    BulkPromoteRequest,
    BulkPromoteResponse,
    EvaluatePromotionsRequest,
    PromoteStudentRequest,
    PromotionResultResponse,
    PromotionStatusResponse,
    SessionPromotionResponse,
)

router = APIRouter(prefix="/api/v1/promotion", tags=["promotion"])


@router.post("/evaluate/{session_id}", response_model=SessionPromotionResponse)
async def evaluate_promotions(
    session_id: UUID,
    payload: EvaluatePromotionsRequest = EvaluatePromotionsRequest(),
    db: AsyncSession = Depends(get_db),
) -> SessionPromotionResponse:
    """Evaluate promotion eligibility for every student of a completed session."""
    try:
        return await service.evaluate_session_promotions(db, session_id, auto_promote=payload.auto_promote)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/promote/{student_id}", response_model=PromotionResultResponse)
async def promote_student(
    student_id: UUID,
    payload: PromoteStudentRequest = PromoteStudentRequest(),
    db: AsyncSession = Depends(get_db),
) -> PromotionResultResponse:
    """Promote one student if eligible."""
    try:
        return await service.promote_single_student(db, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/bulk-promote", response_model=BulkPromoteResponse)
async def bulk_promote(
    payload: BulkPromoteRequest,
    db: AsyncSession = Depends(get_db),
) -> BulkPromoteResponse:
    """Promote a list of students. Per-student failures are returned in errors with HTTP 200."""
    try:
        return await service.bulk_promote(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/status/{session_id}", response_model=PromotionStatusResponse)
async def get_promotion_status(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> PromotionStatusResponse:
    try:
        return await service.get_promotion_status(db, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
