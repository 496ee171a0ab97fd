from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from school_sessions.api.v1.promotion.service import auto_promote_session
from school_sessions.core.exceptions import ServiceError
from school_sessions.db.session import get_db

from . import service
from .schemas import (
    ArchiveSessionResponse,
    AutoCreateClassesRequest,
    ClassCopyResponse,
    CompleteSessionRequest,
    CompleteSessionResponse,
    DeleteClassesResponse,
    FreshStartResponse,
    SessionAnalyticsResponse,
    SessionCreate,
    SessionResponse,
    SessionStart,
    SessionUpdate,
)

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


def get_promotion_runner() -> service.PromotionRunner:
    """Promotion runner handed to complete_session; override in tests to stub promotion."""
    return auto_promote_session


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: SessionCreate,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    """Create a session. set_as_current (default true) unsets every other session."""
    try:
        return await service.create_session(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/start", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_new_session(
    payload: SessionStart,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    """Start a new active session and make it current."""
    try:
        return await service.start_new_session(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=List[SessionResponse])
async def list_sessions(
    status_filter: Optional[str] = Query(None, description="Filter by status: active, completed, archived"),
    db: AsyncSession = Depends(get_db),
) -> List[SessionResponse]:
    return await service.list_sessions(db, status_filter=status_filter)


@router.get("/current", response_model=Optional[SessionResponse])
async def get_current_session(db: AsyncSession = Depends(get_db)) -> Optional[SessionResponse]:
    """The session flagged is_current, or null."""
    return await service.get_current_session(db)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    try:
        return await service.get_session(db, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{session_id}", response_model=SessionResponse)
async def update_session(
    session_id: UUID,
    payload: SessionUpdate,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    """Update an active session."""
    try:
        return await service.update_session(db, session_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/{session_id}/set-current", response_model=SessionResponse)
async def set_current_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    try:
        return await service.set_current_session(db, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{session_id}/complete", response_model=CompleteSessionResponse)
async def complete_session(
    session_id: UUID,
    payload: CompleteSessionRequest = CompleteSessionRequest(),
    db: AsyncSession = Depends(get_db),
    promoter: service.PromotionRunner = Depends(get_promotion_runner),
) -> CompleteSessionResponse:
    """Complete the session; with auto_promote, promote every eligible student afterwards."""
    try:
        return await service.complete_session(
            db, session_id, auto_promote=payload.auto_promote, promoter=promoter
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{session_id}/archive", response_model=ArchiveSessionResponse)
async def archive_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> ArchiveSessionResponse:
    """Archive a completed session, snapshotting its students and classes."""
    try:
        return await service.archive_session(db, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Delete an archived session."""
    try:
        await service.delete_session(db, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{session_id}/analytics", response_model=SessionAnalyticsResponse)
async def get_session_analytics(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> SessionAnalyticsResponse:
    try:
        return await service.get_session_analytics(db, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{session_id}/copy-classes-from/{source_session_id}", response_model=ClassCopyResponse)
async def copy_classes_from(
    session_id: UUID,
    source_session_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> ClassCopyResponse:
    """Copy classes of another session into this one, skipping existing name/section pairs."""
    try:
        return await service.copy_classes_from(db, session_id, source_session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{session_id}/auto-create-classes", response_model=ClassCopyResponse)
async def auto_create_classes(
    session_id: UUID,
    payload: AutoCreateClassesRequest = AutoCreateClassesRequest(),
    db: AsyncSession = Depends(get_db),
) -> ClassCopyResponse:
    try:
        return await service.auto_create_classes(db, session_id, payload.class_template)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{session_id}/classes", response_model=DeleteClassesResponse)
async def delete_session_classes(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> DeleteClassesResponse:
    """Delete every class of the session."""
    try:
        return await service.delete_session_classes(db, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{session_id}/fresh-start", response_model=FreshStartResponse)
async def fresh_start(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> FreshStartResponse:
    """Move promoted students up a grade and out of the session; deactivate its classes."""
    try:
        return await service.fresh_start(db, session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
