from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tutorhub.api.v1.deps import get_actor
from tutorhub.core.enums import SessionStatus
from tutorhub.core.wallclock import wall_clock_now
from tutorhub.db.session import get_db
from tutorhub.models.session import TutoringSession
from tutorhub.schemas.session import (
    MeetingLinksIn,
    NoShowIn,
    PostponeRequestIn,
    SessionOut,
    SyncFailureOut,
    SyncReportOut,
)
from tutorhub.services import lifecycle
from tutorhub.services.auth import Actor

router = APIRouter(tags=["sessions"])


def _to_session_out(row: TutoringSession, *, actor: Actor | None = None) -> SessionOut:
    # Only the teacher side ever sees the host link.
    show_start_url = actor is None or actor.is_admin or actor.is_teacher
    return SessionOut(
        id=row.id,
        subscription_id=row.subscription_id,
        slot_id=row.slot_id,
        start_at=row.start_at,
        end_at=row.end_at,
        status=str(row.status),
        zoom_join_url=row.zoom_join_url,
        zoom_start_url=row.zoom_start_url if show_start_url else None,
        postpone_reason=row.postpone_reason,
        postpone_requested_at=row.postpone_requested_at,
        postpone_approved_at=row.postpone_approved_at,
        completed_at=row.completed_at,
        can_join=lifecycle.can_join(row, wall_clock_now()),
    )


@router.get("/sessions", response_model=list[SessionOut])
async def list_sessions(
    subscription_id: int | None = Query(default=None),
    status: SessionStatus | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=500),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    rows = await lifecycle.list_sessions(
        db,
        actor=actor,
        subscription_id=subscription_id,
        status=status,
        limit=limit,
    )
    return [_to_session_out(r, actor=actor) for r in rows]


@router.post("/sessions/sync-status", response_model=SyncReportOut)
async def sync_expired_sessions(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    # Any signed-in caller may trigger the sweep; it is idempotent.
    report = await lifecycle.sync_expired_sessions(db)
    return SyncReportOut(
        updated=report.updated,
        skipped=report.skipped,
        failures=[SyncFailureOut(**f) for f in report.failures],
    )


@router.get("/sessions/{session_id}", response_model=SessionOut)
async def get_session(
    session_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await lifecycle.load_for_actor(db, actor=actor, session_id=session_id)
    return _to_session_out(row, actor=actor)


@router.post("/sessions/{session_id}/start", response_model=SessionOut)
async def start_session(
    session_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await lifecycle.start_session(db, actor=actor, session_id=session_id)
    return _to_session_out(row, actor=actor)


@router.post("/sessions/{session_id}/complete", response_model=SessionOut)
async def complete_session(
    session_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await lifecycle.complete_session(db, actor=actor, session_id=session_id)
    return _to_session_out(row, actor=actor)


@router.post("/sessions/{session_id}/cancel", response_model=SessionOut)
async def cancel_session(
    session_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await lifecycle.cancel_session(db, actor=actor, session_id=session_id)
    return _to_session_out(row, actor=actor)


@router.post("/sessions/{session_id}/no-show", response_model=SessionOut)
async def mark_no_show(
    session_id: int,
    payload: NoShowIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await lifecycle.mark_no_show(db, actor=actor, session_id=session_id, party=payload.party)
    return _to_session_out(row, actor=actor)


@router.post("/sessions/{session_id}/postpone", response_model=SessionOut)
async def request_postpone(
    session_id: int,
    payload: PostponeRequestIn | None = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await lifecycle.request_postpone(
        db,
        actor=actor,
        session_id=session_id,
        reason=payload.reason if payload else None,
    )
    return _to_session_out(row, actor=actor)


@router.post("/sessions/{session_id}/postpone/approve", response_model=SessionOut)
async def approve_postpone(
    session_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await lifecycle.approve_postpone(db, actor=actor, session_id=session_id)
    return _to_session_out(row, actor=actor)


@router.post("/sessions/{session_id}/postpone/decline", response_model=SessionOut)
async def decline_postpone(
    session_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await lifecycle.decline_postpone(db, actor=actor, session_id=session_id)
    return _to_session_out(row, actor=actor)


@router.put("/sessions/{session_id}/meeting", response_model=SessionOut)
async def set_meeting_links(
    session_id: int,
    payload: MeetingLinksIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await lifecycle.set_meeting_links(
        db,
        actor=actor,
        session_id=session_id,
        join_url=payload.join_url,
        start_url=payload.start_url,
        meeting_id=payload.meeting_id,
    )
    return _to_session_out(row, actor=actor)
