from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tutorhub.api.v1.deps import get_actor
from tutorhub.db.session import get_db
from tutorhub.models.subscription import SubscriptionWeek, WeekSlot
from tutorhub.schemas.scheduling import CandidateOut, SlotIn, SlotOut, WeekDeclineIn, WeekOut
from tutorhub.services import scheduling
from tutorhub.services.auth import Actor
from tutorhub.services.scheduling import WeekView

router = APIRouter(tags=["weeks"])


def _to_slot_out(row: WeekSlot) -> SlotOut:
    return SlotOut(id=row.id, week_id=row.week_id, start_at=row.start_at, end_at=row.end_at, note=row.note)


def _to_week_out(view: WeekView) -> WeekOut:
    week = view.week
    return WeekOut(
        id=week.id,
        subscription_id=week.subscription_id,
        week_index=week.week_index,
        status=str(week.status),
        capacity=view.capacity,
        submitted_at=week.submitted_at,
        reviewed_at=week.reviewed_at,
        teacher_comment=week.teacher_comment,
        slots=[_to_slot_out(s) for s in view.slots],
    )


async def _week_out(db: AsyncSession, week: SubscriptionWeek) -> WeekOut:
    return _to_week_out(await scheduling.view_of(db, week))


@router.get("/subscriptions/{subscription_id}/weeks", response_model=list[WeekOut])
async def list_weeks(
    subscription_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    views = await scheduling.list_weeks(db, actor=actor, subscription_id=subscription_id)
    return [_to_week_out(v) for v in views]


@router.put("/subscriptions/{subscription_id}/weeks/{week_index}", response_model=WeekOut)
async def get_or_create_week(
    subscription_id: int,
    week_index: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    view = await scheduling.get_or_create_week(
        db,
        actor=actor,
        subscription_id=subscription_id,
        week_index=week_index,
    )
    return _to_week_out(view)


@router.get("/subscriptions/{subscription_id}/candidates", response_model=list[CandidateOut])
async def list_candidates(
    subscription_id: int,
    on_date: date = Query(alias="date"),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    rows = await scheduling.candidates_for_date(
        db,
        actor=actor,
        subscription_id=subscription_id,
        on_date=on_date,
    )
    return [
        CandidateOut(start_at=c.start_at, end_at=c.end_at, taken=c.taken, week_index=c.week_index)
        for c in rows
    ]


@router.post("/subscriptions/{subscription_id}/weeks/{week_index}/slots", response_model=SlotOut, status_code=201)
async def add_slot(
    subscription_id: int,
    week_index: int,
    payload: SlotIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await scheduling.add_slot(
        db,
        actor=actor,
        subscription_id=subscription_id,
        week_index=week_index,
        start_at=payload.start_at,
        end_at=payload.end_at,
        note=payload.note,
    )
    return _to_slot_out(row)


@router.delete("/slots/{slot_id}", status_code=204)
async def remove_slot(
    slot_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    await scheduling.remove_slot(db, actor=actor, slot_id=slot_id)
    return Response(status_code=204)


@router.post("/subscriptions/{subscription_id}/weeks/{week_index}/submit", response_model=WeekOut)
async def submit_week(
    subscription_id: int,
    week_index: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    week = await scheduling.submit_week(db, actor=actor, subscription_id=subscription_id, week_index=week_index)
    return await _week_out(db, week)


@router.post("/subscriptions/{subscription_id}/weeks/{week_index}/approve", response_model=WeekOut)
async def approve_week(
    subscription_id: int,
    week_index: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    week = await scheduling.approve_week(db, actor=actor, subscription_id=subscription_id, week_index=week_index)
    return await _week_out(db, week)


@router.post("/subscriptions/{subscription_id}/weeks/{week_index}/decline", response_model=WeekOut)
async def decline_week(
    subscription_id: int,
    week_index: int,
    payload: WeekDeclineIn | None = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    week = await scheduling.decline_week(
        db,
        actor=actor,
        subscription_id=subscription_id,
        week_index=week_index,
        comment=payload.comment if payload else None,
    )
    return await _week_out(db, week)
