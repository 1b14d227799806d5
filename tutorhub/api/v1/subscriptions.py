from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tutorhub.api.v1.deps import get_actor
from tutorhub.core.enums import SubscriptionStatus
from tutorhub.db.session import get_db
from tutorhub.models.subscription import Subscription
from tutorhub.schemas.subscription import (
    AssignTeacherIn,
    ProgressOut,
    SubscriptionCancelIn,
    SubscriptionCreateIn,
    SubscriptionOut,
)
from tutorhub.services import subscriptions as subscription_service
from tutorhub.services.auth import Actor, ensure_admin
from tutorhub.services.ledger import Credits, progress

router = APIRouter(tags=["subscriptions"])


def _to_subscription_out(row: Subscription) -> SubscriptionOut:
    p = progress(Credits.of(row))
    return SubscriptionOut(
        id=row.id,
        student_id=row.student_id,
        teacher_id=row.teacher_id,
        course_id=row.course_id,
        package_id=row.package_id,
        status=str(row.status),
        weeks_total=row.weeks_total,
        sessions_total=row.sessions_total,
        sessions_remaining=row.sessions_remaining,
        postpone_total=row.postpone_total,
        postpone_remaining=row.postpone_remaining,
        cycle_start_at=row.cycle_start_at,
        cycle_end_at=row.cycle_end_at,
        progress=ProgressOut(completed=p.completed, total=p.total, percentage=p.percentage),
        created_at=row.created_at,
    )


@router.post("/subscriptions", response_model=SubscriptionOut, status_code=201)
async def create_subscription(
    payload: SubscriptionCreateIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await subscription_service.create_subscription(
        db,
        actor=actor,
        course_id=payload.course_id,
        package_id=payload.package_id,
        student_id=payload.student_id,
    )
    return _to_subscription_out(row)


@router.get("/subscriptions", response_model=list[SubscriptionOut])
async def list_subscriptions(
    status: SubscriptionStatus | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    rows = await subscription_service.list_subscriptions(db, actor=actor, status=status)
    return [_to_subscription_out(r) for r in rows]


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionOut)
async def get_subscription(
    subscription_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await subscription_service.load_for_actor(db, actor=actor, subscription_id=subscription_id)
    return _to_subscription_out(row)


@router.post("/subscriptions/{subscription_id}/checkout", response_model=SubscriptionOut)
async def start_checkout(
    subscription_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await subscription_service.start_checkout(db, actor=actor, subscription_id=subscription_id)
    return _to_subscription_out(row)


@router.post("/subscriptions/{subscription_id}/payment-received", response_model=SubscriptionOut)
async def mark_payment_received(
    subscription_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    ensure_admin(actor)
    row, _changed = await subscription_service.mark_payment_received(db, subscription_id=subscription_id)
    return _to_subscription_out(row)


@router.post("/subscriptions/{subscription_id}/assign-teacher", response_model=SubscriptionOut)
async def assign_teacher(
    subscription_id: int,
    payload: AssignTeacherIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await subscription_service.assign_teacher(
        db,
        actor=actor,
        subscription_id=subscription_id,
        teacher_id=payload.teacher_id,
    )
    return _to_subscription_out(row)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionOut)
async def cancel_subscription(
    subscription_id: int,
    payload: SubscriptionCancelIn | None = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await subscription_service.cancel_subscription(
        db,
        actor=actor,
        subscription_id=subscription_id,
        note=payload.note if payload else None,
    )
    return _to_subscription_out(row)
