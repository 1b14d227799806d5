"""Weekly scheduling: weeks, slots and the draft/submit/approve workflow."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tutorhub.core.config import settings
from tutorhub.core.enums import SubscriptionStatus, WeekStatus
from tutorhub.core.errors import (
    CapacityExceeded,
    IncompleteWeek,
    InvalidSlot,
    InvalidState,
    NotFound,
    SlotConflict,
)
from tutorhub.core.wallclock import to_wall_clock
from tutorhub.models.availability import AvailabilityRule
from tutorhub.models.common import utcnow
from tutorhub.models.session import TutoringSession
from tutorhub.models.subscription import Subscription, SubscriptionWeek, WeekSlot
from tutorhub.services import lifecycle
from tutorhub.services.auth import Actor, ensure_assigned_teacher, ensure_participant, ensure_student_owner
from tutorhub.services.availability import BookedSlot, Candidate, annotate_candidates, matches_window, which_week
from tutorhub.services.subscriptions import SCHEDULABLE_STATUSES, activate, get_subscription

logger = logging.getLogger(__name__)

W = WeekStatus

WEEK_TRANSITIONS: dict[WeekStatus, frozenset[WeekStatus]] = {
    W.DRAFT: frozenset({W.SUBMITTED}),
    W.SUBMITTED: frozenset({W.APPROVED, W.REJECTED}),
    W.APPROVED: frozenset(),
    W.REJECTED: frozenset(),
}


@dataclass(slots=True)
class WeekView:
    week: SubscriptionWeek
    slots: list[WeekSlot]
    capacity: int


def sessions_per_week(subscription: Subscription) -> int:
    return int(subscription.sessions_total) // max(int(subscription.weeks_total), 1)


def _ensure_schedulable(subscription: Subscription) -> None:
    if subscription.status not in SCHEDULABLE_STATUSES:
        raise InvalidState(
            "Weeks can only be scheduled once a teacher is assigned",
            current_status=str(subscription.status),
        )


async def _find_week(db: AsyncSession, subscription_id: int, week_index: int, *, for_update: bool = False):
    stmt = (
        select(SubscriptionWeek)
        .where(SubscriptionWeek.subscription_id == subscription_id, SubscriptionWeek.week_index == week_index)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_week(db: AsyncSession, subscription_id: int, week_index: int) -> SubscriptionWeek:
    week = await _find_week(db, subscription_id, week_index)
    if week is None:
        raise NotFound("Week not found", subscription_id=subscription_id, week_index=week_index)
    return week


async def _slots_of(db: AsyncSession, week_ids: list[int]) -> dict[int, list[WeekSlot]]:
    out: dict[int, list[WeekSlot]] = {week_id: [] for week_id in week_ids}
    if not week_ids:
        return out
    rows = (
        await db.execute(
            select(WeekSlot).where(WeekSlot.week_id.in_(week_ids)).order_by(WeekSlot.start_at, WeekSlot.id)
        )
    ).scalars().all()
    for slot in rows:
        out[slot.week_id].append(slot)
    return out


async def _count_slots(db: AsyncSession, week_id: int) -> int:
    return int(
        (await db.execute(select(func.count(WeekSlot.id)).where(WeekSlot.week_id == week_id))).scalar_one() or 0
    )


async def _ensure_week(db: AsyncSession, subscription: Subscription, week_index: int) -> SubscriptionWeek:
    if not 1 <= int(week_index) <= int(subscription.weeks_total):
        raise NotFound(
            "Week index out of range",
            week_index=week_index,
            weeks_total=subscription.weeks_total,
        )
    week = await _find_week(db, subscription.id, week_index)
    if week is not None:
        return week

    week = SubscriptionWeek(subscription_id=subscription.id, week_index=int(week_index), status=W.DRAFT)
    db.add(week)
    try:
        await db.commit()
    except IntegrityError:
        # Created by a concurrent request.
        await db.rollback()
        week = await _find_week(db, subscription.id, week_index)
        if week is None:
            raise
        return week
    await db.refresh(week)
    return week


async def get_or_create_week(
    db: AsyncSession,
    *,
    actor: Actor,
    subscription_id: int,
    week_index: int,
) -> WeekView:
    subscription = await get_subscription(db, subscription_id)
    ensure_participant(actor, subscription)
    _ensure_schedulable(subscription)
    capacity = sessions_per_week(subscription)
    week = await _ensure_week(db, subscription, week_index)
    slots = await _slots_of(db, [week.id])
    return WeekView(week=week, slots=slots[week.id], capacity=capacity)


async def view_of(db: AsyncSession, week: SubscriptionWeek) -> WeekView:
    subscription = await get_subscription(db, week.subscription_id)
    slots = await _slots_of(db, [week.id])
    return WeekView(week=week, slots=slots[week.id], capacity=sessions_per_week(subscription))


async def list_weeks(db: AsyncSession, *, actor: Actor, subscription_id: int) -> list[WeekView]:
    subscription = await get_subscription(db, subscription_id)
    ensure_participant(actor, subscription)
    weeks = (
        await db.execute(
            select(SubscriptionWeek)
            .where(SubscriptionWeek.subscription_id == subscription_id)
            .order_by(SubscriptionWeek.week_index)
        )
    ).scalars().all()
    slots = await _slots_of(db, [week.id for week in weeks])
    capacity = sessions_per_week(subscription)
    return [WeekView(week=week, slots=slots[week.id], capacity=capacity) for week in weeks]


async def _teacher_rules(db: AsyncSession, teacher_id: int | None) -> list[AvailabilityRule]:
    if teacher_id is None:
        return []
    return list(
        (
            await db.execute(
                select(AvailabilityRule).where(
                    AvailabilityRule.teacher_id == teacher_id,
                    AvailabilityRule.is_active.is_(True),
                )
            )
        ).scalars().all()
    )


async def _booked_in_subscription(db: AsyncSession, subscription_id: int) -> list[BookedSlot]:
    rows = (
        await db.execute(
            select(SubscriptionWeek.week_index, WeekSlot.start_at, WeekSlot.end_at)
            .select_from(WeekSlot)
            .join(SubscriptionWeek, SubscriptionWeek.id == WeekSlot.week_id)
            .where(SubscriptionWeek.subscription_id == subscription_id)
        )
    ).all()
    return [BookedSlot(week_index=int(r[0]), start_at=r[1], end_at=r[2]) for r in rows]


async def _held_by_other_subscription(
    db: AsyncSession,
    subscription: Subscription,
    start_at: datetime,
    end_at: datetime,
) -> bool:
    stmt = (
        select(WeekSlot.id)
        .join(SubscriptionWeek, SubscriptionWeek.id == WeekSlot.week_id)
        .join(Subscription, Subscription.id == SubscriptionWeek.subscription_id)
        .where(
            Subscription.teacher_id == subscription.teacher_id,
            Subscription.id != subscription.id,
            Subscription.status != SubscriptionStatus.CANCELLED,
            SubscriptionWeek.status != W.REJECTED,
            WeekSlot.start_at == start_at,
            WeekSlot.end_at == end_at,
        )
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def candidates_for_date(
    db: AsyncSession,
    *,
    actor: Actor,
    subscription_id: int,
    on_date: date,
) -> list[Candidate]:
    subscription = await get_subscription(db, subscription_id)
    ensure_participant(actor, subscription)
    _ensure_schedulable(subscription)
    rules = await _teacher_rules(db, subscription.teacher_id)
    booked = await _booked_in_subscription(db, subscription.id)
    return annotate_candidates(rules, on_date, booked)


async def _lock_teacher_calendar(db: AsyncSession, teacher_id: int) -> None:
    """Serialize bookings on one teacher's calendar until commit. PostgreSQL only."""
    if db.get_bind().dialect.name == "postgresql":
        await db.execute(select(func.pg_advisory_xact_lock(int(teacher_id))))


async def add_slot(
    db: AsyncSession,
    *,
    actor: Actor,
    subscription_id: int,
    week_index: int,
    start_at: datetime,
    end_at: datetime,
    note: str | None = None,
) -> WeekSlot:
    subscription = await get_subscription(db, subscription_id)
    ensure_student_owner(actor, subscription)
    _ensure_schedulable(subscription)

    start_at = to_wall_clock(start_at)
    end_at = to_wall_clock(end_at)
    if end_at <= start_at or end_at.date() != start_at.date():
        raise InvalidSlot("Slot must end after it starts, on the same day")

    await _ensure_week(db, subscription, week_index)

    # Duplicates are checked across every week, so the subscription row is the lock.
    subscription = await get_subscription(db, subscription_id, for_update=True)
    _ensure_schedulable(subscription)
    if settings.enforce_teacher_slot_exclusivity:
        await _lock_teacher_calendar(db, subscription.teacher_id)
    week = await _find_week(db, subscription.id, week_index, for_update=True)
    if week is None:
        raise NotFound("Week not found", subscription_id=subscription_id, week_index=week_index)
    if week.status != W.DRAFT:
        raise InvalidState("Slots can only change while the week is a draft", current_status=str(week.status))

    booked = await _booked_in_subscription(db, subscription.id)
    held_in = which_week(booked, start_at.date(), start_at.time(), end_at.time())
    if held_in is not None:
        raise SlotConflict("This slot is already booked in this subscription", week_index=held_in)

    capacity = sessions_per_week(subscription)
    if await _count_slots(db, week.id) >= capacity:
        raise CapacityExceeded("Week already holds its full quota of slots", capacity=capacity)

    rules = await _teacher_rules(db, subscription.teacher_id)
    if not matches_window(rules, start_at, end_at):
        raise InvalidSlot("Slot does not match any of the teacher's availability windows")

    if settings.enforce_teacher_slot_exclusivity and await _held_by_other_subscription(
        db, subscription, start_at, end_at
    ):
        raise SlotConflict("The teacher is already booked at this time", week_index=None)

    slot = WeekSlot(week_id=week.id, start_at=start_at, end_at=end_at, note=note)
    db.add(slot)
    await db.commit()
    await db.refresh(slot)
    return slot


async def remove_slot(db: AsyncSession, *, actor: Actor, slot_id: int) -> None:
    slot = await db.get(WeekSlot, slot_id)
    if slot is None:
        raise NotFound("Slot not found", slot_id=slot_id)
    week_id = slot.week_id

    week = (
        await db.execute(
            select(SubscriptionWeek)
            .where(SubscriptionWeek.id == week_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    subscription = await get_subscription(db, week.subscription_id)
    ensure_student_owner(actor, subscription)
    if week.status != W.DRAFT:
        raise InvalidState("Slots can only change while the week is a draft", current_status=str(week.status))

    await db.execute(delete(WeekSlot).where(WeekSlot.id == slot_id))
    await db.commit()


async def _week_cas(
    db: AsyncSession,
    week: SubscriptionWeek,
    *,
    source: WeekStatus,
    target: WeekStatus,
    values: dict,
) -> SubscriptionWeek:
    result = await db.execute(
        update(SubscriptionWeek)
        .where(SubscriptionWeek.id == week.id, SubscriptionWeek.status == source)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = await get_week(db, week.subscription_id, week.week_index)
        raise InvalidState(
            f"Week cannot move from {current.status} to {target}",
            current_status=str(current.status),
        )
    return await get_week(db, week.subscription_id, week.week_index)


async def submit_week(
    db: AsyncSession,
    *,
    actor: Actor,
    subscription_id: int,
    week_index: int,
) -> SubscriptionWeek:
    subscription = await get_subscription(db, subscription_id)
    ensure_student_owner(actor, subscription)
    week = await get_week(db, subscription_id, week_index)
    if week.status != W.DRAFT:
        raise InvalidState("Only a draft week can be submitted", current_status=str(week.status))

    required = sessions_per_week(subscription)
    count = await _count_slots(db, week.id)
    if count != required:
        raise IncompleteWeek("Week must hold exactly its quota of slots", slot_count=count, required=required)

    week = await _week_cas(db, week, source=W.DRAFT, target=W.SUBMITTED, values={"submitted_at": utcnow()})
    await db.commit()
    return week


async def approve_week(
    db: AsyncSession,
    *,
    actor: Actor,
    subscription_id: int,
    week_index: int,
) -> SubscriptionWeek:
    subscription = await get_subscription(db, subscription_id)
    ensure_assigned_teacher(actor, subscription)
    _ensure_schedulable(subscription)
    week = await get_week(db, subscription_id, week_index)

    week = await _week_cas(db, week, source=W.SUBMITTED, target=W.APPROVED, values={"reviewed_at": utcnow()})
    created = await lifecycle.materialize_week_sessions(db, week)

    first_start = (
        await db.execute(
            select(func.min(TutoringSession.start_at)).where(TutoringSession.subscription_id == subscription_id)
        )
    ).scalar_one_or_none()
    if await activate(db, subscription_id=subscription_id, cycle_start_at=first_start):
        logger.info("Subscription id=%s activated by approval of week %s", subscription_id, week_index)

    await db.commit()
    logger.info(
        "Week %s of subscription id=%s approved, %s sessions created",
        week_index,
        subscription_id,
        len(created),
    )

    if created and settings.zoom_configured:
        await lifecycle.provision_meeting_links(db, [s.id for s in created])
    return week


async def decline_week(
    db: AsyncSession,
    *,
    actor: Actor,
    subscription_id: int,
    week_index: int,
    comment: str | None = None,
) -> SubscriptionWeek:
    subscription = await get_subscription(db, subscription_id)
    ensure_assigned_teacher(actor, subscription)
    week = await get_week(db, subscription_id, week_index)
    values = {"reviewed_at": utcnow(), "teacher_comment": (comment or "").strip() or None}
    week = await _week_cas(db, week, source=W.SUBMITTED, target=W.REJECTED, values=values)
    await db.commit()
    return week
