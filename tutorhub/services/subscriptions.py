from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tutorhub.core.config import settings
from tutorhub.core.enums import Role, SubscriptionStatus
from tutorhub.core.errors import InvalidState, NotFound
from tutorhub.models.catalog import Course, Package
from tutorhub.models.subscription import Subscription
from tutorhub.services.auth import Actor, ensure_admin, ensure_participant, ensure_student_owner, require_role
from tutorhub.services.ledger import Credits

logger = logging.getLogger(__name__)

S = SubscriptionStatus

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED})

TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    S.DRAFT: frozenset({S.PENDING_PAYMENT, S.CANCELLED}),
    S.PENDING_PAYMENT: frozenset({S.PAYMENT_RECEIVED, S.CANCELLED}),
    S.PAYMENT_RECEIVED: frozenset({S.TEACHER_ASSIGNED, S.CANCELLED}),
    S.TEACHER_ASSIGNED: frozenset({S.ACTIVE, S.COMPLETED, S.CANCELLED}),
    S.ACTIVE: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Scheduling is open once a teacher is known.
SCHEDULABLE_STATUSES = frozenset({S.TEACHER_ASSIGNED, S.ACTIVE})


def can_transition(current: str, target: str) -> bool:
    return SubscriptionStatus(target) in TRANSITIONS[SubscriptionStatus(current)]


def sources_for(target: SubscriptionStatus) -> list[SubscriptionStatus]:
    return [state for state, targets in TRANSITIONS.items() if target in targets]


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidState(
            f"Subscription cannot move from {current} to {target}",
            current_status=str(current),
        )


async def get_subscription(db: AsyncSession, subscription_id: int, *, for_update: bool = False) -> Subscription:
    stmt = select(Subscription).where(Subscription.id == subscription_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    row = (await db.execute(stmt)).scalar_one_or_none()
    if row is None:
        raise NotFound("Subscription not found", subscription_id=subscription_id)
    return row


async def get_package(db: AsyncSession, package_id: int) -> Package:
    row = await db.get(Package, package_id)
    if row is None:
        raise NotFound("Package not found", package_id=package_id)
    return row


async def _conditional_transition(
    db: AsyncSession,
    subscription_id: int,
    *,
    target: SubscriptionStatus,
    sources: list[SubscriptionStatus] | None = None,
    values: dict | None = None,
) -> Subscription:
    """Move to ``target`` only if the stored status still permits it."""
    allowed = sources if sources is not None else sources_for(target)
    result = await db.execute(
        update(Subscription)
        .where(Subscription.id == subscription_id, Subscription.status.in_(allowed))
        .values(status=target, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    row = await get_subscription(db, subscription_id)
    if result.rowcount != 1:
        current = str(row.status)
        ensure_transition(current, target)
        raise InvalidState(f"Subscription cannot move to {target}", current_status=current)
    return row


async def apply_credits(
    db: AsyncSession,
    subscription_id: int,
    step: Callable[[Credits], Credits],
) -> Credits:
    """Write ``step(current)`` back with compare-and-set on the counters read.

    Does not commit; the caller owns the transaction.
    """
    attempts = max(int(settings.ledger_max_retries or 1), 1)
    for _ in range(attempts):
        row = await get_subscription(db, subscription_id)
        before = Credits.of(row)
        after = step(before)
        result = await db.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription_id,
                Subscription.status == before.status,
                Subscription.sessions_remaining == before.sessions_remaining,
                Subscription.postpone_remaining == before.postpone_remaining,
            )
            .values(
                status=after.status,
                sessions_remaining=after.sessions_remaining,
                postpone_remaining=after.postpone_remaining,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            if after.status != before.status:
                logger.info(
                    "Subscription id=%s moved %s -> %s by ledger",
                    subscription_id,
                    before.status,
                    after.status,
                )
            return after
    raise InvalidState("Subscription credits changed concurrently, retry the operation")


async def create_subscription(
    db: AsyncSession,
    *,
    actor: Actor,
    course_id: int,
    package_id: int,
    student_id: int | None = None,
) -> Subscription:
    require_role(actor, Role.STUDENT, Role.ADMIN)
    if actor.is_student:
        student_id = actor.profile_id
    if student_id is None:
        raise InvalidState("student_id is required when creating on behalf of a student")

    course = await db.get(Course, course_id)
    if course is None or not course.is_active:
        raise NotFound("Course not found", course_id=course_id)
    package = await get_package(db, package_id)
    if not package.is_active:
        raise NotFound("Package not found", package_id=package_id)

    opening = Credits.opening(
        sessions_per_week=package.sessions_per_week,
        weeks_per_cycle=package.weeks_per_cycle,
        postpone_total=settings.default_postpone_credits,
    )
    row = Subscription(
        student_id=student_id,
        teacher_id=None,
        course_id=course.id,
        package_id=package.id,
        status=opening.status,
        weeks_total=package.weeks_per_cycle,
        sessions_total=opening.sessions_total,
        sessions_remaining=opening.sessions_remaining,
        postpone_total=opening.postpone_total,
        postpone_remaining=opening.postpone_remaining,
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def list_subscriptions(
    db: AsyncSession,
    *,
    actor: Actor,
    status: SubscriptionStatus | None = None,
) -> list[Subscription]:
    stmt = select(Subscription).order_by(desc(Subscription.created_at), desc(Subscription.id))
    if actor.is_student:
        stmt = stmt.where(Subscription.student_id == actor.profile_id)
    elif actor.is_teacher:
        stmt = stmt.where(Subscription.teacher_id == actor.profile_id)
    if status is not None:
        stmt = stmt.where(Subscription.status == status)
    return list((await db.execute(stmt)).scalars().all())


async def load_for_actor(db: AsyncSession, *, actor: Actor, subscription_id: int) -> Subscription:
    row = await get_subscription(db, subscription_id)
    ensure_participant(actor, row)
    return row


async def start_checkout(db: AsyncSession, *, actor: Actor, subscription_id: int) -> Subscription:
    row = await get_subscription(db, subscription_id)
    ensure_student_owner(actor, row)
    if row.status == S.PENDING_PAYMENT:
        return row
    row = await _conditional_transition(db, subscription_id, target=S.PENDING_PAYMENT)
    await db.commit()
    return row


async def mark_payment_received(
    db: AsyncSession,
    *,
    subscription_id: int,
    external_ref: str | None = None,
) -> tuple[Subscription, bool]:
    """Apply the payment collaborator's signal. Repeated signals are no-ops."""
    row = await get_subscription(db, subscription_id)
    if row.status != S.PENDING_PAYMENT:
        if row.status in {S.DRAFT, S.CANCELLED}:
            logger.warning(
                "Ignoring payment for subscription id=%s in status %s",
                subscription_id,
                row.status,
            )
        return row, False
    values = {"lemon_subscription_id": external_ref} if external_ref else {}
    row = await _conditional_transition(
        db,
        subscription_id,
        target=S.PAYMENT_RECEIVED,
        sources=[S.PENDING_PAYMENT],
        values=values,
    )
    await db.commit()
    logger.info("Subscription id=%s payment received (ref=%s)", subscription_id, external_ref)
    return row, True


async def assign_teacher(
    db: AsyncSession,
    *,
    actor: Actor,
    subscription_id: int,
    teacher_id: int,
) -> Subscription:
    ensure_admin(actor)
    if teacher_id == (await get_subscription(db, subscription_id)).student_id:
        raise InvalidState("A student cannot be their own teacher")
    row = await _conditional_transition(
        db,
        subscription_id,
        target=S.TEACHER_ASSIGNED,
        values={"teacher_id": int(teacher_id)},
    )
    await db.commit()
    logger.info("Teacher %s assigned to subscription id=%s", teacher_id, subscription_id)
    return row


async def activate(db: AsyncSession, *, subscription_id: int, cycle_start_at: datetime | None) -> bool:
    """teacher_assigned -> active, once. Does not commit."""
    row = await get_subscription(db, subscription_id)
    if row.status != S.TEACHER_ASSIGNED:
        return False
    values: dict = {}
    if cycle_start_at is not None:
        values = {
            "cycle_start_at": cycle_start_at,
            "cycle_end_at": cycle_start_at + timedelta(days=7 * int(row.weeks_total)),
        }
    result = await db.execute(
        update(Subscription)
        .where(Subscription.id == subscription_id, Subscription.status == S.TEACHER_ASSIGNED)
        .values(status=S.ACTIVE, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def cancel_subscription(
    db: AsyncSession,
    *,
    actor: Actor,
    subscription_id: int,
    note: str | None = None,
) -> Subscription:
    row = await get_subscription(db, subscription_id)
    ensure_student_owner(actor, row)
    values = {"admin_note": note} if note else {}
    row = await _conditional_transition(db, subscription_id, target=S.CANCELLED, values=values)
    await db.commit()
    logger.info("Subscription id=%s cancelled by profile %s", subscription_id, actor.profile_id)
    return row
