from __future__ import annotations

from datetime import time

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tutorhub.core.errors import DuplicateRule, InvalidSlot, NotFound
from tutorhub.models.availability import AvailabilityRule
from tutorhub.services.auth import Actor, ensure_teacher_self_or_admin
from tutorhub.services.availability import find_duplicate_rule, normalize_time


def _checked_range(start_time: time | str, end_time: time | str) -> tuple[time, time]:
    start = normalize_time(start_time)
    end = normalize_time(end_time)
    if end <= start:
        raise InvalidSlot("end_time must be after start_time")
    return start, end


async def _rules_of(db: AsyncSession, teacher_id: int) -> list[AvailabilityRule]:
    return list(
        (
            await db.execute(
                select(AvailabilityRule)
                .where(AvailabilityRule.teacher_id == teacher_id)
                .order_by(AvailabilityRule.weekday, AvailabilityRule.start_time, AvailabilityRule.id)
            )
        ).scalars().all()
    )


async def get_rule(db: AsyncSession, rule_id: int) -> AvailabilityRule:
    row = await db.get(AvailabilityRule, rule_id)
    if row is None:
        raise NotFound("Availability rule not found", rule_id=rule_id)
    return row


async def list_rules(db: AsyncSession, *, teacher_id: int) -> list[AvailabilityRule]:
    return await _rules_of(db, teacher_id)


async def create_rule(
    db: AsyncSession,
    *,
    actor: Actor,
    teacher_id: int,
    weekday: int,
    start_time: time | str,
    end_time: time | str,
    is_active: bool = True,
) -> AvailabilityRule:
    ensure_teacher_self_or_admin(actor, teacher_id)
    start, end = _checked_range(start_time, end_time)
    existing = await _rules_of(db, teacher_id)
    if find_duplicate_rule(existing, weekday=weekday, start_time=start, end_time=end) is not None:
        raise DuplicateRule("An identical availability rule already exists", weekday=weekday)

    row = AvailabilityRule(
        teacher_id=teacher_id,
        weekday=int(weekday),
        start_time=start,
        end_time=end,
        is_active=bool(is_active),
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def update_rule(
    db: AsyncSession,
    *,
    actor: Actor,
    rule_id: int,
    weekday: int | None = None,
    start_time: time | str | None = None,
    end_time: time | str | None = None,
    is_active: bool | None = None,
) -> AvailabilityRule:
    row = await get_rule(db, rule_id)
    ensure_teacher_self_or_admin(actor, row.teacher_id)

    new_weekday = row.weekday if weekday is None else int(weekday)
    start, end = _checked_range(
        row.start_time if start_time is None else start_time,
        row.end_time if end_time is None else end_time,
    )
    existing = await _rules_of(db, row.teacher_id)
    if find_duplicate_rule(existing, weekday=new_weekday, start_time=start, end_time=end, exclude_id=row.id):
        raise DuplicateRule("An identical availability rule already exists", weekday=new_weekday)

    row.weekday = new_weekday
    row.start_time = start
    row.end_time = end
    if is_active is not None:
        row.is_active = bool(is_active)
    await db.commit()
    await db.refresh(row)
    return row


async def delete_rule(db: AsyncSession, *, actor: Actor, rule_id: int) -> None:
    row = await get_rule(db, rule_id)
    ensure_teacher_self_or_admin(actor, row.teacher_id)
    await db.execute(delete(AvailabilityRule).where(AvailabilityRule.id == rule_id))
    await db.commit()
