from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tutorhub.api.v1.deps import get_actor
from tutorhub.db.session import get_db
from tutorhub.models.availability import AvailabilityRule
from tutorhub.schemas.availability import AvailabilityRuleIn, AvailabilityRuleOut, AvailabilityRuleUpdateIn
from tutorhub.services import availability_rules
from tutorhub.services.auth import Actor

router = APIRouter(tags=["availability"])


def _to_rule_out(row: AvailabilityRule) -> AvailabilityRuleOut:
    return AvailabilityRuleOut(
        id=row.id,
        teacher_id=row.teacher_id,
        weekday=row.weekday,
        start_time=row.start_time.strftime("%H:%M"),
        end_time=row.end_time.strftime("%H:%M"),
        is_active=bool(row.is_active),
    )


@router.get("/teachers/{teacher_id}/availability", response_model=list[AvailabilityRuleOut])
async def list_rules(
    teacher_id: int,
    _actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    rows = await availability_rules.list_rules(db, teacher_id=teacher_id)
    return [_to_rule_out(r) for r in rows]


@router.post("/teachers/{teacher_id}/availability", response_model=AvailabilityRuleOut, status_code=201)
async def create_rule(
    teacher_id: int,
    payload: AvailabilityRuleIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await availability_rules.create_rule(
        db,
        actor=actor,
        teacher_id=teacher_id,
        weekday=payload.weekday,
        start_time=payload.start_time,
        end_time=payload.end_time,
        is_active=payload.is_active,
    )
    return _to_rule_out(row)


@router.patch("/availability/{rule_id}", response_model=AvailabilityRuleOut)
async def update_rule(
    rule_id: int,
    payload: AvailabilityRuleUpdateIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    row = await availability_rules.update_rule(
        db,
        actor=actor,
        rule_id=rule_id,
        weekday=payload.weekday,
        start_time=payload.start_time,
        end_time=payload.end_time,
        is_active=payload.is_active,
    )
    return _to_rule_out(row)


@router.delete("/availability/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    await availability_rules.delete_rule(db, actor=actor, rule_id=rule_id)
    return Response(status_code=204)
