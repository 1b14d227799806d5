"""Session lifecycle.

Every status change is a conditional UPDATE on the current status, so of two
racing callers exactly one moves the row. Completion and postpone approval
write the subscription's credits in the same transaction as the status change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tutorhub.core.config import settings
from tutorhub.core.enums import SessionStatus, SubscriptionStatus, WeekStatus
from tutorhub.core.errors import AlreadyCompleted, InvalidState, NotFound
from tutorhub.core.wallclock import to_wall_clock, wall_clock_now
from tutorhub.models.common import utcnow
from tutorhub.models.session import TutoringSession
from tutorhub.models.subscription import Subscription, SubscriptionWeek, WeekSlot
from tutorhub.services import zoom
from tutorhub.services.auth import Actor, ensure_admin, ensure_assigned_teacher, ensure_participant, ensure_student_owner
from tutorhub.services.ledger import decrement_postpones, decrement_sessions, remaining_sessions
from tutorhub.services.subscriptions import activate, apply_credits, get_subscription

logger = logging.getLogger(__name__)

SS = SessionStatus

SESSION_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SS.SCHEDULED: frozenset(
        {
            SS.IN_PROGRESS,
            SS.COMPLETED,
            SS.CANCELLED,
            SS.STUDENT_NO_SHOW,
            SS.TEACHER_NO_SHOW,
            SS.STUDENT_REQUESTED_POSTPONE,
        }
    ),
    SS.IN_PROGRESS: frozenset({SS.COMPLETED}),
    SS.STUDENT_REQUESTED_POSTPONE: frozenset({SS.POSTPONE_APPROVED, SS.SCHEDULED}),
    SS.COMPLETED: frozenset(),
    SS.CANCELLED: frozenset(),
    SS.STUDENT_NO_SHOW: frozenset(),
    SS.TEACHER_NO_SHOW: frozenset(),
    SS.POSTPONE_APPROVED: frozenset(),
}

OPEN_STATUSES = (SS.SCHEDULED, SS.IN_PROGRESS)

NO_SHOW_STATUS = {
    "student": SS.STUDENT_NO_SHOW,
    "teacher": SS.TEACHER_NO_SHOW,
}


@dataclass(slots=True)
class SyncReport:
    updated: int = 0
    skipped: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)


def can_transition(current: str, target: str) -> bool:
    return SessionStatus(target) in SESSION_TRANSITIONS[SessionStatus(current)]


def sources_for(target: SessionStatus) -> list[SessionStatus]:
    return [state for state, targets in SESSION_TRANSITIONS.items() if target in targets]


def can_join(session: Any, now: datetime | None = None, window_minutes: int | None = None) -> bool:
    """Joinable from ``window_minutes`` before the start; no upper bound."""
    if session.status not in OPEN_STATUSES:
        return False
    if not session.zoom_join_url:
        return False
    now = to_wall_clock(now) if now is not None else wall_clock_now()
    window = settings.join_window_minutes if window_minutes is None else window_minutes
    return session.start_at - now <= timedelta(minutes=int(window))


async def get_session(db: AsyncSession, session_id: int) -> TutoringSession:
    row = (
        await db.execute(
            select(TutoringSession)
            .where(TutoringSession.id == session_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if row is None:
        raise NotFound("Session not found", session_id=session_id)
    return row


async def _load(db: AsyncSession, session_id: int) -> tuple[TutoringSession, Subscription]:
    session = await get_session(db, session_id)
    subscription = await get_subscription(db, session.subscription_id)
    return session, subscription


async def load_for_actor(db: AsyncSession, *, actor: Actor, session_id: int) -> TutoringSession:
    session, subscription = await _load(db, session_id)
    ensure_participant(actor, subscription)
    return session


async def _transition(
    db: AsyncSession,
    session_id: int,
    *,
    target: SessionStatus,
    sources: tuple[SessionStatus, ...] | list[SessionStatus] | None = None,
    values: dict | None = None,
) -> bool:
    allowed = list(sources) if sources is not None else sources_for(target)
    result = await db.execute(
        update(TutoringSession)
        .where(TutoringSession.id == session_id, TutoringSession.status.in_(allowed))
        .values(status=target, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _rejected(db: AsyncSession, session_id: int, target: SessionStatus) -> InvalidState:
    current = await get_session(db, session_id)
    if current.status == SS.COMPLETED and target == SS.COMPLETED:
        return AlreadyCompleted(session_id)
    return InvalidState(
        f"Session cannot move from {current.status} to {target}",
        current_status=str(current.status),
    )


async def _complete_core(
    db: AsyncSession,
    *,
    session_id: int,
    subscription_id: int,
    completed_at: datetime,
) -> bool:
    """Move an open session to completed and consume one session credit.

    Returns False when another caller completed (or otherwise closed) it
    first. Does not commit.
    """
    if not await _transition(
        db,
        session_id,
        target=SS.COMPLETED,
        sources=OPEN_STATUSES,
        values={"completed_at": completed_at},
    ):
        return False
    credits = await apply_credits(db, subscription_id, decrement_sessions)
    logger.info(
        "Session id=%s completed, subscription id=%s has %s sessions remaining",
        session_id,
        subscription_id,
        credits.sessions_remaining,
    )
    completed = await completed_count(db, subscription_id)
    expected = remaining_sessions(credits.sessions_total, completed)
    if expected != credits.sessions_remaining:
        logger.warning(
            "Credit drift on subscription id=%s: stored sessions_remaining=%s, %s completed sessions imply %s",
            subscription_id,
            credits.sessions_remaining,
            completed,
            expected,
        )
    return True


async def completed_count(db: AsyncSession, subscription_id: int) -> int:
    return int(
        (
            await db.execute(
                select(func.count(TutoringSession.id)).where(
                    TutoringSession.subscription_id == subscription_id,
                    TutoringSession.status == SS.COMPLETED,
                )
            )
        ).scalar_one()
    )


async def complete_session(db: AsyncSession, *, actor: Actor, session_id: int) -> TutoringSession:
    session, subscription = await _load(db, session_id)
    ensure_assigned_teacher(actor, subscription)
    if not await _complete_core(
        db,
        session_id=session.id,
        subscription_id=session.subscription_id,
        completed_at=wall_clock_now(),
    ):
        raise await _rejected(db, session_id, SS.COMPLETED)
    await db.commit()
    return await get_session(db, session_id)


async def start_session(db: AsyncSession, *, actor: Actor, session_id: int) -> TutoringSession:
    session, subscription = await _load(db, session_id)
    ensure_assigned_teacher(actor, subscription)
    if not await _transition(db, session.id, target=SS.IN_PROGRESS):
        raise await _rejected(db, session_id, SS.IN_PROGRESS)
    await db.commit()
    return await get_session(db, session_id)


async def cancel_session(db: AsyncSession, *, actor: Actor, session_id: int) -> TutoringSession:
    session, subscription = await _load(db, session_id)
    ensure_assigned_teacher(actor, subscription)
    if not await _transition(db, session.id, target=SS.CANCELLED):
        raise await _rejected(db, session_id, SS.CANCELLED)
    await db.commit()
    return await get_session(db, session_id)


async def mark_no_show(db: AsyncSession, *, actor: Actor, session_id: int, party: str) -> TutoringSession:
    target = NO_SHOW_STATUS.get(str(party or "").strip().lower())
    if target is None:
        raise InvalidState("party must be 'student' or 'teacher'", party=party)
    session, subscription = await _load(db, session_id)
    if target == SS.TEACHER_NO_SHOW:
        ensure_admin(actor)
    else:
        ensure_assigned_teacher(actor, subscription)
    if not await _transition(db, session.id, target=target):
        raise await _rejected(db, session_id, target)
    await db.commit()
    return await get_session(db, session_id)


async def request_postpone(
    db: AsyncSession,
    *,
    actor: Actor,
    session_id: int,
    reason: str | None = None,
) -> TutoringSession:
    session, subscription = await _load(db, session_id)
    ensure_student_owner(actor, subscription)
    values = {
        "postpone_reason": (reason or "").strip() or None,
        "postpone_requested_at": utcnow(),
    }
    if not await _transition(db, session.id, target=SS.STUDENT_REQUESTED_POSTPONE, values=values):
        raise await _rejected(db, session_id, SS.STUDENT_REQUESTED_POSTPONE)
    await db.commit()
    return await get_session(db, session_id)


async def approve_postpone(db: AsyncSession, *, actor: Actor, session_id: int) -> TutoringSession:
    session, subscription = await _load(db, session_id)
    ensure_assigned_teacher(actor, subscription)
    if not await _transition(
        db,
        session.id,
        target=SS.POSTPONE_APPROVED,
        values={"postpone_approved_at": utcnow()},
    ):
        raise await _rejected(db, session_id, SS.POSTPONE_APPROVED)
    try:
        credits = await apply_credits(db, session.subscription_id, decrement_postpones)
    except Exception:
        await db.rollback()
        raise
    await db.commit()
    logger.info(
        "Postpone approved for session id=%s, subscription id=%s has %s postpones remaining",
        session_id,
        session.subscription_id,
        credits.postpone_remaining,
    )
    return await get_session(db, session_id)


async def decline_postpone(db: AsyncSession, *, actor: Actor, session_id: int) -> TutoringSession:
    session, subscription = await _load(db, session_id)
    ensure_assigned_teacher(actor, subscription)
    if not await _transition(
        db,
        session.id,
        target=SS.SCHEDULED,
        sources=[SS.STUDENT_REQUESTED_POSTPONE],
    ):
        raise await _rejected(db, session_id, SS.SCHEDULED)
    await db.commit()
    return await get_session(db, session_id)


async def sync_expired_sessions(
    db: AsyncSession,
    *,
    now: datetime | None = None,
    limit: int | None = None,
) -> SyncReport:
    """Complete every open session whose end has passed.

    ``completed_at`` is backdated to the scheduled end. Rows are read in pages
    of ``limit`` keyed on ``(end_at, id)``, so failed rows are not re-read in
    the same run. Each session commits on its own; one failure does not stop
    the sweep.
    """
    now = to_wall_clock(now) if now is not None else wall_clock_now()
    page_size = int(limit or settings.sync_batch_limit)
    report = SyncReport()
    after: tuple[datetime, int] | None = None

    while True:
        stmt = (
            select(TutoringSession.id, TutoringSession.subscription_id, TutoringSession.end_at)
            .where(TutoringSession.status.in_(OPEN_STATUSES), TutoringSession.end_at < now)
            .order_by(TutoringSession.end_at, TutoringSession.id)
            .limit(page_size)
        )
        if after is not None:
            last_end, last_id = after
            stmt = stmt.where(
                or_(
                    TutoringSession.end_at > last_end,
                    and_(TutoringSession.end_at == last_end, TutoringSession.id > last_id),
                )
            )
        due = (await db.execute(stmt)).all()
        await db.rollback()
        if not due:
            break

        for session_id, subscription_id, end_at in due:
            try:
                changed = await _complete_core(
                    db,
                    session_id=session_id,
                    subscription_id=subscription_id,
                    completed_at=end_at,
                )
                if changed:
                    await db.commit()
                    report.updated += 1
                else:
                    await db.rollback()
                    report.skipped += 1
            except Exception as exc:
                await db.rollback()
                logger.exception("Failed to auto-complete session id=%s", session_id)
                report.failures.append({"session_id": session_id, "error": str(exc)})
        after = (due[-1][2], due[-1][0])
        if len(due) < page_size:
            break

    if report.updated or report.failures:
        logger.info(
            "Expired session sweep: updated=%s skipped=%s failures=%s",
            report.updated,
            report.skipped,
            len(report.failures),
        )
    return report


async def materialize_week_sessions(db: AsyncSession, week: SubscriptionWeek) -> list[TutoringSession]:
    """One scheduled session per slot of an approved week. Does not commit."""
    if week.status != WeekStatus.APPROVED:
        return []
    slots = (
        await db.execute(select(WeekSlot).where(WeekSlot.week_id == week.id).order_by(WeekSlot.start_at))
    ).scalars().all()
    if not slots:
        return []
    existing = set(
        (
            await db.execute(
                select(TutoringSession.slot_id).where(TutoringSession.slot_id.in_([s.id for s in slots]))
            )
        ).scalars().all()
    )
    created: list[TutoringSession] = []
    for slot in slots:
        if slot.id in existing:
            continue
        session = TutoringSession(
            subscription_id=week.subscription_id,
            slot_id=slot.id,
            start_at=slot.start_at,
            end_at=slot.end_at,
            status=SS.SCHEDULED,
        )
        db.add(session)
        created.append(session)
    if created:
        await db.flush()
    return created


async def reconcile_approved_weeks(db: AsyncSession, *, limit: int | None = None) -> int:
    """Materialize sessions for approved weeks that are missing some."""
    batch = int(limit or settings.sync_batch_limit)
    week_ids = (
        await db.execute(
            select(SubscriptionWeek.id)
            .join(WeekSlot, WeekSlot.week_id == SubscriptionWeek.id)
            .join(Subscription, Subscription.id == SubscriptionWeek.subscription_id)
            .outerjoin(TutoringSession, TutoringSession.slot_id == WeekSlot.id)
            .where(
                SubscriptionWeek.status == WeekStatus.APPROVED,
                Subscription.status != SubscriptionStatus.CANCELLED,
                TutoringSession.id.is_(None),
            )
            .distinct()
            .limit(batch)
        )
    ).scalars().all()

    total = 0
    for week_id in week_ids:
        week = await db.get(SubscriptionWeek, week_id)
        if week is None:
            continue
        try:
            created = await materialize_week_sessions(db, week)
            if created:
                first_start = min(s.start_at for s in created)
                await activate(db, subscription_id=week.subscription_id, cycle_start_at=first_start)
            await db.commit()
        except IntegrityError:
            # Materialized concurrently.
            await db.rollback()
            continue
        total += len(created)
    if total:
        logger.info("Reconciled %s missing sessions from approved weeks", total)
    return total


async def set_meeting_links(
    db: AsyncSession,
    *,
    actor: Actor,
    session_id: int,
    join_url: str,
    start_url: str | None = None,
    meeting_id: str | None = None,
) -> TutoringSession:
    session, subscription = await _load(db, session_id)
    ensure_assigned_teacher(actor, subscription)
    await db.execute(
        update(TutoringSession)
        .where(TutoringSession.id == session.id)
        .values(zoom_join_url=join_url, zoom_start_url=start_url, zoom_meeting_id=meeting_id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return await get_session(db, session_id)


async def provision_meeting_links(db: AsyncSession, session_ids: list[int]) -> int:
    """Best-effort Zoom meetings for sessions that have no join link yet."""
    if not session_ids or not settings.zoom_configured:
        return 0
    rows = (
        await db.execute(
            select(TutoringSession.id, TutoringSession.subscription_id, TutoringSession.start_at, TutoringSession.end_at)
            .where(TutoringSession.id.in_(session_ids), TutoringSession.zoom_join_url.is_(None))
            .order_by(TutoringSession.start_at, TutoringSession.id)
        )
    ).all()
    await db.rollback()

    provisioned = 0
    for session_id, subscription_id, start_at, end_at in rows:
        duration = int((end_at - start_at).total_seconds() // 60)
        try:
            meeting = await zoom.create_meeting(
                topic=f"Tutoring session #{session_id} (subscription {subscription_id})",
                start_at=start_at,
                duration_minutes=duration,
            )
        except (zoom.ConferencingError, httpx.HTTPError):
            logger.exception("Zoom meeting creation failed for session id=%s", session_id)
            continue
        await db.execute(
            update(TutoringSession)
            .where(TutoringSession.id == session_id, TutoringSession.zoom_join_url.is_(None))
            .values(
                zoom_meeting_id=meeting["meeting_id"] or None,
                zoom_join_url=meeting["join_url"],
                zoom_start_url=meeting["start_url"] or None,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        provisioned += 1
    return provisioned


async def list_sessions(
    db: AsyncSession,
    *,
    actor: Actor,
    subscription_id: int | None = None,
    status: SessionStatus | None = None,
    limit: int = 200,
) -> list[TutoringSession]:
    stmt = (
        select(TutoringSession)
        .join(Subscription, Subscription.id == TutoringSession.subscription_id)
        .order_by(TutoringSession.start_at, TutoringSession.id)
        .limit(limit)
    )
    if subscription_id is not None:
        subscription = await get_subscription(db, subscription_id)
        ensure_participant(actor, subscription)
        stmt = stmt.where(TutoringSession.subscription_id == subscription_id)
    if actor.is_student:
        stmt = stmt.where(Subscription.student_id == actor.profile_id)
    elif actor.is_teacher:
        stmt = stmt.where(Subscription.teacher_id == actor.profile_id)
    if status is not None:
        stmt = stmt.where(TutoringSession.status == status)
    return list((await db.execute(stmt)).scalars().all())
