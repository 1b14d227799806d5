import logging
from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import update

from conftest import TEACHER, seed_session, seed_subscription
from tutorhub.core.enums import SessionStatus, SubscriptionStatus, WeekStatus
from tutorhub.core.errors import AlreadyCompleted
from tutorhub.models.session import TutoringSession
from tutorhub.models.subscription import Subscription, SubscriptionWeek, WeekSlot
from tutorhub.services import lifecycle

NOW = datetime(2025, 1, 10, 12, 0)


def _seed(store, *ends: datetime, status=SessionStatus.SCHEDULED):
    async def _go(db):
        sub_id = await seed_subscription(db, status=SubscriptionStatus.ACTIVE)
        ids = [
            await seed_session(db, subscription_id=sub_id, start_at=end - timedelta(hours=1), end_at=end, status=status)
            for end in ends
        ]
        return sub_id, ids

    return store.run(_go)


def test_sweep_backdates_completion_and_is_idempotent(store) -> None:
    past = NOW - timedelta(days=1)
    future = NOW + timedelta(hours=2)
    sub_id, (expired, upcoming) = _seed(store, past, future)

    report = store.run(lifecycle.sync_expired_sessions, now=NOW)
    assert (report.updated, report.skipped, report.failures) == (1, 0, [])

    row = store.get(TutoringSession, expired)
    assert row.status == SessionStatus.COMPLETED
    assert row.completed_at == past
    assert store.get(TutoringSession, upcoming).status == SessionStatus.SCHEDULED
    assert store.get(Subscription, sub_id).sessions_remaining == 7

    again = store.run(lifecycle.sync_expired_sessions, now=NOW)
    assert (again.updated, again.skipped, again.failures) == (0, 0, [])
    assert store.get(Subscription, sub_id).sessions_remaining == 7


def test_explicit_complete_after_sweep_is_rejected(store) -> None:
    sub_id, (session_id,) = _seed(store, NOW - timedelta(hours=1))
    store.run(lifecycle.sync_expired_sessions, now=NOW)
    with pytest.raises(AlreadyCompleted):
        store.run(lifecycle.complete_session, actor=TEACHER, session_id=session_id)
    assert store.get(Subscription, sub_id).sessions_remaining == 7


def test_sweep_includes_in_progress_and_skips_closed(store) -> None:
    _sub, (running,) = _seed(store, NOW - timedelta(minutes=5), status=SessionStatus.IN_PROGRESS)
    _sub2, (cancelled,) = _seed(store, NOW - timedelta(minutes=5), status=SessionStatus.CANCELLED)

    report = store.run(lifecycle.sync_expired_sessions, now=NOW)
    assert report.updated == 1
    assert store.get(TutoringSession, running).status == SessionStatus.COMPLETED
    assert store.get(TutoringSession, cancelled).status == SessionStatus.CANCELLED


def test_sweep_survives_a_failing_session(store, monkeypatch) -> None:
    bad_sub, (bad,) = _seed(store, NOW - timedelta(hours=3))
    good_sub, (good,) = _seed(store, NOW - timedelta(hours=2))

    real_apply = lifecycle.apply_credits

    async def flaky_apply(db, subscription_id, step):
        if subscription_id == bad_sub:
            raise RuntimeError("ledger unavailable")
        return await real_apply(db, subscription_id, step)

    monkeypatch.setattr(lifecycle, "apply_credits", flaky_apply)
    report = store.run(lifecycle.sync_expired_sessions, now=NOW)

    assert report.updated == 1
    assert report.failures == [{"session_id": bad, "error": "ledger unavailable"}]
    assert store.get(TutoringSession, bad).status == SessionStatus.SCHEDULED
    assert store.get(Subscription, bad_sub).sessions_remaining == 8
    assert store.get(TutoringSession, good).status == SessionStatus.COMPLETED
    assert store.get(Subscription, good_sub).sessions_remaining == 7


def test_failures_filling_a_page_do_not_block_later_sessions(store, monkeypatch) -> None:
    bad_sub, bad_ids = _seed(store, NOW - timedelta(hours=5), NOW - timedelta(hours=4), NOW - timedelta(hours=3))
    good_sub, (good,) = _seed(store, NOW - timedelta(hours=1))

    real_apply = lifecycle.apply_credits

    async def flaky_apply(db, subscription_id, step):
        if subscription_id == bad_sub:
            raise RuntimeError("ledger unavailable")
        return await real_apply(db, subscription_id, step)

    monkeypatch.setattr(lifecycle, "apply_credits", flaky_apply)
    for _ in range(2):
        report = store.run(lifecycle.sync_expired_sessions, now=NOW, limit=2)
        assert [f["session_id"] for f in report.failures] == bad_ids

    assert store.get(TutoringSession, good).status == SessionStatus.COMPLETED
    assert store.get(Subscription, good_sub).sessions_remaining == 7
    assert all(store.get(TutoringSession, i).status == SessionStatus.SCHEDULED for i in bad_ids)


def test_sweep_pages_through_every_expired_session(store) -> None:
    _seed(store, NOW - timedelta(hours=3), NOW - timedelta(hours=2), NOW - timedelta(hours=1))
    report = store.run(lifecycle.sync_expired_sessions, now=NOW, limit=2)
    assert (report.updated, report.skipped, report.failures) == (3, 0, [])
    assert store.run(lifecycle.sync_expired_sessions, now=NOW, limit=2).updated == 0


def test_sessions_sharing_an_end_time_are_not_skipped_between_pages(store) -> None:
    end = NOW - timedelta(hours=1)
    sub_id, ids = _seed(store, end, end, end)
    assert store.run(lifecycle.sync_expired_sessions, now=NOW, limit=2).updated == 3
    assert all(store.get(TutoringSession, i).status == SessionStatus.COMPLETED for i in ids)
    assert store.get(Subscription, sub_id).sessions_remaining == 5


def test_reconcile_materializes_missing_sessions(store) -> None:
    async def _go(db):
        sub_id = await seed_subscription(db, status=SubscriptionStatus.TEACHER_ASSIGNED)
        week = SubscriptionWeek(subscription_id=sub_id, week_index=1, status=WeekStatus.APPROVED)
        db.add(week)
        await db.flush()
        db.add_all(
            [
                WeekSlot(week_id=week.id, start_at=datetime(2025, 1, 7, 9, 0), end_at=datetime(2025, 1, 7, 10, 0)),
                WeekSlot(week_id=week.id, start_at=datetime(2025, 1, 9, 9, 0), end_at=datetime(2025, 1, 9, 10, 0)),
            ]
        )
        await db.commit()
        return sub_id

    sub_id = store.run(_go)
    assert store.run(lifecycle.reconcile_approved_weeks) == 2
    assert store.run(lifecycle.reconcile_approved_weeks) == 0

    sub = store.get(Subscription, sub_id)
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.cycle_start_at == datetime(2025, 1, 7, 9, 0)
    sessions = store.run(lifecycle.list_sessions, actor=TEACHER, subscription_id=sub_id)
    assert [s.start_at.time() for s in sessions] == [time(9, 0), time(9, 0)]


def _drift_warnings(caplog) -> list[str]:
    return [r.getMessage() for r in caplog.records if "Credit drift" in r.getMessage()]


def test_completion_keeps_credits_in_line_with_completed_sessions(store, caplog) -> None:
    _seed(store, NOW - timedelta(hours=3), NOW - timedelta(hours=2))
    with caplog.at_level(logging.WARNING, logger="tutorhub.services.lifecycle"):
        assert store.run(lifecycle.sync_expired_sessions, now=NOW).updated == 2
    assert _drift_warnings(caplog) == []


def test_completion_reports_credit_drift(store, caplog) -> None:
    sub_id, (bypassed, due) = _seed(store, NOW - timedelta(hours=3), NOW + timedelta(hours=2))

    async def _complete_without_ledger(db):
        await db.execute(
            update(TutoringSession).where(TutoringSession.id == bypassed).values(status=SessionStatus.COMPLETED)
        )
        await db.commit()

    store.run(_complete_without_ledger)
    with caplog.at_level(logging.WARNING, logger="tutorhub.services.lifecycle"):
        store.run(lifecycle.complete_session, actor=TEACHER, session_id=due)

    assert store.get(Subscription, sub_id).sessions_remaining == 7
    assert _drift_warnings(caplog) == [
        f"Credit drift on subscription id={sub_id}: stored sessions_remaining=7, 2 completed sessions imply 6"
    ]
