from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from conftest import ADMIN, STUDENT, TEACHER, seed_session, seed_subscription
from tutorhub.core.enums import SessionStatus, SubscriptionStatus
from tutorhub.core.errors import AlreadyCompleted, Forbidden, InsufficientCredit, InvalidState
from tutorhub.models.session import TutoringSession
from tutorhub.models.subscription import Subscription
from tutorhub.services import lifecycle

NOW = datetime(2025, 1, 7, 8, 50)
START = datetime(2025, 1, 7, 9, 0)


def _joinable(**overrides) -> SimpleNamespace:
    values = {"status": SessionStatus.SCHEDULED, "zoom_join_url": "https://zoom.example/j/1", "start_at": START}
    values.update(overrides)
    return SimpleNamespace(**values)


def test_join_window_opens_fifteen_minutes_before_start() -> None:
    now = datetime(2025, 1, 7, 12, 0)
    assert lifecycle.can_join(_joinable(start_at=now + timedelta(minutes=10)), now)
    assert not lifecycle.can_join(_joinable(start_at=now + timedelta(minutes=20)), now)


def test_join_window_has_no_upper_bound() -> None:
    assert lifecycle.can_join(_joinable(), START + timedelta(hours=5))
    assert lifecycle.can_join(_joinable(status=SessionStatus.IN_PROGRESS), START)


def test_join_needs_link_and_open_status() -> None:
    assert not lifecycle.can_join(_joinable(zoom_join_url=None), NOW)
    assert not lifecycle.can_join(_joinable(status=SessionStatus.COMPLETED), NOW)
    assert not lifecycle.can_join(_joinable(status=SessionStatus.STUDENT_REQUESTED_POSTPONE), NOW)


def test_join_window_is_configurable() -> None:
    session = _joinable(start_at=NOW + timedelta(minutes=20))
    assert lifecycle.can_join(session, NOW, window_minutes=30)


@pytest.fixture
def active_sub(store) -> int:
    return store.run(seed_subscription, status=SubscriptionStatus.ACTIVE, sessions_per_week=2, weeks_per_cycle=4)


def _sessions(store, sub_id: int, count: int) -> list[int]:
    async def _go(db):
        ids = []
        for i in range(count):
            start = START + timedelta(days=i)
            ids.append(await seed_session(db, subscription_id=sub_id, start_at=start, end_at=start + timedelta(hours=1)))
        return ids

    return store.run(_go)


def test_eight_sessions_complete_the_subscription(store, active_sub) -> None:
    ids = _sessions(store, active_sub, 8)

    store.run(lifecycle.complete_session, actor=TEACHER, session_id=ids[0])
    sub = store.get(Subscription, active_sub)
    assert sub.sessions_remaining == 7
    assert sub.status == SubscriptionStatus.ACTIVE

    for session_id in ids[1:]:
        store.run(lifecycle.complete_session, actor=TEACHER, session_id=session_id)
    sub = store.get(Subscription, active_sub)
    assert sub.sessions_remaining == 0
    assert sub.status == SubscriptionStatus.COMPLETED


def test_complete_is_idempotent(store, active_sub) -> None:
    (session_id,) = _sessions(store, active_sub, 1)
    row = store.run(lifecycle.complete_session, actor=TEACHER, session_id=session_id)
    assert row.status == SessionStatus.COMPLETED
    assert row.completed_at is not None

    with pytest.raises(AlreadyCompleted) as exc:
        store.run(lifecycle.complete_session, actor=TEACHER, session_id=session_id)
    assert isinstance(exc.value, InvalidState)
    assert store.get(Subscription, active_sub).sessions_remaining == 7


def test_only_assigned_teacher_completes(store, active_sub) -> None:
    (session_id,) = _sessions(store, active_sub, 1)
    with pytest.raises(Forbidden):
        store.run(lifecycle.complete_session, actor=STUDENT, session_id=session_id)


def test_postpone_flow_consumes_credit_on_approval(store, active_sub) -> None:
    (session_id,) = _sessions(store, active_sub, 1)

    row = store.run(lifecycle.request_postpone, actor=STUDENT, session_id=session_id, reason="Exam week")
    assert row.status == SessionStatus.STUDENT_REQUESTED_POSTPONE
    assert row.postpone_reason == "Exam week"
    assert store.get(Subscription, active_sub).postpone_remaining == 2

    row = store.run(lifecycle.approve_postpone, actor=TEACHER, session_id=session_id)
    assert row.status == SessionStatus.POSTPONE_APPROVED
    assert row.postpone_approved_at is not None
    assert store.get(Subscription, active_sub).postpone_remaining == 1

    with pytest.raises(InvalidState):
        store.run(lifecycle.approve_postpone, actor=TEACHER, session_id=session_id)
    assert store.get(Subscription, active_sub).postpone_remaining == 1


def test_approve_postpone_without_credit_changes_nothing(store) -> None:
    sub_id = store.run(seed_subscription, status=SubscriptionStatus.ACTIVE, postpone_total=2, postpone_remaining=0)
    (session_id,) = _sessions(store, sub_id, 1)
    store.run(lifecycle.request_postpone, actor=STUDENT, session_id=session_id)

    with pytest.raises(InsufficientCredit):
        store.run(lifecycle.approve_postpone, actor=TEACHER, session_id=session_id)

    session = store.get(TutoringSession, session_id)
    assert session.status == SessionStatus.STUDENT_REQUESTED_POSTPONE
    assert session.postpone_approved_at is None
    assert store.get(Subscription, sub_id).postpone_remaining == 0


def test_declined_postpone_returns_to_scheduled_for_free(store, active_sub) -> None:
    (session_id,) = _sessions(store, active_sub, 1)
    store.run(lifecycle.request_postpone, actor=STUDENT, session_id=session_id)
    row = store.run(lifecycle.decline_postpone, actor=TEACHER, session_id=session_id)
    assert row.status == SessionStatus.SCHEDULED
    assert store.get(Subscription, active_sub).postpone_remaining == 2


def test_postpone_request_rules(store, active_sub) -> None:
    (session_id,) = _sessions(store, active_sub, 1)
    with pytest.raises(Forbidden):
        store.run(lifecycle.request_postpone, actor=TEACHER, session_id=session_id)

    store.run(lifecycle.complete_session, actor=TEACHER, session_id=session_id)
    with pytest.raises(InvalidState):
        store.run(lifecycle.request_postpone, actor=STUDENT, session_id=session_id)


def test_start_cancel_and_no_show_do_not_touch_ledger(store, active_sub) -> None:
    first, second, third = _sessions(store, active_sub, 3)

    assert store.run(lifecycle.start_session, actor=TEACHER, session_id=first).status == SessionStatus.IN_PROGRESS
    with pytest.raises(InvalidState):
        store.run(lifecycle.cancel_session, actor=TEACHER, session_id=first)

    assert store.run(lifecycle.cancel_session, actor=ADMIN, session_id=second).status == SessionStatus.CANCELLED

    with pytest.raises(Forbidden):
        store.run(lifecycle.mark_no_show, actor=TEACHER, session_id=third, party="teacher")
    row = store.run(lifecycle.mark_no_show, actor=TEACHER, session_id=third, party="student")
    assert row.status == SessionStatus.STUDENT_NO_SHOW

    assert store.get(Subscription, active_sub).sessions_remaining == 8


def test_meeting_links_are_recorded(store, active_sub) -> None:
    (session_id,) = _sessions(store, active_sub, 1)
    with pytest.raises(Forbidden):
        store.run(lifecycle.set_meeting_links, actor=STUDENT, session_id=session_id, join_url="https://zoom.example/j/9")
    row = store.run(
        lifecycle.set_meeting_links,
        actor=TEACHER,
        session_id=session_id,
        join_url="https://zoom.example/j/9",
        start_url="https://zoom.example/s/9",
    )
    assert row.zoom_join_url == "https://zoom.example/j/9"
    assert lifecycle.can_join(row, START - timedelta(minutes=10))


def test_transition_table() -> None:
    assert lifecycle.can_transition(SessionStatus.SCHEDULED, SessionStatus.STUDENT_REQUESTED_POSTPONE)
    assert lifecycle.can_transition(SessionStatus.STUDENT_REQUESTED_POSTPONE, SessionStatus.SCHEDULED)
    assert not lifecycle.can_transition(SessionStatus.COMPLETED, SessionStatus.SCHEDULED)
    assert not lifecycle.can_transition(SessionStatus.IN_PROGRESS, SessionStatus.CANCELLED)
