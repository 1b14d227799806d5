import pytest

from conftest import ADMIN, OTHER_STUDENT, STUDENT, TEACHER, seed_catalog, seed_subscription
from tutorhub.core.enums import SubscriptionStatus
from tutorhub.core.errors import Forbidden, InvalidState, NotFound
from tutorhub.models.subscription import Subscription
from tutorhub.services import subscriptions as svc


def _create(store, **kwargs):
    async def _go(db):
        course_id, package_id = await seed_catalog(db, **kwargs)
        return await svc.create_subscription(db, actor=STUDENT, course_id=course_id, package_id=package_id)

    return store.run(_go)


def test_create_subscription_opens_ledger_from_package(store) -> None:
    row = _create(store, sessions_per_week=2, weeks_per_cycle=4)
    assert row.status == SubscriptionStatus.DRAFT
    assert row.student_id == STUDENT.profile_id
    assert row.teacher_id is None
    assert (row.weeks_total, row.sessions_total, row.sessions_remaining) == (4, 8, 8)
    assert (row.postpone_total, row.postpone_remaining) == (2, 2)


def test_create_subscription_rejects_inactive_package(store) -> None:
    async def _go(db):
        course_id, package_id = await seed_catalog(db, active=False)
        return await svc.create_subscription(db, actor=STUDENT, course_id=course_id, package_id=package_id)

    with pytest.raises(NotFound):
        store.run(_go)


def test_teacher_cannot_create_subscription(store) -> None:
    async def _go(db):
        course_id, package_id = await seed_catalog(db)
        return await svc.create_subscription(db, actor=TEACHER, course_id=course_id, package_id=package_id)

    with pytest.raises(Forbidden):
        store.run(_go)


def test_checkout_payment_and_assignment(store) -> None:
    sub_id = _create(store).id

    row = store.run(svc.start_checkout, actor=STUDENT, subscription_id=sub_id)
    assert row.status == SubscriptionStatus.PENDING_PAYMENT

    row, changed = store.run(svc.mark_payment_received, subscription_id=sub_id, external_ref="ls_123")
    assert changed
    assert row.status == SubscriptionStatus.PAYMENT_RECEIVED
    assert row.lemon_subscription_id == "ls_123"

    _row, changed = store.run(svc.mark_payment_received, subscription_id=sub_id, external_ref="ls_123")
    assert not changed

    with pytest.raises(Forbidden):
        store.run(svc.assign_teacher, actor=STUDENT, subscription_id=sub_id, teacher_id=TEACHER.profile_id)

    row = store.run(svc.assign_teacher, actor=ADMIN, subscription_id=sub_id, teacher_id=TEACHER.profile_id)
    assert row.status == SubscriptionStatus.TEACHER_ASSIGNED
    assert row.teacher_id == TEACHER.profile_id


def test_payment_signal_ignored_before_checkout(store) -> None:
    sub_id = _create(store).id
    row, changed = store.run(svc.mark_payment_received, subscription_id=sub_id)
    assert not changed
    assert row.status == SubscriptionStatus.DRAFT


def test_assign_teacher_requires_payment(store) -> None:
    sub_id = store.run(seed_subscription, status=SubscriptionStatus.PENDING_PAYMENT, teacher_id=None)
    with pytest.raises(InvalidState):
        store.run(svc.assign_teacher, actor=ADMIN, subscription_id=sub_id, teacher_id=TEACHER.profile_id)
    assert store.get(Subscription, sub_id).teacher_id is None


def test_cancel_rules(store) -> None:
    sub_id = store.run(seed_subscription, status=SubscriptionStatus.ACTIVE)

    with pytest.raises(Forbidden):
        store.run(svc.cancel_subscription, actor=OTHER_STUDENT, subscription_id=sub_id)

    row = store.run(svc.cancel_subscription, actor=STUDENT, subscription_id=sub_id)
    assert row.status == SubscriptionStatus.CANCELLED

    with pytest.raises(InvalidState):
        store.run(svc.cancel_subscription, actor=ADMIN, subscription_id=sub_id)


def test_list_subscriptions_is_scoped_to_actor(store) -> None:
    mine = store.run(seed_subscription)
    store.run(seed_subscription, student_id=OTHER_STUDENT.profile_id)

    assert [r.id for r in store.run(svc.list_subscriptions, actor=STUDENT)] == [mine]
    assert len(store.run(svc.list_subscriptions, actor=TEACHER)) == 2
    assert len(store.run(svc.list_subscriptions, actor=ADMIN)) == 2


def test_transition_table() -> None:
    assert svc.can_transition(SubscriptionStatus.DRAFT, SubscriptionStatus.PENDING_PAYMENT)
    assert svc.can_transition(SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED)
    assert not svc.can_transition(SubscriptionStatus.COMPLETED, SubscriptionStatus.CANCELLED)
    assert not svc.can_transition(SubscriptionStatus.DRAFT, SubscriptionStatus.ACTIVE)
    with pytest.raises(InvalidState):
        svc.ensure_transition(SubscriptionStatus.CANCELLED, SubscriptionStatus.ACTIVE)
