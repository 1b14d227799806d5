from datetime import time

import pytest

from conftest import ADMIN, OTHER_TEACHER, STUDENT, TEACHER
from tutorhub.core.errors import DuplicateRule, Forbidden, InvalidSlot
from tutorhub.services import availability_rules


def _create(store, *, actor=TEACHER, weekday=2, start="09:00", end="10:00"):
    return store.run(
        availability_rules.create_rule,
        actor=actor,
        teacher_id=TEACHER.profile_id,
        weekday=weekday,
        start_time=start,
        end_time=end,
    )


def test_create_and_list(store) -> None:
    row = _create(store)
    assert (row.weekday, row.start_time, row.end_time, row.is_active) == (2, time(9, 0), time(10, 0), True)
    rows = store.run(availability_rules.list_rules, teacher_id=TEACHER.profile_id)
    assert [r.id for r in rows] == [row.id]


def test_duplicate_rule_is_rejected(store) -> None:
    _create(store)
    with pytest.raises(DuplicateRule):
        _create(store, start="09:00:00", end="10:00:00")


def test_rule_range_must_be_positive(store) -> None:
    with pytest.raises(InvalidSlot):
        _create(store, start="10:00", end="10:00")


def test_only_owner_or_admin_manage_rules(store) -> None:
    with pytest.raises(Forbidden):
        _create(store, actor=OTHER_TEACHER)
    with pytest.raises(Forbidden):
        _create(store, actor=STUDENT)
    assert _create(store, actor=ADMIN).teacher_id == TEACHER.profile_id


def test_update_checks_duplicates_and_delete(store) -> None:
    first = _create(store)
    second = _create(store, start="10:00", end="11:00")

    with pytest.raises(DuplicateRule):
        store.run(availability_rules.update_rule, actor=TEACHER, rule_id=second.id, start_time="09:00", end_time="10:00")

    row = store.run(availability_rules.update_rule, actor=TEACHER, rule_id=second.id, weekday=3, is_active=False)
    assert (row.weekday, row.is_active) == (3, False)

    store.run(availability_rules.delete_rule, actor=TEACHER, rule_id=first.id)
    assert [r.id for r in store.run(availability_rules.list_rules, teacher_id=TEACHER.profile_id)] == [second.id]
