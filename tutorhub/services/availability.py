"""Availability matching.

A teacher's weekly rules are shared by every subscription and every week of a
subscription, so the matcher only ever compares literal wall-clock values:
calendar date plus hour and minute. See ``tutorhub.core.wallclock``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Protocol

from tutorhub.core.wallclock import combine, minute_of


class RuleLike(Protocol):
    weekday: int
    start_time: Any
    end_time: Any
    is_active: bool


@dataclass(frozen=True, slots=True)
class BookedSlot:
    week_index: int | None
    start_at: datetime
    end_at: datetime


@dataclass(frozen=True, slots=True)
class Candidate:
    start_at: datetime
    end_at: datetime
    taken: bool
    week_index: int | None = None


def weekday_of(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


def normalize_time(value: time | str) -> time:
    if isinstance(value, time):
        return time(value.hour, value.minute)
    text = str(value or "").strip()[:5]
    hours, _, minutes = text.partition(":")
    return time(int(hours), int(minutes or 0))


def candidate_windows(rules: Iterable[RuleLike], on_date: date) -> list[tuple[time, time]]:
    weekday = weekday_of(on_date)
    windows = {
        (normalize_time(rule.start_time), normalize_time(rule.end_time))
        for rule in rules
        if rule.is_active and int(rule.weekday) == weekday
    }
    return sorted(windows)


def _same_slot(slot: BookedSlot, on_date: date, start_time: time, end_time: time) -> bool:
    return (
        slot.start_at.date() == on_date
        and minute_of(slot.start_at) == normalize_time(start_time)
        and minute_of(slot.end_at) == normalize_time(end_time)
    )


def is_taken(booked: Iterable[BookedSlot], on_date: date, start_time: time, end_time: time) -> bool:
    return any(_same_slot(slot, on_date, start_time, end_time) for slot in booked)


def which_week(booked: Iterable[BookedSlot], on_date: date, start_time: time, end_time: time) -> int | None:
    weeks = [
        slot.week_index
        for slot in booked
        if slot.week_index is not None and _same_slot(slot, on_date, start_time, end_time)
    ]
    return min(weeks) if weeks else None


def annotate_candidates(
    rules: Iterable[RuleLike],
    on_date: date,
    booked: Iterable[BookedSlot],
) -> list[Candidate]:
    booked = list(booked)
    out: list[Candidate] = []
    for start_time, end_time in candidate_windows(rules, on_date):
        out.append(
            Candidate(
                start_at=combine(on_date, start_time),
                end_at=combine(on_date, end_time),
                taken=is_taken(booked, on_date, start_time, end_time),
                week_index=which_week(booked, on_date, start_time, end_time),
            )
        )
    return out


def matches_window(rules: Iterable[RuleLike], start_at: datetime, end_at: datetime) -> bool:
    if start_at.date() != end_at.date():
        return False
    window = (minute_of(start_at), minute_of(end_at))
    return window in candidate_windows(rules, start_at.date())


def find_duplicate_rule(
    rules: Iterable[Any],
    *,
    weekday: int,
    start_time: time | str,
    end_time: time | str,
    exclude_id: int | None = None,
) -> Any | None:
    start = normalize_time(start_time)
    end = normalize_time(end_time)
    for rule in rules:
        if exclude_id is not None and rule.id == exclude_id:
            continue
        if (
            int(rule.weekday) == int(weekday)
            and normalize_time(rule.start_time) == start
            and normalize_time(rule.end_time) == end
        ):
            return rule
    return None
