"""Credit ledger: pure arithmetic over a subscription's consumable counters.

The ledger never talks to the store. Orchestration reads a ``Credits``
snapshot, asks the ledger for the next snapshot, and writes it back with a
compare-and-set on the values it read.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from tutorhub.core.enums import SubscriptionStatus
from tutorhub.core.errors import InsufficientCredit


@dataclass(frozen=True, slots=True)
class Credits:
    status: str
    sessions_total: int
    sessions_remaining: int
    postpone_total: int
    postpone_remaining: int

    def __post_init__(self) -> None:
        if not 0 <= self.sessions_remaining <= self.sessions_total:
            raise ValueError("sessions_remaining out of bounds")
        if not 0 <= self.postpone_remaining <= self.postpone_total:
            raise ValueError("postpone_remaining out of bounds")

    @classmethod
    def of(cls, row: Any) -> Credits:
        return cls(
            status=str(row.status),
            sessions_total=int(row.sessions_total),
            sessions_remaining=int(row.sessions_remaining),
            postpone_total=int(row.postpone_total),
            postpone_remaining=int(row.postpone_remaining),
        )

    @classmethod
    def opening(cls, *, sessions_per_week: int, weeks_per_cycle: int, postpone_total: int) -> Credits:
        total = int(sessions_per_week) * int(weeks_per_cycle)
        postpones = max(int(postpone_total), 0)
        return cls(
            status=SubscriptionStatus.DRAFT,
            sessions_total=total,
            sessions_remaining=total,
            postpone_total=postpones,
            postpone_remaining=postpones,
        )


@dataclass(frozen=True, slots=True)
class Progress:
    completed: int
    total: int
    percentage: int


def remaining_sessions(sessions_total: int, completed_count: int) -> int:
    return max(int(sessions_total) - int(completed_count), 0)


def decrement_sessions(credits: Credits) -> Credits:
    remaining = max(credits.sessions_remaining - 1, 0)
    status = credits.status
    if remaining == 0 and status != SubscriptionStatus.CANCELLED:
        status = SubscriptionStatus.COMPLETED
    return replace(credits, sessions_remaining=remaining, status=status)


def decrement_postpones(credits: Credits) -> Credits:
    # Consumed at approval time; a request alone never costs a credit.
    if credits.postpone_remaining <= 0:
        raise InsufficientCredit("No postpone credits remaining", postpone_remaining=0)
    return replace(credits, postpone_remaining=credits.postpone_remaining - 1)


def progress(credits: Credits) -> Progress:
    completed = credits.sessions_total - credits.sessions_remaining
    total = credits.sessions_total
    # Half-up rounding: 1 of 8 reads as 13%.
    percentage = (completed * 200 + total) // (2 * total) if total > 0 else 0
    return Progress(completed=completed, total=total, percentage=percentage)
