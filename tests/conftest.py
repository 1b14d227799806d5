from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, time

import pytest

import tutorhub.models  # noqa: F401
from tutorhub.core.enums import Role, SessionStatus, SubscriptionStatus
from tutorhub.db.base import Base
from tutorhub.db.session import build_engine, build_sessionmaker
from tutorhub.models.availability import AvailabilityRule
from tutorhub.models.catalog import Course, Package
from tutorhub.models.session import TutoringSession
from tutorhub.models.subscription import Subscription
from tutorhub.services.auth import Actor

STUDENT = Actor(profile_id=10, role=Role.STUDENT)
OTHER_STUDENT = Actor(profile_id=11, role=Role.STUDENT)
TEACHER = Actor(profile_id=20, role=Role.TEACHER)
OTHER_TEACHER = Actor(profile_id=21, role=Role.TEACHER)
ADMIN = Actor(profile_id=1, role=Role.ADMIN)

_slugs = itertools.count(1)


class Store:
    """Runs one coroutine per call in a fresh event loop and session."""

    def __init__(self, engine) -> None:
        self.engine = engine
        self.sessionmaker = build_sessionmaker(engine)

    def run(self, fn, *args, **kwargs):
        async def _go():
            async with self.sessionmaker() as db:
                return await fn(db, *args, **kwargs)

        return asyncio.run(_go())

    def get(self, model, pk):
        async def _get(db):
            row = await db.get(model, pk)
            if row is not None:
                await db.refresh(row)
            return row

        return self.run(_get)


@pytest.fixture
def store(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'engine.db'}")

    async def _create() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_create())
    yield Store(engine)
    asyncio.run(engine.dispose())


async def seed_catalog(db, *, sessions_per_week: int = 2, weeks_per_cycle: int = 4, active: bool = True):
    n = next(_slugs)
    course = Course(label=f"Course {n}", slug=f"course-{n}", is_active=True)
    package = Package(
        label=f"Package {n}",
        slug=f"package-{n}",
        sessions_per_week=sessions_per_week,
        weeks_per_cycle=weeks_per_cycle,
        is_active=active,
    )
    db.add_all([course, package])
    await db.commit()
    return course.id, package.id


async def seed_subscription(
    db,
    *,
    status: SubscriptionStatus = SubscriptionStatus.TEACHER_ASSIGNED,
    student_id: int = STUDENT.profile_id,
    teacher_id: int | None = TEACHER.profile_id,
    sessions_per_week: int = 2,
    weeks_per_cycle: int = 4,
    postpone_total: int = 2,
    postpone_remaining: int | None = None,
) -> int:
    course_id, package_id = await seed_catalog(
        db,
        sessions_per_week=sessions_per_week,
        weeks_per_cycle=weeks_per_cycle,
    )
    total = sessions_per_week * weeks_per_cycle
    row = Subscription(
        student_id=student_id,
        teacher_id=teacher_id,
        course_id=course_id,
        package_id=package_id,
        status=status,
        weeks_total=weeks_per_cycle,
        sessions_total=total,
        sessions_remaining=total,
        postpone_total=postpone_total,
        postpone_remaining=postpone_total if postpone_remaining is None else postpone_remaining,
    )
    db.add(row)
    await db.commit()
    return row.id


async def seed_rule(db, *, teacher_id: int = TEACHER.profile_id, weekday: int, start: time, end: time) -> int:
    row = AvailabilityRule(teacher_id=teacher_id, weekday=weekday, start_time=start, end_time=end, is_active=True)
    db.add(row)
    await db.commit()
    return row.id


async def seed_session(
    db,
    *,
    subscription_id: int,
    start_at: datetime,
    end_at: datetime,
    status: SessionStatus = SessionStatus.SCHEDULED,
    join_url: str | None = None,
) -> int:
    row = TutoringSession(
        subscription_id=subscription_id,
        start_at=start_at,
        end_at=end_at,
        status=status,
        zoom_join_url=join_url,
    )
    db.add(row)
    await db.commit()
    return row.id
