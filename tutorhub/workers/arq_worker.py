from __future__ import annotations

from arq.connections import RedisSettings
from arq.cron import cron

from tutorhub.core.config import settings
from tutorhub.core.logging import configure_logging
from tutorhub.db.session import SessionLocal
from tutorhub.services.lifecycle import reconcile_approved_weeks, sync_expired_sessions


async def startup(ctx) -> None:
    configure_logging()


async def sync_expired_sessions_job(ctx) -> dict:
    async with SessionLocal() as db:
        report = await sync_expired_sessions(db)
    return {"updated": report.updated, "skipped": report.skipped, "failures": report.failures}


async def reconcile_approved_weeks_job(ctx) -> dict:
    async with SessionLocal() as db:
        created = await reconcile_approved_weeks(db)
    return {"sessions_created": created}


def _every(minutes: int) -> set[int]:
    step = min(max(int(minutes or 1), 1), 60)
    return set(range(0, 60, step))


class WorkerSettings:
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    on_startup = startup
    functions = [sync_expired_sessions_job, reconcile_approved_weeks_job]
    cron_jobs = [
        cron(sync_expired_sessions_job, minute=_every(settings.sync_interval_minutes)),
        cron(reconcile_approved_weeks_job, minute=_every(settings.sync_interval_minutes * 5)),
    ]
