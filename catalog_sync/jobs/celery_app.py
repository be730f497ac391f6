"""Celery configuration for scheduled sync jobs."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from catalog_sync.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("catalog_sync", broker=broker_url, backend=backend_url, include=["catalog_sync.jobs.sync"])
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "catalog-sync": {
        "task": "catalog_sync.jobs.sync.run_sync",
        "schedule": crontab(minute=0, hour="*/6"),
    },
    "cleanup-orphaned-runs": {
        "task": "catalog_sync.jobs.sync.run_cleanup",
        "schedule": crontab(minute="*/10"),
    },
}


@celery_app.task(name="catalog_sync.jobs.sync.run_sync")
def run_sync_task() -> dict:  # pragma: no cover - executed by worker
    import asyncio

    from catalog_sync.errors import ConflictError
    from catalog_sync.jobs.sync import run_sync

    try:
        outcome = asyncio.run(run_sync())
    except ConflictError as exc:
        return {"status": "skipped", "reason": str(exc)}
    return {"run_id": outcome.run_id, "status": outcome.status, "errors": len(outcome.errors)}


@celery_app.task(name="catalog_sync.jobs.sync.run_cleanup")
def run_cleanup_task() -> dict:  # pragma: no cover - executed by worker
    import asyncio

    from catalog_sync.jobs.sync import run_cleanup

    return {"cleaned_up": asyncio.run(run_cleanup())}
