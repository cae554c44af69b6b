from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any

from celery import Celery

from . import settings

logger = logging.getLogger(__name__)

DEFAULT_REDIS = "redis://cache:6379/0"

celery_app = Celery(
    "folio",
    broker=os.getenv("CELERY_BROKER_URL", DEFAULT_REDIS),
    backend=os.getenv("CELERY_RESULT_BACKEND", DEFAULT_REDIS),
)

celery_app.conf.update(
    task_default_queue="default",
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=3600,
    worker_max_tasks_per_child=100,
    beat_schedule={
        "purge-recent-views": {
            "task": "folio.tasks.purge_recent_views",
            "schedule": 3600.0,  # Every hour (in seconds)
        },
    },
    timezone="UTC",
)


def purge_recent_views_sync(now: datetime | None = None) -> dict[str, Any]:
    """
    Delete cooldown-window rows older than RECENT_VIEW_RETENTION_HOURS.

    story_recent_views only feeds the cooldown check, so dropping stale rows
    never touches the counters.
    """
    from .db import SessionLocal
    from .services.view_store import SqlViewStore

    if now is None:
        now = datetime.now(timezone.utc)
    # Never purge rows that could still be inside a cooldown window
    retention = max(
        timedelta(hours=settings.RECENT_VIEW_RETENTION_HOURS),
        timedelta(seconds=settings.STORY_VIEW_COOLDOWN_SECONDS),
    )
    cutoff = now - retention

    db = SessionLocal()
    try:
        deleted = SqlViewStore(db).purge_recent_views(cutoff)
    finally:
        db.close()

    logger.info(f"Purged {deleted} recent view rows older than {cutoff.isoformat()}")
    return {"deleted": deleted, "cutoff": cutoff.isoformat()}


@celery_app.task(name="folio.tasks.purge_recent_views", bind=True)
def purge_recent_views(self) -> dict[str, Any]:
    """Celery task wrapper for purge_recent_views_sync."""
    return purge_recent_views_sync()
