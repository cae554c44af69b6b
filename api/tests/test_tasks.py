from __future__ import annotations

from datetime import datetime, timedelta, timezone

from folio import models, settings, tasks

NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)


def _recent_view(story_id, visitor_id, last_viewed_at):
    return models.StoryRecentView(
        story_id=story_id, visitor_id=visitor_id, last_viewed_at=last_viewed_at
    )


def test_purge_recent_views_sync(db, monkeypatch):
    monkeypatch.setattr(settings, "RECENT_VIEW_RETENTION_HOURS", 24)
    db.add_all(
        [
            _recent_view("r1", "stale-visitor", NOW - timedelta(hours=30)),
            _recent_view("r1", "fresh-visitor", NOW - timedelta(hours=1)),
        ]
    )
    db.add(models.StoryViewCounter(story_id="r1", total_views=2, unique_views=2))
    db.commit()

    result = tasks.purge_recent_views_sync(now=NOW)

    assert result["deleted"] == 1
    assert result["cutoff"] == (NOW - timedelta(hours=24)).isoformat()
    db.expire_all()
    remaining = [row.visitor_id for row in db.query(models.StoryRecentView).all()]
    assert remaining == ["fresh-visitor"]
    # Counters are never touched by the purge
    assert db.get(models.StoryViewCounter, "r1").total_views == 2


def test_retention_never_shorter_than_cooldown(db, monkeypatch):
    monkeypatch.setattr(settings, "RECENT_VIEW_RETENTION_HOURS", 0)
    monkeypatch.setattr(settings, "STORY_VIEW_COOLDOWN_SECONDS", 3600)
    db.add(_recent_view("r1", "inside-cooldown", NOW - timedelta(minutes=30)))
    db.commit()

    result = tasks.purge_recent_views_sync(now=NOW)

    assert result["deleted"] == 0
