from __future__ import annotations

from datetime import datetime, timedelta, timezone

from folio.cache import CachedValue, cache_delete, cache_get, cache_set

NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)


def test_empty_entry_is_stale():
    assert CachedValue().is_fresh(NOW) is False


def test_get_or_refresh_respects_ttl():
    entry: CachedValue[int] = CachedValue(ttl=timedelta(seconds=10))
    values = iter([1, 2])

    assert entry.get_or_refresh(NOW, lambda: next(values)) == 1
    assert entry.get_or_refresh(NOW + timedelta(seconds=9), lambda: next(values)) == 1
    assert entry.get_or_refresh(NOW + timedelta(seconds=10), lambda: next(values)) == 2
    assert entry.fetched_at == NOW + timedelta(seconds=10)


def test_invalidate_forces_refresh():
    entry = CachedValue(value="old", fetched_at=NOW, ttl=timedelta(minutes=5))
    entry.invalidate()

    assert entry.get_or_refresh(NOW, lambda: "new") == "new"


def test_redis_helpers_are_noops_without_redis():
    assert cache_get("analytics:summary:7d") is None
    assert cache_set("analytics:summary:7d", {"a": 1}) is False
    assert cache_delete("analytics:summary:7d") is False
