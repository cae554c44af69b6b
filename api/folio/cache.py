"""Cache helpers: Redis (shared, optional) and an explicit in-process cache entry."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, TypeVar

import redis

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Redis connection
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis | None:
    """
    Get or create Redis client instance.

    Returns None if REDIS_URL is not configured or the connection fails.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    redis_url = os.getenv("REDIS_URL", "").strip()
    if not redis_url:
        return None

    try:
        client = redis.from_url(redis_url, decode_responses=True, socket_timeout=2)
        # Test connection
        client.ping()
        logger.info("Redis cache connected successfully")
        _redis_client = client
        return _redis_client
    except redis.RedisError as e:
        logger.warning(f"Redis cache unavailable: {e}. Continuing without cache.")
        return None


def cache_get(key: str) -> Any | None:
    """
    Retrieve a cached value by key.

    Returns:
        Cached value if found, None otherwise
    """
    client = get_redis_client()
    if not client:
        return None

    try:
        value = client.get(key)
        if value is None:
            return None

        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value
    except redis.RedisError as e:
        logger.warning(f"Cache get error for key '{key}': {e}")
        return None


def cache_set(key: str, value: Any, ttl: int = 300) -> bool:
    """
    Set a cached value with TTL.

    Args:
        key: Cache key
        value: Value to cache (will be JSON-serialized if dict/list)
        ttl: Time to live in seconds (default: 300 = 5 minutes)

    Returns:
        True if successful, False otherwise
    """
    client = get_redis_client()
    if not client:
        return False

    try:
        if isinstance(value, (dict, list)):
            serialized = json.dumps(value)
        else:
            serialized = str(value)

        client.setex(key, ttl, serialized)
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache set error for key '{key}': {e}")
        return False


def cache_delete(key: str) -> bool:
    """Delete a specific cache key. Returns True if deleted."""
    client = get_redis_client()
    if not client:
        return False

    try:
        return bool(client.delete(key))
    except redis.RedisError as e:
        logger.warning(f"Cache delete error for key '{key}': {e}")
        return False


@dataclass
class CachedValue(Generic[T]):
    """
    A single cached value with its fetch time and TTL.

    Expiry is decided by the ``now`` the caller passes in, so the entry holds
    no clock of its own.
    """
    value: T | None = None
    fetched_at: datetime | None = None
    ttl: timedelta = timedelta(minutes=5)

    def is_fresh(self, now: datetime) -> bool:
        if self.fetched_at is None:
            return False
        return now - self.fetched_at < self.ttl

    def get_or_refresh(self, now: datetime, refresh: Callable[[], T]) -> T:
        """Return the cached value, calling ``refresh`` first if it has expired."""
        if not self.is_fresh(now):
            self.value = refresh()
            self.fetched_at = now
        return self.value

    def invalidate(self) -> None:
        self.value = None
        self.fetched_at = None
