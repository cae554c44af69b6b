"""
Story view counting service.

A counted view goes through three steps:

1. Cooldown gate - a visitor who was counted for the same story less than
   ``cooldown_seconds`` ago is throttled: nothing changes, but the current
   totals are still returned.
2. Increment - ``track_story_view`` in the database does the uniqueness
   check and both counter updates in one transaction. If the procedure is
   unavailable the non-atomic fallback below is used instead.
3. Recent-view window - the visitor's last counted view is upserted. This
   runs after the counters are persisted and its failure is only logged.

The fallback is a read-then-write sequence and can lose updates when two
requests for the same story race. It only runs when the procedure is
missing (e.g. the migration has not been applied) and its numbers are
best-effort.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from .view_store import AtomicIncrementUnavailable, ViewCounts

if TYPE_CHECKING:
    from .view_store import SqlViewStore

logger = logging.getLogger(__name__)

MIN_COOLDOWN_SECONDS = 1
# Width of the story_id columns
MAX_STORY_ID_LENGTH = 255


class ViewTrackingError(Exception):
    """Both the atomic increment and the fallback failed."""


@dataclass
class TrackResult:
    """Outcome of a track-view request."""
    story_id: str
    total_views: int
    unique_views: int
    is_unique: bool
    throttled: bool
    used_fallback: bool = False


def normalize_story_id(story_id: str | None) -> str:
    """Strip the id and check it fits the counter tables.

    Raises:
        ValueError: the id is empty or longer than MAX_STORY_ID_LENGTH
    """
    story_id = (story_id or "").strip()
    if not story_id:
        raise ValueError("Missing story id")
    if len(story_id) > MAX_STORY_ID_LENGTH:
        raise ValueError("Story id too long")
    return story_id


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every timestamp we write is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_within_cooldown(
    store: SqlViewStore,
    story_id: str,
    visitor_id: str,
    now: datetime,
    cooldown_seconds: int,
) -> bool:
    """
    Return True if the visitor was counted for this story less than
    ``cooldown_seconds`` ago.

    A missing record or a failed lookup counts as "not throttled".
    """
    cooldown = max(cooldown_seconds, MIN_COOLDOWN_SECONDS)
    try:
        last_viewed_at = store.get_last_viewed_at(story_id, visitor_id)
    except SQLAlchemyError as e:
        logger.warning(f"Cooldown lookup failed for story {story_id}: {e}")
        return False

    if last_viewed_at is None:
        return False

    elapsed = (_as_utc(now) - _as_utc(last_viewed_at)).total_seconds()
    return elapsed < cooldown


def fallback_increment(
    store: SqlViewStore, story_id: str, visitor_id: str, now: datetime
) -> ViewCounts:
    """
    Non-atomic increment used when ``track_story_view`` is unavailable.

    Correct under sequential load only: the read and the write below are
    separate statements, so concurrent calls for one story can lose updates.
    """
    is_unique = store.insert_unique_marker(story_id, visitor_id)
    unique_step = 1 if is_unique else 0

    existing = store.get_counter(story_id)
    if existing is None:
        if store.insert_counter(story_id, 1, unique_step, now):
            return ViewCounts(total_views=1, unique_views=unique_step, is_unique=is_unique)
        # Another request created the row between our read and insert
        existing = store.get_counter(story_id)
        if existing is None:
            raise ViewTrackingError(f"Counter row for story {story_id} vanished during fallback")

    next_total = existing.total_views + 1
    next_unique = existing.unique_views + unique_step
    store.update_counter(story_id, next_total, next_unique, now)
    return ViewCounts(total_views=next_total, unique_views=next_unique, is_unique=is_unique)


def increment_view(
    store: SqlViewStore, story_id: str, visitor_id: str, now: datetime
) -> tuple[ViewCounts, bool]:
    """
    Increment the story's counters, preferring the atomic procedure.

    Returns:
        Tuple of (counts, used_fallback)

    Raises:
        ViewTrackingError: the fallback failed as well
    """
    try:
        return store.increment_view_atomic(story_id, visitor_id), False
    except AtomicIncrementUnavailable as e:
        logger.error(f"track_story_view failed for story {story_id}: {e}")

    logger.warning(f"Using non-atomic fallback to count view for story {story_id}")
    try:
        return fallback_increment(store, story_id, visitor_id, now), True
    except (SQLAlchemyError, ViewTrackingError) as e:
        logger.error(f"Fallback view count failed for story {story_id}: {e}", exc_info=True)
        raise ViewTrackingError(f"Failed to track view for story {story_id}") from e


def track_story_view(
    store: SqlViewStore,
    story_id: str,
    visitor_id: str,
    now: datetime,
    cooldown_seconds: int,
) -> TrackResult:
    """
    Count a view of ``story_id`` by ``visitor_id`` unless it falls inside the cooldown.

    Raises:
        ValueError: story_id is empty or too long
        ViewTrackingError: counters could not be updated
        SQLAlchemyError: totals for a throttled view could not be read
    """
    story_id = normalize_story_id(story_id)

    if is_within_cooldown(store, story_id, visitor_id, now, cooldown_seconds):
        current = store.get_counter(story_id) or ViewCounts(total_views=0, unique_views=0)
        logger.debug(f"Throttled view for story {story_id}")
        return TrackResult(
            story_id=story_id,
            total_views=current.total_views,
            unique_views=current.unique_views,
            is_unique=False,
            throttled=True,
        )

    counts, used_fallback = increment_view(store, story_id, visitor_id, now)

    try:
        store.touch_recent_view(story_id, visitor_id, now)
    except SQLAlchemyError as e:
        logger.warning(f"Failed to update recent view window for story {story_id}: {e}", exc_info=True)

    logger.info(
        f"Counted view for story {story_id}: total={counts.total_views}, "
        f"unique={counts.unique_views}, is_unique={counts.is_unique}, fallback={used_fallback}"
    )

    return TrackResult(
        story_id=story_id,
        total_views=counts.total_views,
        unique_views=counts.unique_views,
        is_unique=counts.is_unique,
        throttled=False,
        used_fallback=used_fallback,
    )


def get_story_views(store: SqlViewStore, story_id: str) -> ViewCounts:
    """Read-only totals for a story (zeros when it has never been viewed)."""
    story_id = normalize_story_id(story_id)
    return store.get_counter(story_id) or ViewCounts(total_views=0, unique_views=0)
