"""
Storage collaborator for story view counters.

Wraps the four storage contracts the counter needs (insert, conditional
upsert, filtered select, and the ``track_story_view`` stored procedure)
behind a small class so the counting logic can be exercised against any
backend that offers the same methods.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator

from sqlalchemy import delete, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import StoryRecentView, StoryUniqueVisitor, StoryViewCounter

logger = logging.getLogger(__name__)

TRACK_STORY_VIEW_SQL = text(
    "SELECT total_views, unique_views, is_unique "
    "FROM track_story_view(:story_id, :visitor_id)"
)
TRACK_STORY_VIEW_EXISTS_SQL = text(
    "SELECT EXISTS (SELECT 1 FROM pg_proc WHERE proname = 'track_story_view')"
)


class AtomicIncrementUnavailable(Exception):
    """The atomic increment procedure is missing or failed; callers may fall back."""


@dataclass
class ViewCounts:
    """Counter totals for a story, plus whether the triggering view was unique."""
    total_views: int
    unique_views: int
    is_unique: bool = False


class SqlViewStore:
    """SQLAlchemy-backed view counter storage."""

    def __init__(self, db: Session):
        self.db = db

    @property
    def dialect_name(self) -> str:
        return self.db.get_bind().dialect.name

    @contextmanager
    def _write(self) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    # ------------------------------------------------------------------
    # Atomic capability
    # ------------------------------------------------------------------

    def has_atomic_increment(self) -> bool:
        """Whether ``track_story_view`` is provisioned in the connected database."""
        if self.dialect_name != "postgresql":
            return False
        return bool(self.db.execute(TRACK_STORY_VIEW_EXISTS_SQL).scalar())

    def increment_view_atomic(self, story_id: str, visitor_id: str) -> ViewCounts:
        """
        Run ``track_story_view`` which inserts the uniqueness marker and bumps
        both counters in one transaction.

        Raises:
            AtomicIncrementUnavailable: the backend has no such procedure or the call failed
        """
        if self.dialect_name != "postgresql":
            raise AtomicIncrementUnavailable(
                f"track_story_view is not available on dialect '{self.dialect_name}'"
            )

        try:
            row = self.db.execute(
                TRACK_STORY_VIEW_SQL, {"story_id": story_id, "visitor_id": visitor_id}
            ).one_or_none()
            self.db.commit()
        except DBAPIError as e:
            self.db.rollback()
            raise AtomicIncrementUnavailable(str(e)) from e

        if row is None:
            return ViewCounts(total_views=0, unique_views=0, is_unique=False)

        return ViewCounts(
            total_views=int(row.total_views or 0),
            unique_views=int(row.unique_views or 0),
            is_unique=bool(row.is_unique),
        )

    # ------------------------------------------------------------------
    # Primitives used by the non-atomic fallback
    # ------------------------------------------------------------------

    def insert_unique_marker(self, story_id: str, visitor_id: str) -> bool:
        """Insert the (story, visitor) marker. Returns False on a uniqueness conflict."""
        self.db.add(StoryUniqueVisitor(story_id=story_id, visitor_id=visitor_id))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return True

    def get_counter(self, story_id: str) -> ViewCounts | None:
        row = self.db.execute(
            select(StoryViewCounter.total_views, StoryViewCounter.unique_views).where(
                StoryViewCounter.story_id == story_id
            )
        ).one_or_none()
        if row is None:
            return None
        return ViewCounts(total_views=row.total_views or 0, unique_views=row.unique_views or 0)

    def insert_counter(
        self, story_id: str, total_views: int, unique_views: int, viewed_at: datetime
    ) -> bool:
        """Create the counter row. Returns False if another request created it first."""
        self.db.add(
            StoryViewCounter(
                story_id=story_id,
                total_views=total_views,
                unique_views=unique_views,
                last_viewed_at=viewed_at,
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return True

    def update_counter(
        self, story_id: str, total_views: int, unique_views: int, viewed_at: datetime
    ) -> None:
        with self._write():
            self.db.execute(
                update(StoryViewCounter)
                .where(StoryViewCounter.story_id == story_id)
                .values(
                    total_views=total_views,
                    unique_views=unique_views,
                    last_viewed_at=viewed_at,
                )
            )

    # ------------------------------------------------------------------
    # Cooldown window
    # ------------------------------------------------------------------

    def get_last_viewed_at(self, story_id: str, visitor_id: str) -> datetime | None:
        """
        Last counted view for the pair, or None.

        A failed lookup rolls the session back before re-raising so the
        increment that follows does not run inside an aborted transaction.
        """
        try:
            return self.db.execute(
                select(StoryRecentView.last_viewed_at).where(
                    StoryRecentView.story_id == story_id,
                    StoryRecentView.visitor_id == visitor_id,
                )
            ).scalar_one_or_none()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def touch_recent_view(self, story_id: str, visitor_id: str, viewed_at: datetime) -> None:
        """Upsert the visitor's last counted view, keyed by (story_id, visitor_id)."""
        values = {"story_id": story_id, "visitor_id": visitor_id, "last_viewed_at": viewed_at}
        with self._write():
            if self.dialect_name in ("postgresql", "sqlite"):
                insert_fn = pg_insert if self.dialect_name == "postgresql" else sqlite_insert
                stmt = insert_fn(StoryRecentView).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["story_id", "visitor_id"],
                    set_={"last_viewed_at": stmt.excluded.last_viewed_at},
                )
                self.db.execute(stmt)
            else:
                self.db.merge(StoryRecentView(**values))

    def purge_recent_views(self, older_than: datetime) -> int:
        """Delete cooldown rows last touched before ``older_than``. Returns rows deleted."""
        with self._write():
            result = self.db.execute(
                delete(StoryRecentView).where(StoryRecentView.last_viewed_at < older_than)
            )
        return result.rowcount or 0
