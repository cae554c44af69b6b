from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)

from .db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalyticsEvent(Base):
    """Raw page-view telemetry event (append-only)."""

    __tablename__ = "analytics_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_type = Column(
        String(32), nullable=False, index=True
    )  # page_view, click, form_submit, custom
    page_path = Column(String(500), nullable=True)
    page_title = Column(String(500), nullable=True)

    # Visitor identification (opaque client tokens, no PII)
    visitor_id = Column(String(64), nullable=True, index=True)
    session_id = Column(String(64), nullable=True)
    ip_hash = Column(String(64), nullable=True)  # SHA256 hash of client IP

    # Acquisition
    referrer = Column(Text, nullable=True)
    referrer_domain = Column(String(255), nullable=True)
    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)

    # Device & geographic information
    device_type = Column(String(20), nullable=True)  # desktop, mobile, tablet
    browser = Column(String(64), nullable=True)
    os = Column(String(64), nullable=True)
    country = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)

    duration = Column(Integer, nullable=True)  # Seconds spent on the page
    event_metadata = Column("metadata", JSON, nullable=True)  # {region, latitude, longitude, ...}

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        index=True,
    )

    __table_args__ = (
        Index("ix_analytics_events_type_created", event_type, created_at),
    )


class StoryViewCounter(Base):
    """Durable per-story view counters."""

    __tablename__ = "story_views"

    story_id = Column(String(255), primary_key=True)
    total_views = Column(Integer, nullable=False, default=0, server_default="0")
    unique_views = Column(Integer, nullable=False, default=0, server_default="0")
    last_viewed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("total_views >= 0", name="ck_story_views_total_non_negative"),
        CheckConstraint("unique_views >= 0", name="ck_story_views_unique_non_negative"),
        CheckConstraint("unique_views <= total_views", name="ck_story_views_unique_le_total"),
    )


class StoryUniqueVisitor(Base):
    """Existence-only marker: first successful insert means a new visitor for the story."""

    __tablename__ = "story_unique_visitors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    story_id = Column(String(255), nullable=False)
    visitor_id = Column(String(64), nullable=False)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("story_id", "visitor_id", name="uq_story_unique_visitors_story_visitor"),
    )


class StoryRecentView(Base):
    """Last counted view per (story, visitor); only used for the cooldown window."""

    __tablename__ = "story_recent_views"

    story_id = Column(String(255), primary_key=True)
    visitor_id = Column(String(64), primary_key=True)
    last_viewed_at = Column(DateTime(timezone=True), nullable=False, index=True)
