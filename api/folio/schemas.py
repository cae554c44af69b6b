from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# HEALTH
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok"] = "ok"
    uptime_s: float | None = None


class ReadinessResponse(BaseModel):
    """Database reachability and whether the atomic view counter is provisioned."""

    status: Literal["ok", "unavailable"]
    database: bool
    atomic_increment: bool


# ============================================================================
# STORY VIEWS
# ============================================================================


class StoryViewsResponse(BaseModel):
    """Current view totals for a story."""

    model_config = ConfigDict(populate_by_name=True)

    story_id: str
    total_views: int = Field(alias="totalViews")
    unique_views: int = Field(alias="uniqueViews")


class TrackViewResponse(StoryViewsResponse):
    """Result of a track-view request."""

    is_unique: bool = Field(alias="isUnique")
    throttled: bool


# ============================================================================
# ANALYTICS EVENTS
# ============================================================================


class AnalyticsEventIn(BaseModel):
    """Client-reported analytics event."""

    event_type: Literal["page_view", "click", "form_submit", "custom"] = "page_view"
    page_path: str = Field(..., min_length=1, max_length=500)
    page_title: str | None = Field(None, max_length=500)
    visitor_id: str | None = Field(None, max_length=64)
    session_id: str | None = Field(None, max_length=64)
    referrer: str | None = Field(None, max_length=2000)
    referrer_domain: str | None = Field(None, max_length=255)
    utm_source: str | None = Field(None, max_length=255)
    utm_medium: str | None = Field(None, max_length=255)
    utm_campaign: str | None = Field(None, max_length=255)
    device_type: str | None = Field(None, max_length=20)
    browser: str | None = Field(None, max_length=64)
    os: str | None = Field(None, max_length=64)
    duration: int | None = Field(None, ge=0)
    user_agent: str | None = Field(None, max_length=1000)
    screen_width: int | None = Field(None, ge=0)
    screen_height: int | None = Field(None, ge=0)
    metadata: dict[str, Any] | None = None


class TrackEventResponse(BaseModel):
    success: bool = True
