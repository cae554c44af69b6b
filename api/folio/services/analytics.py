"""
Dashboard analytics aggregation.

Folds raw page-view events into overview totals, a daily timeline, and
ranked breakdowns by page, referrer, device, browser, OS and geography.
Aggregation is a single grouping pass followed by a ranking pass over the
groups; it runs on demand and the result is cached for a few minutes.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable

from sqlalchemy.orm import Session

from .. import settings
from ..cache import CachedValue, cache_get, cache_set

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
DIRECT = "Direct"

TOP_PAGES_LIMIT = 10
TOP_REFERRERS_LIMIT = 10
TOP_COUNTRIES_LIMIT = 10
TOP_CITIES_LIMIT = 10
TOP_BROWSERS_LIMIT = 5
TOP_OS_LIMIT = 5


class TimeRange(str, Enum):
    """Dashboard time window."""
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_90_DAYS = "90d"
    ALL = "all"

    def start(self, now: datetime) -> datetime | None:
        """Earliest event timestamp included, or None for all time."""
        days = {"7d": 7, "30d": 30, "90d": 90}.get(self.value)
        if days is None:
            return None
        return now - timedelta(days=days)


@dataclass
class Overview:
    total_visits: int = 0
    unique_visitors: int = 0
    unique_sessions: int = 0
    avg_session_duration: int = 0


@dataclass
class TimelinePoint:
    date: str  # ISO format date string
    visits: int
    unique_visitors: int


@dataclass
class PageStat:
    path: str
    title: str
    visits: int
    unique_visitors: int


@dataclass
class ReferrerStat:
    source: str
    visits: int
    unique_visitors: int


@dataclass
class BreakdownItem:
    """Count and share of total visits for one value of a dimension."""
    value: str
    count: int
    percentage: int


@dataclass
class CountryStat:
    country: str
    visits: int
    percentage: int
    cities: list[str]


@dataclass
class CityStat:
    city: str
    visits: int
    percentage: int


@dataclass
class AnalyticsSummary:
    overview: Overview = field(default_factory=Overview)
    visits_timeline: list[TimelinePoint] = field(default_factory=list)
    top_pages: list[PageStat] = field(default_factory=list)
    top_referrers: list[ReferrerStat] = field(default_factory=list)
    device_breakdown: list[BreakdownItem] = field(default_factory=list)
    browser_breakdown: list[BreakdownItem] = field(default_factory=list)
    os_breakdown: list[BreakdownItem] = field(default_factory=list)
    geo_breakdown: list[CountryStat] = field(default_factory=list)
    top_cities: list[CityStat] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to the dashboard's JSON shape."""
        return {
            "overview": {
                "totalVisits": self.overview.total_visits,
                "uniqueVisitors": self.overview.unique_visitors,
                "uniqueSessions": self.overview.unique_sessions,
                "avgSessionDuration": self.overview.avg_session_duration,
            },
            "visitsTimeline": [
                {"date": p.date, "visits": p.visits, "unique_visitors": p.unique_visitors}
                for p in self.visits_timeline
            ],
            "topPages": [
                {"path": p.path, "title": p.title, "visits": p.visits, "unique_visitors": p.unique_visitors}
                for p in self.top_pages
            ],
            "topReferrers": [
                {"source": r.source, "visits": r.visits, "unique_visitors": r.unique_visitors}
                for r in self.top_referrers
            ],
            "deviceBreakdown": [
                {"device": b.value, "count": b.count, "percentage": b.percentage}
                for b in self.device_breakdown
            ],
            "browserBreakdown": [
                {"browser": b.value, "count": b.count, "percentage": b.percentage}
                for b in self.browser_breakdown
            ],
            "osBreakdown": [
                {"os": b.value, "count": b.count, "percentage": b.percentage}
                for b in self.os_breakdown
            ],
            "geoBreakdown": [
                {"country": c.country, "visits": c.visits, "percentage": c.percentage, "cities": c.cities}
                for c in self.geo_breakdown
            ],
            "topCities": [
                {"city": c.city, "visits": c.visits, "percentage": c.percentage}
                for c in self.top_cities
            ],
        }


def _get(event: Any, name: str) -> Any:
    if isinstance(event, dict):
        return event.get(name)
    return getattr(event, name, None)


def _event_date(created_at: datetime | str) -> str:
    if isinstance(created_at, str):
        created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at.astimezone(timezone.utc).date().isoformat()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percentage(count: int, total: int) -> int:
    """Share of ``total`` as a whole percent; 0 when there is nothing to divide by."""
    if total <= 0:
        return 0
    return _round_half_up(count / total * 100)


def _ranked(items: list, key: str, limit: int | None = None) -> list:
    # sorted() is stable: equal counts keep first-seen order
    ranked = sorted(items, key=lambda item: -getattr(item, key))
    return ranked[:limit] if limit is not None else ranked


def _breakdown(counts: dict[str, int], total: int, limit: int | None = None) -> list[BreakdownItem]:
    items = [
        BreakdownItem(value=value, count=count, percentage=percentage(count, total))
        for value, count in counts.items()
    ]
    return _ranked(items, "count", limit)


def aggregate_events(events: Iterable[Any]) -> AnalyticsSummary:
    """
    Aggregate raw page-view events into dashboard metrics.

    Events may be ORM rows or dicts. Missing dimension values are bucketed
    under "Unknown" (or "Direct" for referrers) so every breakdown sums to
    the total visit count.
    """
    total = 0
    duration_sum = 0
    visitors: set[str] = set()
    sessions: set[str] = set()

    by_date: dict[str, dict] = {}
    by_page: dict[str, dict] = {}
    by_referrer: dict[str, dict] = {}
    by_device: dict[str, int] = {}
    by_browser: dict[str, int] = {}
    by_os: dict[str, int] = {}
    by_country: dict[str, dict] = {}
    by_city: dict[str, int] = {}

    # ===== GROUPING PASS =====

    for event in events:
        total += 1
        visitor_id = _get(event, "visitor_id")
        session_id = _get(event, "session_id")
        duration_sum += _get(event, "duration") or 0
        if visitor_id:
            visitors.add(visitor_id)
        if session_id:
            sessions.add(session_id)

        day = by_date.setdefault(_event_date(_get(event, "created_at")), {"visits": 0, "visitors": set()})
        day["visits"] += 1

        path = _get(event, "page_path") or UNKNOWN
        page = by_page.setdefault(
            path, {"title": _get(event, "page_title") or path, "visits": 0, "visitors": set()}
        )
        page["visits"] += 1

        source = _get(event, "referrer_domain") or DIRECT
        referrer = by_referrer.setdefault(source, {"visits": 0, "visitors": set()})
        referrer["visits"] += 1

        if visitor_id:
            day["visitors"].add(visitor_id)
            page["visitors"].add(visitor_id)
            referrer["visitors"].add(visitor_id)

        device = _get(event, "device_type") or UNKNOWN
        by_device[device] = by_device.get(device, 0) + 1
        browser = _get(event, "browser") or UNKNOWN
        by_browser[browser] = by_browser.get(browser, 0) + 1
        os_name = _get(event, "os") or UNKNOWN
        by_os[os_name] = by_os.get(os_name, 0) + 1

        country_name = _get(event, "country")
        city_name = _get(event, "city")
        country = by_country.setdefault(country_name or UNKNOWN, {"visits": 0, "cities": {}})
        country["visits"] += 1
        if city_name:
            # dict as an insertion-ordered set
            country["cities"][city_name] = None

        city_key = f"{city_name}, {country_name or UNKNOWN}" if city_name else UNKNOWN
        by_city[city_key] = by_city.get(city_key, 0) + 1

    # ===== RANKING PASS =====

    overview = Overview(
        total_visits=total,
        unique_visitors=len(visitors),
        unique_sessions=len(sessions),
        avg_session_duration=_round_half_up(duration_sum / total) if total else 0,
    )

    timeline = [
        TimelinePoint(date=date_str, visits=data["visits"], unique_visitors=len(data["visitors"]))
        for date_str, data in sorted(by_date.items())
    ]

    pages = _ranked(
        [
            PageStat(path=path, title=data["title"], visits=data["visits"], unique_visitors=len(data["visitors"]))
            for path, data in by_page.items()
        ],
        "visits",
        TOP_PAGES_LIMIT,
    )

    referrers = _ranked(
        [
            ReferrerStat(source=source, visits=data["visits"], unique_visitors=len(data["visitors"]))
            for source, data in by_referrer.items()
        ],
        "visits",
        TOP_REFERRERS_LIMIT,
    )

    countries = _ranked(
        [
            CountryStat(
                country=name,
                visits=data["visits"],
                percentage=percentage(data["visits"], total),
                cities=list(data["cities"]),
            )
            for name, data in by_country.items()
        ],
        "visits",
        TOP_COUNTRIES_LIMIT,
    )

    cities = _ranked(
        [
            CityStat(city=name, visits=count, percentage=percentage(count, total))
            for name, count in by_city.items()
        ],
        "visits",
        TOP_CITIES_LIMIT,
    )

    return AnalyticsSummary(
        overview=overview,
        visits_timeline=timeline,
        top_pages=pages,
        top_referrers=referrers,
        device_breakdown=_breakdown(by_device, total),
        browser_breakdown=_breakdown(by_browser, total, TOP_BROWSERS_LIMIT),
        os_breakdown=_breakdown(by_os, total, TOP_OS_LIMIT),
        geo_breakdown=countries,
        top_cities=cities,
    )


class AnalyticsService:
    """
    Service for computing and caching dashboard analytics.

    Summaries are cached in Redis when it is configured, otherwise in the
    ``local_cache`` mapping handed in by the caller.
    """

    def __init__(self, db: Session, local_cache: dict[str, CachedValue] | None = None):
        self.db = db
        self.local_cache = local_cache

    def get_summary(self, time_range: TimeRange, now: datetime) -> dict:
        """
        Get the dashboard summary for a time range.

        Storage errors propagate; a partially computed summary is never returned.
        """
        ttl = settings.ANALYTICS_CACHE_TTL
        if ttl <= 0:
            return self._compute(time_range, now)

        cache_key = f"analytics:summary:{time_range.value}"
        cached = cache_get(cache_key)
        if cached:
            logger.debug(f"Analytics cache hit for {cache_key}")
            return cached

        if self.local_cache is not None:
            entry = self.local_cache.setdefault(cache_key, CachedValue(ttl=timedelta(seconds=ttl)))
            summary = entry.get_or_refresh(now, lambda: self._compute(time_range, now))
        else:
            summary = self._compute(time_range, now)

        cache_set(cache_key, summary, ttl=ttl)
        return summary

    def _compute(self, time_range: TimeRange, now: datetime) -> dict:
        from .. import models

        logger.debug(f"Computing analytics summary for range {time_range.value}")
        query = self.db.query(models.AnalyticsEvent).filter(
            models.AnalyticsEvent.event_type == "page_view"
        )
        start = time_range.start(now)
        if start is not None:
            query = query.filter(models.AnalyticsEvent.created_at >= start)

        events = query.order_by(models.AnalyticsEvent.created_at.asc()).all()
        return aggregate_events(events).to_dict()
