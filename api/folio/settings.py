"""Centralized environment-driven settings.

Keep this module lightweight: stdlib only, no app imports, to avoid circular deps.
"""

from __future__ import annotations

import os
from pathlib import Path


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


ENVIRONMENT: str = os.getenv("ENV", "development").lower()
IS_PRODUCTION: bool = ENVIRONMENT == "production"

# Minimum seconds between two counted views of the same story by the same visitor.
# Configured via .env: STORY_VIEW_COOLDOWN_SECONDS=60
STORY_VIEW_COOLDOWN_SECONDS: int = max(_int_env("STORY_VIEW_COOLDOWN_SECONDS", 60) or 60, 1)

VISITOR_COOKIE_NAME: str = os.getenv("VISITOR_COOKIE_NAME", "story_visitor_id")
VISITOR_COOKIE_MAX_AGE: int = _int_env("VISITOR_COOKIE_MAX_AGE", 60 * 60 * 24 * 365 * 2)

# Dashboard summary cache TTL in seconds (<= 0 disables caching)
ANALYTICS_CACHE_TTL: int = _int_env("ANALYTICS_CACHE_TTL", 300)

# Fallback HTTP geolocation service; "{ip}" is substituted. Empty disables it.
GEO_LOOKUP_URL: str = os.getenv(
    "GEO_LOOKUP_URL",
    "http://ip-api.com/json/{ip}?fields=status,country,countryCode,regionName,city,lat,lon,timezone",
)
GEO_LOOKUP_TIMEOUT_SECONDS: float = _float_env("GEO_LOOKUP_TIMEOUT_SECONDS", 2.0)
GEOIP_DB_PATH: str = os.getenv(
    "GEOIP_DB_PATH",
    str(Path(__file__).parent / "geoip" / "GeoLite2-City.mmdb"),
)

# Rows in story_recent_views older than this are purged by the worker.
RECENT_VIEW_RETENTION_HOURS: int = _int_env("RECENT_VIEW_RETENTION_HOURS", 24)

RUN_MIGRATIONS_ON_STARTUP: bool = _bool_env("RUN_MIGRATIONS_ON_STARTUP", True)

# PostgreSQL statement timeout for request-path queries (milliseconds, 0 disables)
DB_STATEMENT_TIMEOUT_MS: int = _int_env("DB_STATEMENT_TIMEOUT_MS", 5000)
