"""
Request context extraction for analytics events.

Derives client IP, referrer domain, device/browser/OS and edge-provided
geolocation from an incoming request.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from urllib.parse import unquote, urlparse

from fastapi import Request
from user_agents import parse as parse_ua


class DeviceType(str, Enum):
    """Device type classification."""
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"


# Geolocation headers set by the edge in front of the API
EDGE_COUNTRY_HEADERS = ("X-Vercel-IP-Country", "CF-IPCountry")
EDGE_CITY_HEADERS = ("X-Vercel-IP-City", "CF-IPCity")
EDGE_REGION_HEADERS = ("X-Vercel-IP-Country-Region", "CF-Region")


@dataclass
class ClientDevice:
    device_type: str
    browser: str | None
    os: str | None


@dataclass
class EdgeLocation:
    country: str | None = None
    city: str | None = None
    region: str | None = None


def hash_ip(ip: str | None) -> str:
    """
    Create a SHA256 hash of an IP address for privacy-preserving storage.

    Args:
        ip: IPv4 or IPv6 address string

    Returns:
        64-character hex string (SHA256 hash)
    """
    if not ip:
        ip = "unknown"
    return hashlib.sha256(ip.encode("utf-8")).hexdigest()


def get_client_ip(request: Request) -> str | None:
    """
    Extract client IP address from request, handling proxies.

    Checks X-Forwarded-For header first (for reverse proxy setups),
    then X-Real-IP, then falls back to direct client IP.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs; take the first one
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return None


def extract_referrer_domain(referrer: str | None) -> str | None:
    """
    Extract the domain from a referrer URL.

    Args:
        referrer: Referer header string

    Returns:
        Domain string (e.g., "google.com") or None
    """
    if not referrer:
        return None

    try:
        parsed = urlparse(referrer)
    except ValueError:
        return None

    domain = (parsed.hostname or "").lower()

    # Remove www. prefix for consistency
    if domain.startswith("www."):
        domain = domain[4:]

    return domain[:255] if domain else None


def parse_user_agent(user_agent: str | None) -> ClientDevice:
    """Classify device type and read browser/OS families from a User-Agent string."""
    if not user_agent:
        return ClientDevice(device_type=DeviceType.DESKTOP.value, browser=None, os=None)

    ua = parse_ua(user_agent)
    if ua.is_tablet:
        device_type = DeviceType.TABLET
    elif ua.is_mobile:
        device_type = DeviceType.MOBILE
    else:
        device_type = DeviceType.DESKTOP

    browser = ua.browser.family if ua.browser.family and ua.browser.family != "Other" else None
    os_family = ua.os.family if ua.os.family and ua.os.family != "Other" else None
    return ClientDevice(device_type=device_type.value, browser=browser, os=os_family)


def _first_header(request: Request, names: tuple[str, ...]) -> str | None:
    for name in names:
        value = request.headers.get(name)
        if value and value.strip() and value.strip().upper() != "XX":
            # Vercel URL-encodes city names
            return unquote(value.strip())
    return None


def get_edge_location(request: Request) -> EdgeLocation:
    """Read geolocation the CDN/edge attached to the request, if any."""
    return EdgeLocation(
        country=_first_header(request, EDGE_COUNTRY_HEADERS),
        city=_first_header(request, EDGE_CITY_HEADERS),
        region=_first_header(request, EDGE_REGION_HEADERS),
    )
