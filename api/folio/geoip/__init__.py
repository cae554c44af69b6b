"""
IP geolocation for analytics event enrichment.

Two sources, tried in order:

1. A local MaxMind GeoLite2-City database (``GEOIP_DB_PATH``).
2. An HTTP geolocation service (``GEO_LOOKUP_URL``), called with a hard
   timeout so a slow provider cannot hold up the tracking request.

Usage:
    from folio.geoip import lookup_location

    location = lookup_location("8.8.8.8")  # GeoLocation(country="United States", ...)
"""

from __future__ import annotations

import ipaddress
import logging
import os
from dataclasses import dataclass

import geoip2.database
import geoip2.errors
import httpx
from maxminddb import InvalidDatabaseError

from .. import settings

logger = logging.getLogger(__name__)

# Global reader instance (lazy loaded)
_reader: geoip2.database.Reader | None = None
_reader_initialized = False


@dataclass
class GeoLocation:
    country: str | None = None
    city: str | None = None
    region: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.country and self.city and self.region)

    def merged_with(self, other: GeoLocation) -> GeoLocation:
        """Fill fields missing here from ``other``; existing values win."""
        return GeoLocation(
            country=self.country or other.country,
            city=self.city or other.city,
            region=self.region or other.region,
            latitude=self.latitude if self.latitude is not None else other.latitude,
            longitude=self.longitude if self.longitude is not None else other.longitude,
        )


def is_public_ip(ip: str | None) -> bool:
    if not ip:
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return address.is_global


def _get_reader() -> geoip2.database.Reader | None:
    """
    Get or initialize the GeoIP reader.

    Returns None if the database file is not available.
    """
    global _reader, _reader_initialized

    if _reader_initialized:
        return _reader

    _reader_initialized = True

    if not os.path.exists(settings.GEOIP_DB_PATH):
        logger.info(
            f"GeoIP database not found at {settings.GEOIP_DB_PATH}; "
            "local lookups disabled. Download GeoLite2-City.mmdb from MaxMind to enable them."
        )
        return None

    try:
        _reader = geoip2.database.Reader(settings.GEOIP_DB_PATH)
        logger.info(f"GeoIP database loaded from {settings.GEOIP_DB_PATH}")
        return _reader
    except (OSError, InvalidDatabaseError) as e:
        logger.error(f"Failed to load GeoIP database: {e}")
        return None


def lookup_local(ip: str) -> GeoLocation:
    """Look up an IP in the local MaxMind database."""
    reader = _get_reader()
    if reader is None:
        return GeoLocation()

    try:
        response = reader.city(ip)
    except geoip2.errors.AddressNotFoundError:
        logger.debug(f"IP address not found in GeoIP database: {ip}")
        return GeoLocation()
    except (ValueError, geoip2.errors.GeoIP2Error) as e:
        logger.warning(f"GeoIP lookup failed for {ip}: {e}")
        return GeoLocation()

    return GeoLocation(
        country=response.country.name,
        city=response.city.name,
        region=response.subdivisions.most_specific.name,
        latitude=response.location.latitude,
        longitude=response.location.longitude,
    )


def lookup_remote(ip: str, client: httpx.Client | None = None) -> GeoLocation:
    """
    Look up an IP with the HTTP geolocation service.

    The call is bounded by ``GEO_LOOKUP_TIMEOUT_SECONDS``; any failure yields
    an empty GeoLocation.
    """
    if not settings.GEO_LOOKUP_URL:
        return GeoLocation()

    url = settings.GEO_LOOKUP_URL.format(ip=ip)
    try:
        if client is None:
            with httpx.Client(timeout=settings.GEO_LOOKUP_TIMEOUT_SECONDS) as http:
                response = http.get(url)
        else:
            response = client.get(url, timeout=settings.GEO_LOOKUP_TIMEOUT_SECONDS)
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Remote geolocation lookup failed: {e}")
        return GeoLocation()

    if data.get("status") != "success":
        return GeoLocation()

    return GeoLocation(
        country=data.get("country") or None,
        city=data.get("city") or None,
        region=data.get("regionName") or None,
        latitude=data.get("lat"),
        longitude=data.get("lon"),
    )


def lookup_location(ip: str | None, known: GeoLocation | None = None) -> GeoLocation:
    """
    Resolve a location for ``ip``, keeping whatever ``known`` already provides.

    Sources are only consulted while country, city or region is still missing.
    Private and loopback addresses are never looked up.
    """
    location = known or GeoLocation()
    if location.is_complete or not is_public_ip(ip):
        return location

    location = location.merged_with(lookup_local(ip))
    if location.is_complete:
        return location

    return location.merged_with(lookup_remote(ip))


def close_reader() -> None:
    """
    Close the GeoIP reader and release resources.

    Should be called on application shutdown.
    """
    global _reader, _reader_initialized

    if _reader is not None:
        _reader.close()
        _reader = None

    _reader_initialized = False
