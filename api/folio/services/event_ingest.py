"""
Analytics event ingestion.

Enriches a client-reported event with request-derived context (hashed IP,
referrer domain, device/browser/OS, geolocation) and appends it to the
raw event log.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..geoip import GeoLocation, lookup_location
from ..utils.request_context import (
    extract_referrer_domain,
    get_client_ip,
    get_edge_location,
    hash_ip,
    parse_user_agent,
)

if TYPE_CHECKING:
    from ..schemas import AnalyticsEventIn

logger = logging.getLogger(__name__)


def resolve_geolocation(request: Request, client_ip: str | None) -> GeoLocation:
    """
    Combine edge-provided geolocation with IP lookups.

    Never raises: geolocation is best-effort enrichment.
    """
    edge = get_edge_location(request)
    known = GeoLocation(country=edge.country, city=edge.city, region=edge.region)
    try:
        return lookup_location(client_ip, known=known)
    except Exception as e:
        logger.warning(f"Geolocation enrichment failed: {e}", exc_info=True)
        return known


def build_event(
    payload: AnalyticsEventIn,
    request: Request,
    now: datetime,
) -> models.AnalyticsEvent:
    """Build an AnalyticsEvent from the client payload plus request context."""
    client_ip = get_client_ip(request)
    user_agent = payload.user_agent or request.headers.get("User-Agent")
    referrer = payload.referrer or request.headers.get("Referer")

    device = parse_user_agent(user_agent)
    location = resolve_geolocation(request, client_ip)

    metadata: dict[str, Any] = dict(payload.metadata or {})
    if payload.screen_width is not None:
        metadata["screen_width"] = payload.screen_width
    if payload.screen_height is not None:
        metadata["screen_height"] = payload.screen_height
    if location.region:
        metadata["region"] = location.region
    if location.latitude is not None:
        metadata["latitude"] = location.latitude
    if location.longitude is not None:
        metadata["longitude"] = location.longitude

    return models.AnalyticsEvent(
        id=uuid.uuid4(),
        event_type=payload.event_type,
        page_path=payload.page_path,
        page_title=payload.page_title,
        visitor_id=payload.visitor_id,
        session_id=payload.session_id,
        ip_hash=hash_ip(client_ip) if client_ip else None,
        referrer=referrer,
        referrer_domain=payload.referrer_domain or extract_referrer_domain(referrer),
        utm_source=payload.utm_source,
        utm_medium=payload.utm_medium,
        utm_campaign=payload.utm_campaign,
        device_type=payload.device_type or device.device_type,
        browser=payload.browser or device.browser,
        os=payload.os or device.os,
        country=location.country,
        city=location.city,
        duration=payload.duration,
        event_metadata=metadata or None,
        created_at=now,
    )


def record_event(
    db: Session,
    payload: AnalyticsEventIn,
    request: Request,
    now: datetime,
) -> models.AnalyticsEvent:
    """
    Enrich and store an analytics event.

    Raises:
        SQLAlchemyError: the event could not be stored
    """
    event = build_event(payload, request, now)
    db.add(event)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.debug(
        f"Recorded {event.event_type} on {event.page_path}: "
        f"device={event.device_type}, country={event.country}"
    )
    return event
