"""Client-side analytics event tracking endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import schemas
from ..deps import Clock, get_clock, get_db
from ..services.event_ingest import record_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["Tracking"])


@router.post("/track", response_model=schemas.TrackEventResponse)
def track_event(
    payload: schemas.AnalyticsEventIn,
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> schemas.TrackEventResponse:
    """
    Store an analytics event reported by the frontend.

    The event is enriched with the hashed client IP, referrer domain,
    device/browser/OS and geolocation before it is written.

    **Public endpoint** - No authentication required.
    """
    try:
        record_event(db, payload, request, now=clock())
    except SQLAlchemyError as e:
        logger.error(f"Failed to track {payload.event_type} event: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to track event",
        )

    return schemas.TrackEventResponse(success=True)
