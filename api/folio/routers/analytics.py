"""Dashboard analytics endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..deps import Clock, get_clock, get_db
from ..services.analytics import AnalyticsService, TimeRange

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Analytics"])


@router.get("/analytics")
def get_analytics(
    request: Request,
    time_range: TimeRange = Query(TimeRange.LAST_30_DAYS, alias="range"),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> dict:
    """
    Aggregated page-view analytics for the dashboard.

    **Query Parameters:**
    - `range`: one of `7d`, `30d` (default), `90d`, `all`

    **Response includes:**
    - `overview`: total visits, unique visitors, unique sessions, average duration
    - `visitsTimeline`: visits and unique visitors per day
    - `topPages`, `topReferrers`: top 10 by visits
    - `deviceBreakdown`, `browserBreakdown`, `osBreakdown`: count and percentage
    - `geoBreakdown`, `topCities`: top 10 countries and cities
    """
    service = AnalyticsService(db, local_cache=request.app.state.analytics_cache)
    try:
        return service.get_summary(time_range, now=clock())
    except SQLAlchemyError as e:
        logger.error(f"Failed to fetch analytics for range {time_range.value}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch analytics",
        )
