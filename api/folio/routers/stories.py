"""Story view counter endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.exc import SQLAlchemyError

from .. import schemas, settings
from ..deps import Clock, get_clock, get_view_store
from ..services.story_views import (
    ViewTrackingError,
    get_story_views,
    normalize_story_id,
    track_story_view,
)
from ..services.view_store import SqlViewStore
from ..utils.visitor_identity import resolve_request_visitor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stories", tags=["Story Views"])


def _story_id_or_400(slug: str) -> str:
    try:
        return normalize_story_id(slug)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{slug}/track-view", response_model=schemas.StoryViewsResponse)
def get_story_view_counts(
    slug: str,
    response: Response,
    store: SqlViewStore = Depends(get_view_store),
) -> schemas.StoryViewsResponse:
    """
    Read the view totals for a story without counting a view.

    **Public endpoint** - responses are marked non-cacheable.
    """
    story_id = _story_id_or_400(slug)

    try:
        counts = get_story_views(store, story_id)
    except SQLAlchemyError as e:
        logger.error(f"Failed to load views for story {story_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load views",
        )

    response.headers["Cache-Control"] = "no-store"
    return schemas.StoryViewsResponse(
        story_id=story_id,
        total_views=counts.total_views,
        unique_views=counts.unique_views,
    )


@router.post("/{slug}/track-view", response_model=schemas.TrackViewResponse)
def track_view(
    slug: str,
    request: Request,
    response: Response,
    store: SqlViewStore = Depends(get_view_store),
    clock: Clock = Depends(get_clock),
) -> schemas.TrackViewResponse:
    """
    Count a view of a story.

    The visitor is identified by the `X-Visitor-Id` header, then the visitor
    cookie; otherwise a new id is minted and returned in `Set-Cookie`.
    Repeat views inside the cooldown window are not counted and come back
    with `throttled: true` and the current totals.

    **Public endpoint** - No authentication required.
    """
    story_id = _story_id_or_400(slug)
    identity = resolve_request_visitor(request)

    try:
        result = track_story_view(
            store,
            story_id,
            identity.visitor_id,
            now=clock(),
            cooldown_seconds=settings.STORY_VIEW_COOLDOWN_SECONDS,
        )
    except (ViewTrackingError, SQLAlchemyError) as e:
        logger.error(f"Failed to track view for story {story_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to track view",
        )

    if identity.cookie is not None:
        identity.cookie.apply(response)
    response.headers["Cache-Control"] = "no-store"

    return schemas.TrackViewResponse(
        story_id=result.story_id,
        total_views=result.total_views,
        unique_views=result.unique_views,
        is_unique=result.is_unique,
        throttled=result.throttled,
    )
