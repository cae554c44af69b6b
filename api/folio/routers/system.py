"""System endpoints (liveness, readiness)."""

from __future__ import annotations

import logging
import time

import redis
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .. import schemas
from ..cache import get_redis_client
from ..deps import get_view_store
from ..services.view_store import SqlViewStore

router = APIRouter(prefix="", tags=["System"])
logger = logging.getLogger(__name__)

_STARTUP_TIME = time.time()


@router.get("/health", response_model=schemas.HealthResponse)
def get_health() -> schemas.HealthResponse:
    """Liveness check."""
    return schemas.HealthResponse(status="ok", uptime_s=time.time() - _STARTUP_TIME)


@router.get("/health/ready", response_model=schemas.ReadinessResponse)
def get_readiness(
    response: Response,
    store: SqlViewStore = Depends(get_view_store),
) -> schemas.ReadinessResponse:
    """
    Readiness check.

    Returns 503 when the database is unreachable. `atomic_increment: false`
    means story views are being counted by the non-atomic fallback.
    """
    try:
        store.db.execute(text("SELECT 1"))
        atomic = store.has_atomic_increment()
    except SQLAlchemyError as e:
        logger.error(f"Readiness check failed: {e}")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return schemas.ReadinessResponse(status="unavailable", database=False, atomic_increment=False)

    if not atomic:
        logger.warning("track_story_view is not provisioned; view counts use the fallback path")
    return schemas.ReadinessResponse(status="ok", database=True, atomic_increment=atomic)


@router.get("/health/redis")
def check_redis_health() -> dict:
    """Returns 200 if the Redis cache answers, 503 if it is unset or down."""
    client = get_redis_client()
    if not client:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Redis unavailable",
        )

    try:
        client.ping()
    except redis.RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Redis unavailable",
        )
    return {"status": "ok"}
