from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from .db import get_session
from .services.view_store import SqlViewStore

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_db() -> Generator[Session, None, None]:
    yield from get_session()


def get_clock() -> Clock:
    """Single authoritative timestamp source for cooldown comparisons."""
    return utc_now


def get_view_store(db: Session = Depends(get_db)) -> SqlViewStore:
    return SqlViewStore(db)
