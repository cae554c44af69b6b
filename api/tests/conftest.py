from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Generator

# Configure the app before anything under folio is imported
_TEST_DIR = tempfile.mkdtemp(prefix="folio-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'folio.db')}"
os.environ["RUN_MIGRATIONS_ON_STARTUP"] = "false"
os.environ["ANALYTICS_CACHE_TTL"] = "0"
os.environ["GEO_LOOKUP_URL"] = ""
os.environ["GEOIP_DB_PATH"] = os.path.join(_TEST_DIR, "GeoLite2-City.mmdb")
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from folio import models  # noqa: E402,F401
from folio.db import Base, SessionLocal, engine  # noqa: E402
from folio.deps import get_clock  # noqa: E402
from folio.main import app  # noqa: E402


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def reset_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield
    app.dependency_overrides.clear()
    app.state.analytics_cache.clear()


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def db() -> Generator[Session, None, None]:
    """Create a database session for testing."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def clock() -> FakeClock:
    """Pin the request clock so cooldown tests control elapsed time."""
    fake = FakeClock(datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc))
    app.dependency_overrides[get_clock] = lambda: fake
    return fake
