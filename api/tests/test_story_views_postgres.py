"""
Story view counting against a migrated PostgreSQL database.

Uses TEST_POSTGRES_URL (a throwaway database: the module downgrades to
base when it finishes) when set, otherwise starts an embedded server with
pgserver (``pip install -e .[test-postgres]``). Skipped when neither is
available.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
from alembic import command
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from folio.main import _alembic_config
from folio.services.story_views import get_story_views, track_story_view
from folio.services.view_store import SqlViewStore

NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)
COOLDOWN = 60


def _with_psycopg(url: str) -> str:
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


@pytest.fixture(scope="module")
def postgres_url(tmp_path_factory) -> Generator[str, None, None]:
    url = os.getenv("TEST_POSTGRES_URL", "").strip()
    if url:
        yield _with_psycopg(url)
        return

    pgserver = pytest.importorskip("pgserver")
    server = pgserver.get_server(str(tmp_path_factory.mktemp("pgdata")), cleanup_mode="stop")
    try:
        yield _with_psycopg(server.get_uri())
    finally:
        server.cleanup()


@pytest.fixture(scope="module")
def pg_engine(postgres_url: str) -> Generator[Engine, None, None]:
    cfg = _alembic_config()
    # configparser interpolation
    cfg.set_main_option("sqlalchemy.url", postgres_url.replace("%", "%%"))
    command.upgrade(cfg, "head")

    engine = create_engine(postgres_url, pool_size=10, max_overflow=10)
    try:
        yield engine
    finally:
        engine.dispose()
        command.downgrade(cfg, "base")


@pytest.fixture()
def pg_sessions(pg_engine: Engine) -> sessionmaker:
    with pg_engine.begin() as conn:
        conn.execute(text("TRUNCATE story_views, story_unique_visitors, story_recent_views"))
    return sessionmaker(bind=pg_engine, autoflush=False, autocommit=False)


@pytest.fixture()
def pg_store(pg_sessions: sessionmaker) -> Generator[SqlViewStore, None, None]:
    session: Session = pg_sessions()
    try:
        yield SqlViewStore(session)
    finally:
        session.close()


def test_procedure_is_provisioned(pg_store: SqlViewStore):
    assert pg_store.has_atomic_increment() is True


def test_sequential_views_use_procedure(pg_store: SqlViewStore):
    first = track_story_view(pg_store, "r1", "v1", NOW, COOLDOWN)
    second = track_story_view(pg_store, "r1", "v1", NOW + timedelta(seconds=5), COOLDOWN)
    third = track_story_view(pg_store, "r1", "v2", NOW + timedelta(seconds=5), COOLDOWN)

    assert first.used_fallback is False and third.used_fallback is False
    assert (first.total_views, first.unique_views, first.is_unique, first.throttled) == (1, 1, True, False)
    assert (second.total_views, second.unique_views, second.throttled) == (1, 1, True)
    assert (third.total_views, third.unique_views, third.is_unique) == (2, 2, True)


def test_returning_visitor_is_not_unique(pg_store: SqlViewStore):
    track_story_view(pg_store, "r2", "v1", NOW, COOLDOWN)
    again = track_story_view(pg_store, "r2", "v1", NOW + timedelta(seconds=COOLDOWN), COOLDOWN)

    assert (again.total_views, again.unique_views, again.is_unique) == (2, 1, False)


def test_concurrent_views_lose_no_updates(pg_sessions: sessionmaker):
    visitors = [f"visitor-{i}" for i in range(40)]

    def view(visitor_id: str, now: datetime):
        session = pg_sessions()
        try:
            return track_story_view(SqlViewStore(session), "r3", visitor_id, now, COOLDOWN)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=10) as pool:
        first_wave = list(pool.map(lambda v: view(v, NOW), visitors))
    # Returning visitors come back once their cooldown has passed
    later = NOW + timedelta(seconds=COOLDOWN)
    with ThreadPoolExecutor(max_workers=10) as pool:
        second_wave = list(pool.map(lambda v: view(v, later), visitors[:10]))

    results = first_wave + second_wave
    assert not any(r.used_fallback for r in results)
    assert not any(r.throttled for r in results)
    assert sum(r.is_unique for r in results) == 40

    session = pg_sessions()
    try:
        counts = get_story_views(SqlViewStore(session), "r3")
    finally:
        session.close()
    assert (counts.total_views, counts.unique_views) == (50, 40)


def test_failed_cooldown_lookup_keeps_atomic_path(pg_engine: Engine, pg_store: SqlViewStore, caplog):
    with pg_engine.begin() as conn:
        conn.execute(text("ALTER TABLE story_recent_views RENAME TO story_recent_views_parked"))
    try:
        with caplog.at_level(logging.WARNING):
            result = track_story_view(pg_store, "r4", "v1", NOW, COOLDOWN)
    finally:
        pg_store.db.rollback()
        with pg_engine.begin() as conn:
            conn.execute(text("ALTER TABLE story_recent_views_parked RENAME TO story_recent_views"))

    assert result.used_fallback is False
    assert (result.total_views, result.unique_views, result.is_unique) == (1, 1, True)
    assert "Cooldown lookup failed" in caplog.text
    assert "track_story_view failed" not in caplog.text
