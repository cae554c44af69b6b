from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from . import settings  # noqa: E402
from .routers import analytics, stories, system, tracking  # noqa: E402

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

_STARTUP_COMPLETE = False


def _alembic_config() -> Config:
    base_dir = Path(__file__).resolve().parent.parent
    cfg = Config(str(base_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(base_dir / "alembic"))
    cfg.attributes["configure_logger"] = False
    return cfg


def run_migrations() -> None:
    logger.info("run_migrations: Starting...")
    try:
        command.upgrade(_alembic_config(), "head")
        logger.info("run_migrations: Completed successfully.")
    except Exception as e:
        logger.error(f"run_migrations: Error occurred: {e}", exc_info=True)
        raise


def run_startup_tasks() -> None:
    global _STARTUP_COMPLETE
    if _STARTUP_COMPLETE:
        logger.info("run_startup_tasks: Already completed, skipping.")
        return
    if settings.RUN_MIGRATIONS_ON_STARTUP:
        run_migrations()
    else:
        logger.info("run_startup_tasks: RUN_MIGRATIONS_ON_STARTUP is off, skipping migrations.")
    _STARTUP_COMPLETE = True
    logger.info("Startup tasks completed.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    # Server won't start until migrations complete
    run_startup_tasks()
    logger.info("Folio API server ready")
    yield
    logger.info("Shutting down application...")
    from .geoip import close_reader
    close_reader()


app = FastAPI(
    title="Folio API",
    version="1.0.0",
    description="Story view counters and page-view analytics for the portfolio site",
    lifespan=lifespan,
)

# Dashboard summaries cached in-process when Redis is not configured
app.state.analytics_cache = {}

# CORS Configuration - restrict to specific origins
cors_origins_str = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost")
if cors_origins_str == "*":
    logger.warning(
        "CORS is configured to allow all origins. "
        "This is insecure for production. Set CORS_ORIGINS to specific domains."
    )
cors_origins = [origin.strip() for origin in cors_origins_str.split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "Origin", "X-Requested-With", "X-Visitor-Id"],
    max_age=600,  # Cache preflight requests for 10 minutes
)

app.include_router(system.router)
app.include_router(stories.router)
app.include_router(tracking.router)
app.include_router(analytics.router)
