"""
Database migration runner for Alembic migrations.
"""
import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text

from app.core import config as app_config

logger = logging.getLogger(__name__)

# Serializes `alembic upgrade` across instances starting at the same time
ADVISORY_LOCK_ID = 587312044

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def build_alembic_config(database_url: str) -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url)
    return alembic_cfg


def run_migrations(database_url: str = None):
    """
    Run Alembic migrations to head revision.

    On Postgres, holds an advisory lock for the duration so concurrent
    deploys run the upgrade once.
    """
    database_url = database_url or app_config.DATABASE_URL
    logger.info("RUN_MIGRATIONS=1 -> running alembic upgrade head")

    alembic_cfg = build_alembic_config(database_url)
    engine = create_engine(database_url, pool_pre_ping=True)
    lock_conn = None

    try:
        if database_url.startswith("postgresql"):
            # Keep the connection open to hold the lock
            lock_conn = engine.connect()
            lock_conn.execute(text("SELECT pg_advisory_lock(:lock_id)"), {"lock_id": ADVISORY_LOCK_ID})
            lock_conn.commit()
            logger.info("Migration lock acquired")

        command.upgrade(alembic_cfg, "head")
        logger.info("Migrations complete")

    except Exception:
        logger.exception("Migration failed")
        raise
    finally:
        if lock_conn is not None:
            lock_conn.execute(text("SELECT pg_advisory_unlock(:lock_id)"), {"lock_id": ADVISORY_LOCK_ID})
            lock_conn.commit()
            lock_conn.close()
        engine.dispose()
