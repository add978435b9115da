import logging

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from app.core import config
DATABASE_URL = config.DATABASE_URL

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    # Request threads share the engine; SQLite needs the thread check off
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=_connect_args(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def run_with_conflict_retry(db, operation, *args, **kwargs):
    """
    Run a whole-transaction operation, retrying once on a database conflict.

    Conditional updates can lose to a concurrent writer at the database level
    (serialization failure, deadlock, SQLite busy). The operation is rolled
    back and attempted once more from a clean transaction; a second failure
    propagates.
    """
    try:
        return operation(db, *args, **kwargs)
    except OperationalError as e:
        db.rollback()
        logger.warning(f"Database conflict in {getattr(operation, '__name__', operation)}, retrying once: {e.orig}")
        return operation(db, *args, **kwargs)
