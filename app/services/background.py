"""
Background workers: escrow expiry sweep and notification outbox dispatch.

Each worker is a daemon thread looping on an interval with its own session,
started from the FastAPI lifespan when BACKGROUND_WORKERS_ENABLED is set.
"""
import logging
import threading
from typing import Callable, List

from sqlalchemy.orm import Session

from app.core.config import ESCROW_SWEEP_INTERVAL_SECONDS, NOTIFICATION_DISPATCH_INTERVAL_SECONDS
from app.db.session import SessionLocal
from app.services.escrow_coordinator import expire_stale_orders
from app.services.notification_dispatcher import dispatch_pending_events

logger = logging.getLogger(__name__)


class PeriodicWorker(threading.Thread):
    def __init__(self, name: str, interval: float, task: Callable[[Session], int], session_factory=SessionLocal):
        super().__init__(name=name, daemon=True)
        self.interval = interval
        self.task = task
        self.session_factory = session_factory
        self._stop_event = threading.Event()

    def run_once(self) -> int:
        db = self.session_factory()
        try:
            return self.task(db)
        except Exception as e:
            db.rollback()
            logger.error(f"{self.name} iteration failed: {e}", exc_info=True)
            return 0
        finally:
            db.close()

    def run(self) -> None:
        logger.info(f"{self.name} started (interval={self.interval}s)")
        while not self._stop_event.wait(self.interval):
            self.run_once()
        logger.info(f"{self.name} stopped")

    def stop(self) -> None:
        self._stop_event.set()


def start_background_workers() -> List[PeriodicWorker]:
    workers = [
        PeriodicWorker("escrow-sweeper", ESCROW_SWEEP_INTERVAL_SECONDS, expire_stale_orders),
        PeriodicWorker("notification-dispatcher", NOTIFICATION_DISPATCH_INTERVAL_SECONDS, dispatch_pending_events),
    ]
    for worker in workers:
        worker.start()
    return workers


def stop_background_workers(workers: List[PeriodicWorker], timeout: float = 5.0) -> None:
    for worker in workers:
        worker.stop()
    for worker in workers:
        worker.join(timeout=timeout)
