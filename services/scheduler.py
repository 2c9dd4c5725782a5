"""
In-process interval jobs (hold expiry, visit reminders).

Each job gets its own daemon thread. A tick that is still running when the
next one is due is skipped rather than stacked.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import OperationalError

from models import db

logger = logging.getLogger(__name__)


@dataclass
class Job:
    name: str
    func: Callable[[], Any]
    interval: float
    lock: threading.Lock = field(default_factory=threading.Lock)
    last_result: Any = None
    last_error: Optional[str] = None
    last_run_at: Optional[float] = None
    runs: int = 0


class Scheduler:
    def __init__(self, app):
        self.app = app
        self.jobs: Dict[str, Job] = {}
        self._stop = threading.Event()
        self._threads = []

    def add_job(self, name: str, func: Callable[[], Any], interval_seconds: float) -> Job:
        if name in self.jobs:
            raise ValueError(f"Job {name} already registered")
        job = Job(name=name, func=func, interval=float(interval_seconds))
        self.jobs[name] = job
        return job

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def run_job(self, name: str) -> bool:
        """Run one tick now. Returns False when the previous tick is still busy."""
        job = self.jobs[name]
        if not job.lock.acquire(blocking=False):
            logger.info("Job %s still running, tick skipped", name)
            return False
        try:
            with self.app.app_context():
                try:
                    job.last_result = job.func()
                    job.last_error = None
                    if job.last_result:
                        logger.info("Job %s: %s", name, job.last_result)
                except OperationalError as exc:
                    # database unavailable; next tick retries
                    job.last_error = str(exc)
                    logger.warning("Job %s hit a database error: %s", name, exc)
                except Exception as exc:
                    job.last_error = str(exc)
                    logger.exception("Job %s failed", name)
                finally:
                    db.session.remove()
            job.runs += 1
            job.last_run_at = time.time()
        finally:
            job.lock.release()
        return True

    def _loop(self, job: Job):
        while not self._stop.wait(job.interval):
            self.run_job(job.name)

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._threads = []
        for job in self.jobs.values():
            t = threading.Thread(target=self._loop, args=(job,), name=f"scheduler-{job.name}", daemon=True)
            t.start()
            self._threads.append(t)
        logger.info("Scheduler started with jobs: %s", ", ".join(self.jobs))

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        for t in self._threads:
            t.join(timeout)
        self._threads = []
        logger.info("Scheduler stopped")


def build_scheduler(app) -> Scheduler:
    from services.reaper import reclaim_expired_holds, send_booking_reminders

    scheduler = Scheduler(app)
    scheduler.add_job("expiry-reaper", reclaim_expired_holds, app.config.get("REAPER_INTERVAL_SECONDS", 30))
    scheduler.add_job("booking-reminders", send_booking_reminders, app.config.get("REMINDER_INTERVAL_SECONDS", 300))
    return scheduler
