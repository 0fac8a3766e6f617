"""Periodic scan scheduling.

One job per (user, source). A job is due when it never ran or when its
frequency has elapsed since its last run. Jobs run on a worker thread from
an asyncio loop started in the FastAPI lifespan.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from taskflow.database.integration_repository import IntegrationRepository

logger = logging.getLogger(__name__)

JobKey = Tuple[int, str]


@dataclass
class ScanJob:
    user_id: int
    source: str
    frequency_minutes: int
    last_run_at: Optional[datetime] = None

    @property
    def key(self) -> JobKey:
        return (self.user_id, self.source)

    def is_due(self, now: datetime) -> bool:
        if self.last_run_at is None:
            return True
        return now - self.last_run_at >= timedelta(minutes=self.frequency_minutes)


@dataclass
class PeriodicJob:
    """A process-wide job such as the overdue reminder. `func` receives the tick time."""

    name: str
    interval_minutes: int
    func: Callable[[datetime], Any]
    last_run_at: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        if self.last_run_at is None:
            return True
        return now - self.last_run_at >= timedelta(minutes=self.interval_minutes)


class ScanScheduler:
    """Runs `runner(user_id, source)` for every due job.

    Also runs named periodic jobs that are not tied to an integration.
    """

    def __init__(
        self,
        runner: Callable[[int, str], Any],
        clock: Callable[[], datetime] = datetime.utcnow,
        tick_seconds: int = 60,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.runner = runner
        self.clock = clock
        self.tick_seconds = tick_seconds
        self.session_factory = session_factory
        self._jobs: Dict[JobKey, ScanJob] = {}
        self._periodic: Dict[str, PeriodicJob] = {}
        self._running: Set[JobKey] = set()
        self._lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None

    # --- registry ---

    def schedule(self, user_id: int, source: str, frequency_minutes: int, last_run_at: Optional[datetime] = None) -> ScanJob:
        """Add a job or update an existing one's frequency.

        An existing job keeps its own last run time unless `last_run_at` is newer.
        """
        if frequency_minutes < 1:
            raise ValueError("frequency_minutes must be at least 1")
        key = (user_id, source)
        with self._lock:
            job = self._jobs.get(key)
            if job is None:
                job = ScanJob(user_id, source, frequency_minutes, last_run_at)
                self._jobs[key] = job
                logger.debug(f"Scheduled {source} scan for user {user_id} every {frequency_minutes}m")
            else:
                job.frequency_minutes = frequency_minutes
                if last_run_at is not None and (job.last_run_at is None or last_run_at > job.last_run_at):
                    job.last_run_at = last_run_at
            return job

    def cancel(self, user_id: int, source: str) -> bool:
        with self._lock:
            removed = self._jobs.pop((user_id, source), None)
        if removed is not None:
            logger.debug(f"Cancelled {source} scan for user {user_id}")
        return removed is not None

    def get_job(self, user_id: int, source: str) -> Optional[ScanJob]:
        return self._jobs.get((user_id, source))

    def jobs(self) -> List[ScanJob]:
        with self._lock:
            return list(self._jobs.values())

    def add_periodic(
        self,
        name: str,
        interval_minutes: int,
        func: Callable[[datetime], Any],
        last_run_at: Optional[datetime] = None,
    ) -> PeriodicJob:
        """Register (or replace) a named periodic job. Without `last_run_at` it runs on the next tick."""
        if interval_minutes < 1:
            raise ValueError("interval_minutes must be at least 1")
        job = PeriodicJob(name, interval_minutes, func, last_run_at)
        with self._lock:
            self._periodic[name] = job
        logger.debug(f"Scheduled periodic job {name} every {interval_minutes}m")
        return job

    def periodic_jobs(self) -> List[PeriodicJob]:
        with self._lock:
            return list(self._periodic.values())

    def due_jobs(self, now: Optional[datetime] = None) -> List[ScanJob]:
        """Due jobs that are not already running."""
        now = now or self.clock()
        with self._lock:
            return [job for job in self._jobs.values() if job.key not in self._running and job.is_due(now)]

    def sync_from_db(self, db: Session) -> None:
        """Register enabled integrations and drop jobs whose integration is gone or disabled."""
        wanted: Set[JobKey] = set()
        for item in IntegrationRepository(db).list_scheduled():
            wanted.add((item.user_id, item.source))
            self.schedule(item.user_id, item.source, item.scan_frequency, item.last_scan_at)
        for job in self.jobs():
            if job.key not in wanted:
                self.cancel(job.user_id, job.source)

    # --- execution ---

    def run_pending(self, now: Optional[datetime] = None) -> List[JobKey]:
        """Run every due job once. Returns the keys that ran.

        A failing job is logged and still counts as run, so it waits a full
        interval before retrying.
        """
        now = now or self.clock()
        ran: List[JobKey] = []
        for job in self.due_jobs(now):
            with self._lock:
                if job.key in self._running:
                    continue
                self._running.add(job.key)
            try:
                self.runner(job.user_id, job.source)
            except Exception as e:
                logger.error(f"Scheduled {job.source} scan failed for user {job.user_id}: {type(e).__name__}: {str(e)}")
            finally:
                with self._lock:
                    job.last_run_at = now
                    self._running.discard(job.key)
            ran.append(job.key)
        return ran

    def run_periodic(self, now: Optional[datetime] = None) -> List[str]:
        """Run every due periodic job once. Returns the names that ran."""
        now = now or self.clock()
        ran: List[str] = []
        for job in self.periodic_jobs():
            if not job.is_due(now):
                continue
            try:
                job.func(now)
            except Exception as e:
                logger.error(f"Periodic job {job.name} failed: {type(e).__name__}: {str(e)}")
            finally:
                job.last_run_at = now
            ran.append(job.name)
        return ran

    def _sync(self) -> None:
        if self.session_factory is None:
            return
        db = self.session_factory()
        try:
            self.sync_from_db(db)
        finally:
            db.close()

    async def _loop(self) -> None:
        logger.info(f"Scan scheduler started (tick {self.tick_seconds}s)")
        while True:
            try:
                await asyncio.to_thread(self._sync)
                await asyncio.to_thread(self.run_pending)
                await asyncio.to_thread(self.run_periodic)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Scan scheduler tick failed: {type(e).__name__}: {str(e)}")
            await asyncio.sleep(self.tick_seconds)

    def start(self) -> asyncio.Task:
        """Start the loop on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Scan scheduler stopped")
