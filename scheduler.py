"""Scheduling utilities for debounced, latest-wins jobs on the asyncio loop."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence

import pytz
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

LOGGER = logging.getLogger(__name__)


class LatestJobSlot:
    """Wrap APScheduler so at most one one-off job is pending at a time.

    Scheduling a new job removes the pending one instead of queuing behind it.
    Must be created and used from within the running event loop.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._scheduler = AsyncIOScheduler(event_loop=loop or asyncio.get_running_loop(), timezone=pytz.utc)
        self._job_id: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self._job_id is not None and self._scheduler.get_job(self._job_id) is not None

    def start(self) -> None:
        if not self._scheduler.running:
            LOGGER.debug("Starting debounce scheduler")
            self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            LOGGER.debug("Stopping debounce scheduler")
            self._scheduler.shutdown(wait=False)

    def schedule(self, delay: float, callback: Callable[..., Any], args: Sequence[Any] = ()) -> None:
        """Run *callback* after *delay* seconds, replacing any pending job."""
        self.start()
        self.cancel()
        run_date = datetime.now(pytz.utc) + timedelta(seconds=delay)
        job = self._scheduler.add_job(callback, trigger=DateTrigger(run_date=run_date), args=list(args))
        LOGGER.debug("Scheduled debounced job %s at %s", job.id, run_date)
        self._job_id = job.id

    def cancel(self) -> None:
        if self._job_id:
            LOGGER.debug("Removing pending job %s", self._job_id)
            with suppress_not_found():
                self._scheduler.remove_job(self._job_id)
            self._job_id = None


class suppress_not_found:
    """Context manager that suppresses APScheduler job lookup errors."""

    def __enter__(self) -> None:  # pragma: no cover - trivial
        return None

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            return False
        return isinstance(exc, JobLookupError)
