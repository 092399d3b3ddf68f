"""
Cancelable timers for request expiry, duel ticks, round end and round recycle.

Jobs run on APScheduler's AsyncIOScheduler. Every callback is wrapped in a
coroutine so it executes on the event loop thread rather than the executor
pool: engine callbacks run to completion one at a time and never overlap
with request handlers.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.core.logger import get_logger

logger = get_logger("scheduler")


class TimerHandle:
    """A scheduled callback that can be cancelled exactly once."""

    def __init__(self, scheduler: "WagerScheduler", job_id: str, name: str):
        self._scheduler = scheduler
        self.job_id = job_id
        self.name = name
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self._scheduler._remove(self.job_id)

    def __repr__(self):
        return f"<TimerHandle {self.name} {self.job_id}{' cancelled' if self.cancelled else ''}>"


class WagerScheduler:
    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Wager scheduler started")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Wager scheduler shutdown")

    def call_later(self, delay: float, callback: Callable[[], object], name: str) -> TimerHandle:
        """Run `callback` once after `delay` seconds."""
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay)
        return self._add(callback, DateTrigger(run_date=run_date), name)

    def call_every(self, interval: float, callback: Callable[[], object], name: str) -> TimerHandle:
        """Run `callback` every `interval` seconds until cancelled."""
        return self._add(callback, IntervalTrigger(seconds=interval), name)

    def _add(self, callback, trigger, name: str) -> TimerHandle:
        job_id = f"{name}:{uuid.uuid4().hex[:12]}"

        async def run_on_loop():
            try:
                callback()
            except Exception:
                logger.exception(f"Scheduled job {name} failed")

        self.scheduler.add_job(
            run_on_loop,
            trigger,
            id=job_id,
            name=name,
            misfire_grace_time=None,
            coalesce=False,
            max_instances=1,
        )
        return TimerHandle(self, job_id, name)

    def _remove(self, job_id: str):
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            # One-shot jobs are dropped by APScheduler once they have fired
            pass
