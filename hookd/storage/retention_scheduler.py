"""
Daily trigger for the retention job.

The job fires once per UTC day, on the first check at or after the configured
HH:MM that still falls inside one check interval. Every trigger, scheduled or
manual, goes through the same asyncio.Lock: a trigger that finds a run in
flight is skipped and counted, never queued.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from .retention_manager import RetentionJob
from .retention_models import RunResult

ERROR_BACKOFF_SECONDS = 300


@dataclass
class SchedulerStatus:
    """Point-in-time view of the scheduler."""
    running: bool
    run_in_progress: bool
    last_run_at: Optional[datetime]
    next_run_at: Optional[datetime]
    runs_started: int
    runs_succeeded: int
    runs_failed: int
    triggers_skipped: int
    last_error: Optional[str]
    uptime_seconds: float


def parse_schedule(schedule: str) -> Tuple[int, int]:
    """Split an 'HH:MM' schedule into (hour, minute)."""
    hour, minute = schedule.split(':')
    return int(hour), int(minute)


class RetentionScheduler:
    """Runs a RetentionJob once a day and keeps counters about those runs."""

    def __init__(self,
                 job: RetentionJob,
                 cleanup_schedule: str = "03:00",
                 check_interval_minutes: int = 60):
        self.job = job
        self.run_at = parse_schedule(cleanup_schedule)
        self.check_interval = timedelta(minutes=check_interval_minutes)
        self.logger = logging.getLogger(__name__)

        self._run_lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task] = None
        self._started_at: Optional[datetime] = None

        self.last_run_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.runs_started = 0
        self.runs_succeeded = 0
        self.runs_failed = 0
        self.triggers_skipped = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None

    async def start(self):
        if self.running:
            self.logger.warning("Scheduler start requested but the loop is already active")
            return

        self._started_at = datetime.now(timezone.utc)
        self._loop_task = asyncio.create_task(self._loop())
        hour, minute = self.run_at
        self.logger.info(f"Retention runs scheduled daily at {hour:02d}:{minute:02d} UTC, "
                         f"checking every {self.check_interval}")

    async def stop(self):
        if not self.running:
            return

        task, self._loop_task = self._loop_task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.info("Retention scheduler loop ended")

    async def wait(self):
        """Block until the scheduler loop exits."""
        task = self._loop_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self):
        pause = self.check_interval.total_seconds()
        while True:
            try:
                if self._is_due():
                    await self._trigger("schedule")
                await asyncio.sleep(pause)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.last_error = str(e)
                self.logger.error(f"Scheduler loop error, backing off {ERROR_BACKOFF_SECONDS}s: {e}")
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

    def _todays_run_time(self, now: datetime) -> datetime:
        hour, minute = self.run_at
        return now.replace(hour=hour, minute=minute, second=0, microsecond=0)

    def _latest_run_time(self, now: datetime) -> datetime:
        """The most recent scheduled instant at or before now, possibly yesterday's."""
        candidate = self._todays_run_time(now)
        return candidate if candidate <= now else candidate - timedelta(days=1)

    def _is_due(self, now: Optional[datetime] = None) -> bool:
        """True within one check interval after a scheduled instant that has not been run yet."""
        now = (now or datetime.now(timezone.utc)).replace(second=0, microsecond=0)
        slot = self._latest_run_time(now)
        if self.last_run_at is not None and self.last_run_at >= slot:
            return False
        return now - slot <= self.check_interval

    def _next_run_time(self, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        candidate = self._todays_run_time(now)
        return candidate if candidate > now else candidate + timedelta(days=1)

    async def _trigger(self, source: str) -> Optional[RunResult]:
        """
        Run the job once under the run lock.

        Returns None when the trigger was skipped or the run raised; both are
        recorded on the scheduler instead of propagating.
        """
        if self._run_lock.locked():
            self.triggers_skipped += 1
            self.logger.warning(f"Retention run already in flight, {source} trigger skipped")
            return None

        async with self._run_lock:
            self.runs_started += 1
            self.last_run_at = datetime.now(timezone.utc)
            self.logger.info(f"Retention run triggered by {source}")

            try:
                result = await self.job.run()
            except Exception as e:
                self.runs_failed += 1
                self.last_error = str(e)
                self.logger.error(f"Retention run triggered by {source} failed: {e}")
                return None

            self.runs_succeeded += 1
            failed = result.failed_accounts
            self.last_error = f"{len(failed)} accounts failed" if failed else None
            self.logger.info(f"Retention run finished: {result.records_deleted_by_age} deleted by age, "
                             f"{result.records_deleted_by_quota} by quota in {result.duration_seconds:.2f}s")
            return result

    def get_status(self) -> SchedulerStatus:
        now = datetime.now(timezone.utc)
        return SchedulerStatus(
            running=self.running,
            run_in_progress=self._run_lock.locked(),
            last_run_at=self.last_run_at,
            next_run_at=self._next_run_time(now) if self.running else None,
            runs_started=self.runs_started,
            runs_succeeded=self.runs_succeeded,
            runs_failed=self.runs_failed,
            triggers_skipped=self.triggers_skipped,
            last_error=self.last_error,
            uptime_seconds=(now - self._started_at).total_seconds() if self._started_at else 0.0,
        )

    async def run_manual_cleanup(self) -> Dict[str, Any]:
        """Run the job now, outside the schedule, and summarize the outcome."""
        was_busy = self._run_lock.locked()
        result = await self._trigger("manual request")

        if result is None:
            if was_busy:
                return {'success': False, 'skipped': True, 'error': 'Retention run already in progress'}
            return {'success': False, 'skipped': False, 'error': self.last_error}

        summary = result.to_dict()
        summary.update({'success': not result.failed_accounts, 'skipped': False})
        return summary
