"""Scheduler - fires the notification jobs on their local-time triggers."""

import asyncio
import logging
from datetime import datetime, time, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from gateway.core.config import SchedulerConfig, settings
from gateway.core.errors import UnknownJob
from gateway.services.jobs import DAILY_RESET, EXPIRY_CHECK, USAGE_CHECK, JobResult, create_job_runner

logger = logging.getLogger(__name__)


class DailyTrigger:
    """Fires once a day at a fixed local wall-clock time"""

    def __init__(self, hour: int, minute: int = 0):
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(f"Invalid time of day: {hour}:{minute}")
        self.hour = hour
        self.minute = minute

    @classmethod
    def parse(cls, value: str) -> "DailyTrigger":
        """Parse 'HH:MM'"""
        try:
            hour, minute = value.strip().split(":")
            return cls(int(hour), int(minute))
        except ValueError:
            raise ValueError(f"Invalid time of day '{value}', expected HH:MM")

    def next_fire_time(self, now: datetime) -> datetime:
        candidate = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    def __repr__(self):
        return f"DailyTrigger({self.hour:02d}:{self.minute:02d})"


class IntervalTrigger:
    """Fires every `hours` hours counted from local midnight, restarting each day"""

    def __init__(self, hours: int):
        if hours <= 0:
            raise ValueError("Interval must be a positive number of hours")
        self.hours = hours

    def next_fire_time(self, now: datetime) -> datetime:
        midnight = datetime.combine(now.date(), time.min)
        next_midnight = midnight + timedelta(days=1)
        step = timedelta(hours=self.hours)
        candidate = midnight
        while candidate <= now:
            candidate += step
        return min(candidate, next_midnight)

    def __repr__(self):
        return f"IntervalTrigger({self.hours}h)"


class Scheduler:
    """
    Runs each job on its own trigger.

    Every job gets an independent background loop. When a trigger fires the
    loop spawns a separate task for that run, bounded by
    job_timeout_seconds, and goes straight back to waiting for the next
    fire time. A failed, slow or hung run is logged and never delays the
    next trigger of any job.

    Usage:
        scheduler = Scheduler(settings.scheduler_config(), create_job_runner(settings))
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        config: SchedulerConfig,
        runner: Callable[[str], Awaitable[JobResult]],
        now: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self._runner = runner
        self._now = now
        self.triggers: Dict[str, Any] = {
            DAILY_RESET: DailyTrigger.parse(config.daily_reset_time),
            EXPIRY_CHECK: DailyTrigger.parse(config.expiry_check_time),
            USAGE_CHECK: IntervalTrigger(config.usage_check_interval_hours),
        }
        self._loops: List[asyncio.Task] = []
        self._runs: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return bool(self._loops)

    async def run_job(self, name: str) -> JobResult:
        """Run one job now, bounded by job_timeout_seconds"""
        if name not in self.triggers:
            raise UnknownJob(f"Unknown job: {name}")
        logger.info(f"run_job: Entry - {name}")
        result = await asyncio.wait_for(self._runner(name), timeout=self.config.job_timeout_seconds)
        logger.info(f"run_job: Success - {result}")
        return result

    async def _guarded_run(self, name: str):
        try:
            await self.run_job(name)
        except asyncio.TimeoutError:
            logger.error(f"_guarded_run: Failure - {name} timed out after {self.config.job_timeout_seconds}s")
        except asyncio.CancelledError:
            logger.warning(f"_guarded_run: Cancelled - {name}")
            raise
        except Exception as e:
            logger.exception(f"_guarded_run: Failure - {name}: {e}")

    def spawn(self, name: str) -> asyncio.Task:
        """Start one run of `name` in its own task"""
        task = asyncio.create_task(self._guarded_run(name), name=f"job:{name}")
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def _loop(self, name: str, trigger):
        fire_at = trigger.next_fire_time(self._now())
        logger.info(f"_loop: {name} next run at {fire_at.isoformat()}")
        while True:
            # asyncio.sleep follows the monotonic clock; re-check the wall
            # clock after waking in case it was stepped back meanwhile
            delay = (fire_at - self._now()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
                continue
            self.spawn(name)
            # Never fire the same slot twice if the sleep woke slightly early
            fire_at = trigger.next_fire_time(max(self._now(), fire_at))
            logger.info(f"_loop: {name} next run at {fire_at.isoformat()}")

    async def start(self):
        if self._loops:
            logger.warning("start: Scheduler already running")
            return
        for name, trigger in self.triggers.items():
            self._loops.append(asyncio.create_task(self._loop(name, trigger), name=f"loop:{name}"))
        logger.info(f"start: Scheduler started - {self.triggers}")

    async def stop(self):
        tasks = self._loops + list(self._runs)
        if not tasks:
            return
        logger.info("stop: Scheduler stopping")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops = []
        self._runs.clear()
        logger.info("stop: Scheduler stopped")


_scheduler_instance: Optional[Scheduler] = None


def get_scheduler() -> Scheduler:
    """Get the process-wide Scheduler instance"""
    global _scheduler_instance
    if _scheduler_instance is None:
        _scheduler_instance = Scheduler(settings.scheduler_config(), create_job_runner(settings))
    return _scheduler_instance
