"""JobRunner: one asyncio task per scheduled job, owned by the application lifespan.

Jobs run either on a fixed interval or once a day at a local wall-clock time.
A failing run is logged and the loop carries on; the runner never stops a job
because of its own errors.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo

import structlog

logger = structlog.get_logger(__name__)

JobFunc = Callable[[], Awaitable[object]]


@dataclass(frozen=True)
class ScheduledJob:
    name: str
    func: JobFunc
    interval_seconds: float | None = None
    daily_at: time | None = None  # local wall-clock time
    run_on_start: bool = False

    def __post_init__(self) -> None:
        if (self.interval_seconds is None) == (self.daily_at is None):
            raise ValueError(f"Job {self.name} needs exactly one of interval_seconds or daily_at")


def parse_clock(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def seconds_until_daily(at: time, tz: ZoneInfo, now: datetime) -> float:
    """Seconds from ``now`` to the next occurrence of ``at`` in ``tz``."""
    local_now = now.astimezone(tz)
    target = datetime.combine(local_now.date(), at, tzinfo=tz)
    if target <= local_now:
        target = datetime.combine(local_now.date() + timedelta(days=1), at, tzinfo=tz)
    return (target.astimezone(UTC) - now.astimezone(UTC)).total_seconds()


class JobRunner:
    """Usage:
        runner = JobRunner(jobs, tz=ZoneInfo("Europe/Paris"))
        runner.start()
        ...
        await runner.stop()
    """

    def __init__(self, jobs: list[ScheduledJob], tz: ZoneInfo, clock: Callable[[], datetime] | None = None):
        self.jobs = {job.name: job for job in jobs}
        self.tz = tz
        self.clock = clock or (lambda: datetime.now(UTC))
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def start(self) -> None:
        for job in self.jobs.values():
            if job.name not in self._tasks:
                self._tasks[job.name] = asyncio.create_task(self._loop(job), name=f"job:{job.name}")
        logger.info("job_runner_started", jobs=sorted(self.jobs))

    async def stop(self) -> None:
        for task in self._tasks.values():
            task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()
        logger.info("job_runner_stopped")

    async def run_once(self, name: str) -> bool:
        """Run a job immediately. Returns False if the run raised."""
        job = self.jobs[name]
        log = logger.bind(job=job.name)
        started = self.clock()
        try:
            result = await job.func()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("job_failed", error=str(exc), error_type=type(exc).__name__, exc_info=True)
            return False

        elapsed = (self.clock() - started).total_seconds()
        log.info("job_completed", result=result, elapsed_seconds=round(elapsed, 3))
        return True

    def next_delay(self, job: ScheduledJob) -> float:
        if job.interval_seconds is not None:
            return job.interval_seconds
        return seconds_until_daily(job.daily_at, self.tz, self.clock())

    async def _loop(self, job: ScheduledJob) -> None:
        if job.run_on_start:
            await self.run_once(job.name)
        while True:
            await asyncio.sleep(self.next_delay(job))
            await self.run_once(job.name)
