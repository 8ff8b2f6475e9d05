"""Scheduler that fires named jobs once a day at a fixed local time."""

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Protocol

import structlog

from recurring_ledger.config import get_settings
from recurring_ledger.recurrence import local_now

logger = structlog.get_logger(__name__)

SCHEDULE_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class Job(Protocol):
    """A unit of work the scheduler fires on its daily schedule."""

    @property
    def name(self) -> str: ...

    @property
    def schedule(self) -> str: ...

    async def run(self, now: datetime | None = None) -> Any: ...


class JobPhase(str, Enum):
    """Lifecycle of a registered job."""

    IDLE = "idle"
    WAITING = "waiting"
    FIRING = "firing"
    STOPPED = "stopped"


@dataclass
class JobState:
    """Scheduler bookkeeping for one registered job."""

    job: Job
    fire_at: time | None  # None means the schedule was invalid
    phase: JobPhase = JobPhase.IDLE
    next_fire_at: datetime | None = None
    last_run_at: datetime | None = None
    runs: int = 0
    consecutive_failures: int = 0


def parse_schedule(schedule: str) -> time:
    """Parse a 24-hour ``"HH:MM"`` string.

    Raises:
        ValueError: If the string is not a valid time of day.
    """
    match = SCHEDULE_PATTERN.match(schedule.strip()) if schedule else None
    if match is None:
        raise ValueError(f"Invalid schedule {schedule!r}, expected HH:MM")
    return time(hour=int(match.group(1)), minute=int(match.group(2)))


def next_fire_time(fire_at: time, now: datetime) -> datetime:
    """Return the next occurrence of ``fire_at`` strictly after ``now``."""
    candidate = now.replace(
        hour=fire_at.hour, minute=fire_at.minute, second=0, microsecond=0
    )
    if candidate <= now:
        candidate = datetime.combine(
            candidate.date() + timedelta(days=1), fire_at, tzinfo=now.tzinfo
        )
    return candidate


def seconds_until(target: datetime, now: datetime) -> float:
    """Elapsed seconds from ``now`` to ``target``, correct across DST changes."""
    if target.tzinfo is not None and now.tzinfo is not None:
        # Same-tzinfo subtraction ignores offsets, so compare in UTC
        target, now = target.astimezone(timezone.utc), now.astimezone(timezone.utc)
    return (target - now).total_seconds()


class JobScheduler:
    """Runs each registered job on its own daily timer.

    The scheduler:
    1. Parses each job's "HH:MM" schedule on registration
    2. Owns one asyncio task per job, waiting for the next occurrence
    3. Recomputes the next occurrence from the clock after every firing
    4. Broadcasts a single shutdown event that every job task observes
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        fallback_interval: float | None = None,
    ):
        settings = get_settings()
        self._clock = clock or local_now
        self._fallback_interval = (
            fallback_interval or settings.scheduler_fallback_interval_seconds
        )

        self._jobs: dict[str, JobState] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._relay: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._is_running = False

        self._logger = logger.bind(component="scheduler")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._is_running

    @property
    def jobs(self) -> list[Job]:
        """Registered jobs in registration order."""
        return [state.job for state in self._jobs.values()]

    def register(self, job: Job) -> None:
        """Add a job to the schedule.

        An unparseable schedule does not reject the job; it is re-checked
        every fallback interval instead.

        Raises:
            ValueError: If a job with the same name is already registered.
            RuntimeError: If the scheduler is already running.
        """
        if self._is_running:
            raise RuntimeError("Cannot register jobs while the scheduler is running")
        if job.name in self._jobs:
            raise ValueError(f"Job {job.name!r} is already registered")

        try:
            fire_at: time | None = parse_schedule(job.schedule)
        except ValueError as e:
            self._logger.error(
                "invalid_schedule",
                job=job.name,
                schedule=job.schedule,
                fallback_seconds=self._fallback_interval,
                error=str(e),
            )
            fire_at = None

        state = JobState(job=job, fire_at=fire_at)
        state.next_fire_at = self._next_fire(state, self._clock())
        self._jobs[job.name] = state
        self._logger.info(
            "job_registered",
            job=job.name,
            schedule=job.schedule,
            next_fire_at=state.next_fire_at.isoformat(),
        )

    def _next_fire(self, state: JobState, now: datetime) -> datetime:
        if state.fire_at is None:
            return now + timedelta(seconds=self._fallback_interval)
        return next_fire_time(state.fire_at, now)

    def start(self, cancel: asyncio.Event | None = None) -> None:
        """Start one task per registered job.

        Must be called from inside a running event loop.

        Args:
            cancel: Optional external shutdown signal; setting it stops the
                scheduler the same way ``stop`` does, without waiting.
        """
        if self._is_running:
            self._logger.warning("scheduler_already_running")
            return

        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._is_running = True
        self._logger.info("scheduler_starting", jobs=len(self._jobs))

        settings = get_settings()
        for state in self._jobs.values():
            self._tasks.append(
                asyncio.create_task(
                    self._run_job(state, stop_event, run_first=settings.run_on_start),
                    name=f"job:{state.job.name}",
                )
            )

        if cancel is not None:
            self._relay = asyncio.create_task(self._relay_cancel(cancel))

    async def _relay_cancel(self, cancel: asyncio.Event) -> None:
        await cancel.wait()
        if self._stop_event is not None:
            self._logger.info("external_cancel_received")
            self._stop_event.set()

    async def stop(self, timeout: float | None = None) -> bool:
        """Signal every job task to stop and wait for them to exit.

        A job that is firing finishes its run first; tasks only observe the
        signal while waiting.

        Args:
            timeout: Seconds to wait for the tasks. Defaults to settings.

        Returns:
            True if every task exited within the timeout.
        """
        if not self._is_running or self._stop_event is None:
            return True

        if timeout is None:
            timeout = get_settings().scheduler_shutdown_timeout_seconds

        self._logger.info("scheduler_stopping", timeout=timeout)
        self._stop_event.set()

        if self._relay is not None:
            self._relay.cancel()
            self._relay = None

        pending: set[asyncio.Task[None]] = set()
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=timeout)

        if pending:
            self._logger.warning(
                "scheduler_stop_timed_out",
                pending=sorted(task.get_name() for task in pending),
            )
            return False

        self._tasks = []
        self._is_running = False
        self._logger.info("scheduler_stopped")
        return True

    async def wait_stopped(self) -> None:
        """Block until the shutdown signal has been broadcast."""
        if self._stop_event is not None:
            await self._stop_event.wait()

    async def _run_job(
        self, state: JobState, stop_event: asyncio.Event, run_first: bool = False
    ) -> None:
        """Wait, fire, recompute; until the shutdown signal is set."""
        job_logger = self._logger.bind(job=state.job.name)

        if run_first:
            await self._execute(state)

        while True:
            now = self._clock()
            state.next_fire_at = self._next_fire(state, now)
            state.phase = JobPhase.WAITING
            delay = max(seconds_until(state.next_fire_at, now), 0.0)
            job_logger.debug(
                "next_run_calculated",
                next_fire_at=state.next_fire_at.isoformat(),
                delay=round(delay, 3),
            )

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except TimeoutError:
                await self._execute(state)
                continue
            break

        state.phase = JobPhase.STOPPED
        job_logger.info("job_stopped")

    async def _execute(self, state: JobState) -> None:
        """Run a job once, absorbing any failure."""
        job = state.job
        state.phase = JobPhase.FIRING
        now = self._clock()
        loop = asyncio.get_running_loop()
        started = loop.time()
        self._logger.info("job_executing", job=job.name)

        try:
            result = await job.run(now)
        except Exception as e:
            state.consecutive_failures += 1
            self._logger.error(
                "job_failed",
                job=job.name,
                error=str(e),
                consecutive_failures=state.consecutive_failures,
                duration=round(loop.time() - started, 3),
            )
        else:
            state.consecutive_failures = 0
            self._logger.info(
                "job_completed",
                job=job.name,
                result=result.to_dict() if hasattr(result, "to_dict") else result,
                duration=round(loop.time() - started, 3),
            )
        finally:
            state.runs += 1
            state.last_run_at = now
            state.phase = JobPhase.WAITING if self._is_running else JobPhase.IDLE

    async def run_now(self, name: str) -> None:
        """Fire a registered job immediately, outside its schedule.

        Raises:
            KeyError: If no job has that name.
        """
        if name not in self._jobs:
            raise KeyError(f"Unknown job {name!r}")
        await self._execute(self._jobs[name])

    def get_status(self) -> dict[str, Any]:
        """Get current scheduler status.

        Returns:
            Status dictionary.
        """
        return {
            "is_running": self._is_running,
            "jobs": {
                name: {
                    "schedule": state.job.schedule,
                    "phase": state.phase.value,
                    "next_fire_at": state.next_fire_at.isoformat()
                    if state.next_fire_at
                    else None,
                    "last_run_at": state.last_run_at.isoformat()
                    if state.last_run_at
                    else None,
                    "runs": state.runs,
                    "consecutive_failures": state.consecutive_failures,
                }
                for name, state in self._jobs.items()
            },
        }
