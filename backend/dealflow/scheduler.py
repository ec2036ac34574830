"""Interval job scheduler.

APScheduler drives a periodic ``tick``; each tick starts every job that is
enabled, not already running and due. Jobs run as asyncio tasks, concurrently
with each other but never with themselves. Run statistics are kept per job
and written through to the record store under ``job:{name}``.
"""

import asyncio
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dealflow.core.exceptions import AllSourcesFailedError, NotFoundError, StoreWriteError
from dealflow.domain.offers import utcnow
from dealflow.sources.base import DEFAULT_REQUEST_TIMEOUT, FetchContext
from dealflow.stores.base import JOB_PREFIX, RecordStore

logger = structlog.get_logger(__name__)

JobHandler = Callable[[FetchContext], Awaitable[Any]]

TICK_JOB_ID = "dealflow-scheduler-tick"


def _source_errors(outcome: Any) -> Dict[str, str]:
    """Per-source failure messages from a pipeline run's stats or its exception."""
    if isinstance(outcome, AllSourcesFailedError):
        return dict(outcome.errors)
    if isinstance(outcome, dict):
        return {
            name: source["error"]
            for name, source in outcome.get("source_stats", {}).items()
            if not source.get("ok", True)
        }
    return {}


@dataclass
class JobStats:
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    last_error: Optional[str] = None
    avg_run_time_ms: float = 0.0
    source_errors: Dict[str, str] = field(default_factory=dict)

    def record(
        self,
        success: bool,
        run_time_ms: float,
        error: Optional[str] = None,
        source_errors: Optional[Dict[str, str]] = None,
    ) -> None:
        """Account for one completed run.

        ``source_errors`` replaces the previous run's per-source failures, so a
        source failing next to healthy ones stays visible on a successful run.
        """
        self.source_errors = dict(source_errors or {})
        self.total_runs += 1
        if success:
            self.successful_runs += 1
        else:
            self.failed_runs += 1
            self.last_error = error
        n = self.total_runs
        self.avg_run_time_ms = (self.avg_run_time_ms * (n - 1) + run_time_ms) / n

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "JobStats":
        return cls(
            total_runs=int(record.get("total_runs", 0)),
            successful_runs=int(record.get("successful_runs", 0)),
            failed_runs=int(record.get("failed_runs", 0)),
            last_error=record.get("last_error"),
            avg_run_time_ms=float(record.get("avg_run_time_ms", 0.0)),
            source_errors=dict(record.get("source_errors") or {}),
        )


@dataclass
class Job:
    name: str
    interval: timedelta
    handler: JobHandler
    enabled: bool = True
    running: bool = False
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    stats: JobStats = field(default_factory=JobStats)

    def is_due(self, now: datetime) -> bool:
        return (
            self.enabled
            and not self.running
            and self.next_run is not None
            and self.next_run <= now
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_minutes": self.interval.total_seconds() / 60,
            "enabled": self.enabled,
            "running": self.running,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "stats": self.stats.to_record(),
        }


class Scheduler:
    """Owns the set of recurring jobs and their run statistics."""

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        tick_interval_seconds: int = 60,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize scheduler.

        Args:
            store: Record store for job statistics (optional)
            tick_interval_seconds: Seconds between two ticks once started
            request_timeout: Per-request timeout handed to job handlers
            clock: Source of the current time, for next_run bookkeeping
        """
        self.store = store
        self.tick_interval_seconds = tick_interval_seconds
        self.request_timeout = request_timeout
        self._clock = clock
        self._jobs: Dict[str, Job] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._cancel_event = asyncio.Event()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self.logger = logger.bind(service="scheduler")

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def __contains__(self, name: str) -> bool:
        return name in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    # ------------------------------------------------------------------
    # Job table
    # ------------------------------------------------------------------

    def register_job(
        self,
        name: str,
        interval_minutes: float,
        handler: JobHandler,
        enabled: bool = True,
    ) -> Optional[Job]:
        """Register a recurring job; it becomes due immediately.

        Returns:
            The new Job, or None if a job with that name already exists
        """
        if name in self._jobs:
            self.logger.warning("job_already_exists", job=name)
            return None

        job = Job(
            name=name,
            interval=timedelta(minutes=interval_minutes),
            handler=handler,
            enabled=enabled,
            next_run=self._clock(),
        )
        self._jobs[name] = job
        self.logger.info(
            "job_registered",
            job=name,
            interval_minutes=interval_minutes,
            enabled=enabled,
        )
        return job

    def unregister_job(self, name: str) -> bool:
        if self._jobs.pop(name, None) is None:
            self.logger.warning("job_not_found", job=name)
            return False
        self.logger.info("job_unregistered", job=name)
        return True

    def get_job(self, name: str) -> Job:
        job = self._jobs.get(name)
        if job is None:
            raise NotFoundError("Job", name)
        return job

    def set_enabled(self, name: str, enabled: bool) -> None:
        self.get_job(name).enabled = enabled
        self.logger.info("job_enabled_changed", job=name, enabled=enabled)

    def trigger(self, name: str) -> bool:
        """Make a job due now; the next tick picks it up.

        Returns:
            False if the job is already running (the request is ignored)

        Raises:
            NotFoundError: If no job has that name
        """
        job = self.get_job(name)
        if job.running:
            self.logger.info("job_trigger_ignored", job=name, reason="running")
            return False
        job.next_run = self._clock()
        self.logger.info("job_triggered", job=name)
        return True

    async def load_stats(self) -> int:
        """Restore persisted statistics for registered jobs."""
        if self.store is None:
            return 0
        restored = 0
        for key, record in await self.store.scan(JOB_PREFIX):
            job = self._jobs.get(key[len(JOB_PREFIX):])
            if job is not None:
                job.stats = JobStats.from_record(record.get("stats", {}))
                restored += 1
        return restored

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def tick(self) -> List[str]:
        """Start every due job as its own task.

        Returns:
            Names of the jobs started by this tick
        """
        now = self._clock()
        started = []
        for job in list(self._jobs.values()):
            if not job.is_due(now):
                continue
            job.running = True
            task = asyncio.create_task(self._execute(job), name=f"job:{job.name}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(job.name)

        if started:
            self.logger.debug("scheduler_tick", started=started)
        return started

    async def run_job(self, name: str) -> bool:
        """Run a job to completion right away, outside the tick loop.

        Returns:
            True if the handler succeeded, False if it failed or was already running
        """
        job = self.get_job(name)
        if job.running:
            return False
        job.running = True
        return await self._execute(job)

    async def _execute(self, job: Job) -> bool:
        log = self.logger.bind(job=job.name)
        ctx = FetchContext(timeout=self.request_timeout, cancel_event=self._cancel_event)
        started = time.monotonic()
        success = False
        error: Optional[str] = None
        source_errors: Dict[str, str] = {}

        log.info("job_started")
        try:
            source_errors = _source_errors(await job.handler(ctx))
            success = True
        except Exception as e:
            error = str(e) or type(e).__name__
            source_errors = _source_errors(e)
            log.error("job_failed", error=error, error_type=type(e).__name__)
        finally:
            run_time_ms = (time.monotonic() - started) * 1000
            now = self._clock()
            job.stats.record(success, run_time_ms, error, source_errors)
            job.last_run = now
            job.next_run = now + job.interval
            job.running = False

        if success:
            log.info("job_completed", run_time_ms=round(run_time_ms, 2))
        await self._persist(job)
        return success

    async def _persist(self, job: Job) -> None:
        if self.store is None:
            return
        record = {
            "name": job.name,
            "last_run": job.last_run.isoformat() if job.last_run else None,
            "next_run": job.next_run.isoformat() if job.next_run else None,
            "stats": job.stats.to_record(),
        }
        try:
            await self.store.put(f"{JOB_PREFIX}{job.name}", record)
        except StoreWriteError as e:
            self.logger.warning("job_stats_persist_failed", job=job.name, error=str(e))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start ticking. Must be called from within the running event loop."""
        if self._scheduler is not None:
            self.logger.warning("scheduler_already_running")
            return

        self._cancel_event = asyncio.Event()
        scheduler = AsyncIOScheduler(timezone="UTC", event_loop=asyncio.get_running_loop())
        scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.tick_interval_seconds, timezone="UTC"),
            id=TICK_JOB_ID,
            name="Scheduler tick",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        scheduler.start()
        self._scheduler = scheduler
        self.logger.info(
            "scheduler_started",
            jobs=len(self._jobs),
            tick_interval_seconds=self.tick_interval_seconds,
        )

    async def stop(self, cancel: bool = False) -> None:
        """Stop ticking and wait for in-flight handlers.

        Args:
            cancel: Also signal cooperative cancellation to running handlers
        """
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        if cancel:
            self._cancel_event.set()

        in_flight = list(self._tasks)
        if in_flight:
            self.logger.info("scheduler_draining", tasks=len(in_flight), cancel=cancel)
            await asyncio.gather(*in_flight, return_exceptions=True)
        self.logger.info("scheduler_stopped")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def job_status(self, name: str) -> Optional[Dict[str, Any]]:
        job = self._jobs.get(name)
        return job.describe() if job is not None else None

    def all_jobs_status(self) -> List[Dict[str, Any]]:
        return [job.describe() for job in self._jobs.values()]
