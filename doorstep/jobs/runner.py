import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from doorstep.core.config import CRON_TZ
from doorstep.jobs.lock import JobLock, LockResult

log = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    name: str
    cron: str  # 5-field crontab expression
    lock_ttl_ms: int
    action: Callable[[], Awaitable[Any]]


class JobRunner:
    """
    Runs scheduled jobs under the distributed job lock.

    `run_job` is the unit that matters (lock, action, bookkeeping); the cron
    scheduler only decides when to call it.
    """

    def __init__(self, lock: JobLock, jobs: List[ScheduledJob], timezone_name: str = CRON_TZ,
                 scheduler: Optional[AsyncIOScheduler] = None):
        self.lock = lock
        self.jobs = {job.name: job for job in jobs}
        self.timezone_name = timezone_name
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone_name)
        self.last_runs: Dict[str, datetime] = {}
        self.last_errors: Dict[str, str] = {}
        self._startup_tasks: Set[asyncio.Task] = set()

    async def run_job(self, job: ScheduledJob) -> LockResult:
        async def guarded():
            self.last_runs[job.name] = datetime.now(timezone.utc)
            log.info(f"Running {job.name} job")
            try:
                result = await job.action()
            except Exception as exc:
                self.last_errors[job.name] = str(exc)
                log.exception(f"Error in {job.name} job")
                return None
            self.last_errors.pop(job.name, None)
            log.info(f"Completed {job.name} job")
            return result

        try:
            outcome = await self.lock.run(job.name, job.lock_ttl_ms, guarded)
        except Exception:
            log.exception(f"[{job.name}] Lock handling failed; run skipped")
            return LockResult(acquired=False)
        if not outcome.acquired:
            log.debug(f"[{job.name}] Skipped run; another instance holds the lock")
        return outcome

    async def run_by_name(self, name: str) -> LockResult:
        return await self.run_job(self.jobs[name])

    def start(self, run_immediately: bool = True) -> None:
        """Registers every job on its cron schedule and kicks each off once now."""
        for job in self.jobs.values():
            self.scheduler.add_job(
                self.run_job,
                CronTrigger.from_crontab(job.cron, timezone=self.timezone_name),
                args=[job],
                id=job.name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            log.info(f"Scheduled {job.name} with cron '{job.cron}' ({self.timezone_name})")
        self.scheduler.start()

        if run_immediately:
            for job in self.jobs.values():
                task = asyncio.create_task(self.run_job(job), name=f"startup-{job.name}")
                self._startup_tasks.add(task)
                task.add_done_callback(self._startup_tasks.discard)

    async def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        for task in list(self._startup_tasks):
            task.cancel()
        if self._startup_tasks:
            await asyncio.gather(*self._startup_tasks, return_exceptions=True)

    def status(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: {
                "cron": job.cron,
                "last_run": self.last_runs[name].isoformat() if name in self.last_runs else None,
                "last_error": self.last_errors.get(name),
            }
            for name, job in self.jobs.items()
        }
