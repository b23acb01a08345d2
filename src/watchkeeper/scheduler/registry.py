import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Set

from watchkeeper.domain.trigger import BaseTrigger

logger = logging.getLogger(__name__)

JobAction = Callable[[], Awaitable[None]]


class ScheduledJob:
    """
    A recurring trigger bound to one entity's action.

    The job owns a loop task that sleeps until the next firing time. Each firing
    spawns the action as a separate run task, so cancelling the job only stops
    future firings and never interrupts a run in progress.
    """

    def __init__(self, entity_id: str, trigger: BaseTrigger, action: JobAction,
                 group: Optional[str], runs: Set[asyncio.Task]):
        self.entity_id = entity_id
        self.trigger = trigger
        self.action = action
        self.group = group
        self.fire_count: int = 0
        self.next_fire_time: Optional[datetime] = None
        self.cancelled: bool = False
        self._runs = runs
        self._current_run: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._current_run is not None and not self._current_run.done()

    def start(self, run_immediately: bool = False) -> None:
        self._loop_task = asyncio.create_task(self._loop(run_immediately), name=f"job:{self.entity_id}")

    def cancel(self) -> None:
        self.cancelled = True
        self.next_fire_time = None
        if self._loop_task and not self._loop_task.done():
            self._loop_task.cancel()

    async def _loop(self, run_immediately: bool) -> None:
        try:
            if run_immediately:
                self._fire()
            while not self.cancelled:
                now = datetime.now(timezone.utc)
                self.next_fire_time = self.trigger.next_fire_time(now)
                delay = (self.next_fire_time - now).total_seconds()
                await asyncio.sleep(max(delay, 0))
                if not self.cancelled:
                    self._fire()
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception(f"Scheduler loop for {self.entity_id} stopped unexpectedly")

    def _fire(self) -> None:
        if self.is_running:
            logger.warning(f"Previous run for {self.entity_id} is still in progress, skipping this firing")
            return
        self.fire_count += 1
        run = asyncio.create_task(self._run(), name=f"run:{self.entity_id}:{self.fire_count}")
        self._current_run = run
        self._runs.add(run)
        run.add_done_callback(self._runs.discard)

    async def _run(self) -> None:
        try:
            await self.action()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Scheduled run for {self.entity_id} failed")


class JobRegistry:
    """
    Tracks the live recurring job of every entity, keyed by entity id.

    All mutating methods are synchronous and never await, so they are atomic with
    respect to the event loop and can safely be called from inside a running
    action, including to reschedule the action's own entity.
    """

    def __init__(self):
        self._jobs: Dict[str, ScheduledJob] = {}
        self._runs: Set[asyncio.Task] = set()

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def get(self, entity_id: str) -> Optional[ScheduledJob]:
        return self._jobs.get(entity_id)

    def job_ids(self, group: Optional[str] = None) -> List[str]:
        return [job_id for job_id, job in self._jobs.items() if group is None or job.group == group]

    def schedule(self, entity_id: str, trigger: BaseTrigger, action: JobAction,
                 group: Optional[str] = None, run_immediately: bool = False) -> ScheduledJob:
        """
        Register a recurring action for an entity, replacing any existing job.

        Must be called from within a running event loop.
        """
        self.cancel(entity_id)
        job = ScheduledJob(entity_id, trigger, action, group, self._runs)
        self._jobs[entity_id] = job
        job.start(run_immediately)
        logger.debug(f"Scheduled {entity_id}: {trigger.format_trigger()}")
        return job

    def cancel(self, entity_id: str) -> bool:
        job = self._jobs.pop(entity_id, None)
        if job is None:
            return False
        job.cancel()
        return True

    def cancel_all(self, group: Optional[str] = None) -> int:
        job_ids = self.job_ids(group)
        for job_id in job_ids:
            self.cancel(job_id)
        return len(job_ids)

    async def wait_idle(self) -> None:
        """
        Wait until every run spawned so far has finished.
        """
        while self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    async def stop(self) -> None:
        self.cancel_all()
        await self.wait_idle()
