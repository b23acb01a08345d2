import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import pydantic

from watchkeeper.domain.instance import utcnow
from watchkeeper.domain.monitor import (
    CurrentState,
    HistoryEntry,
    HistoryStats,
    MonitorHistory,
    MonitorSnapshot,
    UptimeMonitor,
)
from watchkeeper.domain.trigger import IntervalTrigger
from watchkeeper.errors import NotFoundError
from watchkeeper.executors.probe import ProbeExecutor
from watchkeeper.recurrence import monitor_trigger
from watchkeeper.scheduler.registry import JobAction, JobRegistry
from watchkeeper.services.base import ScheduleController, validation_error
from watchkeeper.storages.protocol import Storage

logger = logging.getLogger(__name__)


class UptimeService(ScheduleController[UptimeMonitor]):
    """
    Uptime monitors: CRUD, scheduled and manual probes, rolling history.

    The latest result of every monitor is cached in `current_states`. The cache
    is never persisted: after a restart every monitor is "unknown" until its
    first probe completes.
    """
    group = "uptime"

    def __init__(self, registry: JobRegistry, storage: Storage, prober: Optional[ProbeExecutor] = None,
                 history_limit: int = 1000, probe_on_schedule: bool = True):
        super().__init__(registry, storage)
        self.prober: ProbeExecutor = prober or ProbeExecutor()
        self.history_limit = history_limit
        self.probe_on_schedule = probe_on_schedule
        self.current_states: Dict[str, CurrentState] = {}

    async def _load_entities(self) -> List[UptimeMonitor]:
        return await self.storage.list_monitors()

    def _trigger_for(self, entity: UptimeMonitor) -> IntervalTrigger:
        return monitor_trigger(entity.interval_minutes)

    def _run_immediately(self, entity: UptimeMonitor) -> bool:
        return self.probe_on_schedule

    def _schedule(self, entity: UptimeMonitor) -> None:
        self.current_states.setdefault(entity.id, CurrentState())
        super()._schedule(entity)

    async def reload_all(self) -> int:
        scheduled = await super().reload_all()
        live = set(self.registry.job_ids(self.group))
        for monitor_id in list(self.current_states):
            if monitor_id not in live:
                del self.current_states[monitor_id]
        return scheduled

    def _action_for(self, entity_id: str) -> JobAction:
        async def run_scheduled_check() -> None:
            monitor = await self.storage.get_monitor(entity_id)
            if monitor is None:
                logger.warning(f"Skipping scheduled check: monitor {entity_id} no longer exists")
                return
            await self._check(monitor, scheduled=True)

        return run_scheduled_check

    async def check_monitor(self, monitor: UptimeMonitor) -> CurrentState:
        """
        Probe a monitor now and record the outcome.

        The result is cached and appended to history only for scheduled
        monitors; a monitor that was deleted or never added is probed and its
        state returned, but nothing is kept.
        """
        return await self._check(monitor, scheduled=False)

    async def _check(self, monitor: UptimeMonitor, scheduled: bool) -> CurrentState:
        result = await self.prober.probe(monitor)
        state = CurrentState(status=result.status, last_check=utcnow(), response_time_ms=result.response_time_ms)

        if monitor.id not in self.current_states:
            # Only scheduled monitors are tracked; anything else was deleted or never stored
            if scheduled:
                logger.warning(f"Monitor {monitor.name} was deleted during its check, dropping the result")
            else:
                logger.info(f"Monitor {monitor.name} is not scheduled, result not recorded")
            return state

        self.current_states[monitor.id] = state
        await self.storage.append_history(
            monitor.id,
            HistoryEntry(timestamp=state.last_check, status=result.status, response_time_ms=result.response_time_ms),
            limit=self.history_limit,
        )
        latency = f"{result.response_time_ms}ms" if result.response_time_ms is not None else "no response"
        logger.info(f"Monitor {monitor.name}: {result.status.value.upper()} ({latency})")
        return state

    async def get_all_monitors(self) -> List[MonitorSnapshot]:
        return [
            MonitorSnapshot(**monitor.model_dump(), current_status=self.current_states.get(monitor.id, CurrentState()))
            for monitor in await self.storage.list_monitors()
        ]

    async def get_monitor(self, monitor_id: str) -> MonitorSnapshot:
        monitor = await self.storage.get_monitor(monitor_id)
        if monitor is None:
            raise NotFoundError("Monitor", monitor_id)
        return MonitorSnapshot(**monitor.model_dump(), current_status=self.current_states.get(monitor_id, CurrentState()))

    async def get_monitor_history(self, monitor_id: str, hours: float = 24) -> MonitorHistory:
        """
        Return the probe results of the last `hours` hours with uptime statistics.

        History outlives its monitor, so the monitor does not have to exist.
        """
        now = utcnow()
        cutoff = now - timedelta(hours=hours)
        entries = [
            entry for entry in await self.storage.get_history(monitor_id)
            if cutoff < entry.timestamp <= now
        ]
        return MonitorHistory(history=entries, stats=HistoryStats.from_entries(entries))

    async def add_monitor(self, data: Dict[str, Any]) -> UptimeMonitor:
        data = {k: v for k, v in data.items() if k != "id"}
        try:
            monitor = UptimeMonitor.model_validate(data)
        except pydantic.ValidationError as e:
            raise validation_error(e) from e
        await self.storage.put_monitor(monitor)
        self._schedule(monitor)
        return monitor

    async def update_monitor(self, monitor_id: str, updates: Dict[str, Any]) -> UptimeMonitor:
        """
        Apply a partial update and reschedule the monitor's probes.

        Raises:
            NotFoundError: If the monitor does not exist.
            ValidationError: If the updated monitor is invalid.
        """
        current = await self.storage.get_monitor(monitor_id)
        if current is None:
            raise NotFoundError("Monitor", monitor_id)
        try:
            candidate = UptimeMonitor.model_validate(self._merge(current, updates))
        except pydantic.ValidationError as e:
            raise validation_error(e) from e
        candidate.updated_at = utcnow()

        updated = await self.storage.update_monitor(monitor_id, lambda stored: candidate)
        if updated is None:
            raise NotFoundError("Monitor", monitor_id)
        self._unschedule(monitor_id)
        self._schedule(updated)
        return updated

    async def delete_monitor(self, monitor_id: str) -> None:
        self._unschedule(monitor_id)
        self.current_states.pop(monitor_id, None)
        if not await self.storage.delete_monitor(monitor_id):
            raise NotFoundError("Monitor", monitor_id)
        logger.info(f"Deleted monitor {monitor_id}")
