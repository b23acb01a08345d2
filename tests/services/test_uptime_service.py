import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import List

import pytest
import pytest_asyncio

from watchkeeper.domain.monitor import HistoryEntry, MonitorStatus, ProbeResult, UptimeMonitor
from watchkeeper.domain.trigger import IntervalTrigger
from watchkeeper.errors import NotFoundError, ValidationError
from watchkeeper.executors.probe import ProbeExecutor
from watchkeeper.scheduler.registry import JobRegistry
from watchkeeper.services.uptime import UptimeService
from watchkeeper.storages.json_file import JsonFileStorage


class ScriptedProber(ProbeExecutor):
    """
    Returns queued results, then repeats the last one.
    """

    def __init__(self, results: List[ProbeResult] = None, delay: float = 0.0):
        super().__init__()
        self.results = list(results or [ProbeResult(is_up=True, response_time_ms=12)])
        self.delay = delay
        self.calls = 0

    async def probe(self, monitor: UptimeMonitor) -> ProbeResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class FastUptimeService(UptimeService):
    """
    One "minute" of monitor interval lasts 100 ms.
    """

    def _trigger_for(self, entity: UptimeMonitor) -> IntervalTrigger:
        return IntervalTrigger(interval=timedelta(milliseconds=100 * entity.interval_minutes))


@pytest.fixture(scope="function")
def storage(tmp_path) -> JsonFileStorage:
    return JsonFileStorage(tmp_path / "data")


@pytest_asyncio.fixture(scope="function")
async def registry():
    registry = JobRegistry()
    yield registry
    await registry.stop()


@pytest.fixture(scope="function")
def prober() -> ScriptedProber:
    return ScriptedProber()


@pytest.fixture(scope="function")
def service(registry: JobRegistry, storage: JsonFileStorage, prober: ScriptedProber) -> UptimeService:
    return UptimeService(registry, storage, prober)


@pytest.fixture(scope="function")
def fast_service(registry: JobRegistry, storage: JsonFileStorage, prober: ScriptedProber) -> FastUptimeService:
    return FastUptimeService(registry, storage, prober)


def monitor_data(**overrides) -> dict:
    data = {"name": "web", "host": "example.local", "port": 8080, "type": "http", "interval": 5, "path": "/health"}
    data.update(overrides)
    return data


@pytest.mark.asyncio
async def test_add_monitor_probes_immediately(service: UptimeService, registry: JobRegistry,
                                              storage: JsonFileStorage) -> None:
    monitor = await service.add_monitor(monitor_data())

    job = registry.get(monitor.id)
    assert job.trigger.interval == timedelta(minutes=5)
    assert job.group == "uptime"

    await asyncio.sleep(0.05)
    await registry.wait_idle()

    snapshot = await service.get_monitor(monitor.id)
    assert snapshot.current_status.status == MonitorStatus.UP
    assert snapshot.current_status.response_time_ms == 12
    assert snapshot.current_status.last_check is not None
    history = await storage.get_history(monitor.id)
    assert [h.status for h in history] == [MonitorStatus.UP]


@pytest.mark.asyncio
async def test_status_unknown_until_first_probe(registry: JobRegistry, storage: JsonFileStorage,
                                                prober: ScriptedProber) -> None:
    service = UptimeService(registry, storage, prober, probe_on_schedule=False)
    monitor = await service.add_monitor(monitor_data())

    monitors = await service.get_all_monitors()

    assert [m.id for m in monitors] == [monitor.id]
    assert monitors[0].current_status.status == MonitorStatus.UNKNOWN
    assert monitors[0].current_status.last_check is None
    assert prober.calls == 0


@pytest.mark.asyncio
async def test_initialize_after_restart(registry: JobRegistry, storage: JsonFileStorage,
                                        prober: ScriptedProber) -> None:
    monitor = UptimeMonitor(name="nas", host="10.0.0.5", port=445, protocol="tcp")
    await storage.put_monitor(monitor)
    await storage.append_history(monitor.id, HistoryEntry(status=MonitorStatus.DOWN))
    service = UptimeService(registry, storage, prober, probe_on_schedule=False)

    await service.initialize()

    assert monitor.id in registry
    # The persisted history does not restore the current status
    assert (await service.get_monitor(monitor.id)).current_status.status == MonitorStatus.UNKNOWN


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"port": 70000},
    {"interval": 0},
    {"interval": 2000},
    {"path": "health"},
    {"type": "icmp"},
    {"host": ""},
])
async def test_add_monitor_validation(service: UptimeService, registry: JobRegistry, overrides: dict) -> None:
    with pytest.raises(ValidationError):
        await service.add_monitor(monitor_data(**overrides))

    assert len(registry) == 0


@pytest.mark.asyncio
async def test_check_monitor_records_result(registry: JobRegistry, storage: JsonFileStorage,
                                            prober: ScriptedProber) -> None:
    service = UptimeService(registry, storage, prober, probe_on_schedule=False)
    monitor = await service.add_monitor({"name": "db", "host": "10.0.0.9", "port": 5432, "type": "tcp"})
    prober.results = [ProbeResult(is_up=False)]

    state = await service.check_monitor(monitor)

    assert state.status == MonitorStatus.DOWN
    assert state.response_time_ms is None
    assert service.current_states[monitor.id] == state
    history = await storage.get_history(monitor.id)
    assert len(history) == 1
    assert history[0].status == MonitorStatus.DOWN


@pytest.mark.asyncio
async def test_check_unknown_monitor_keeps_nothing(service: UptimeService, storage: JsonFileStorage,
                                                   prober: ScriptedProber) -> None:
    prober.results = [ProbeResult(is_up=False)]
    monitor = UptimeMonitor(name="db", host="10.0.0.9", port=5432, protocol="tcp")

    state = await service.check_monitor(monitor)

    assert state.status == MonitorStatus.DOWN
    assert prober.calls == 1
    assert monitor.id not in service.current_states
    assert await storage.get_history(monitor.id) == []


@pytest.mark.asyncio
async def test_check_deleted_monitor_keeps_nothing(registry: JobRegistry, storage: JsonFileStorage,
                                                   prober: ScriptedProber) -> None:
    service = UptimeService(registry, storage, prober, probe_on_schedule=False)
    monitor = await service.add_monitor(monitor_data())
    await service.delete_monitor(monitor.id)

    await service.check_monitor(monitor)

    assert service.current_states == {}
    assert await storage.get_history(monitor.id) == []


@pytest.mark.asyncio
async def test_history_is_bounded(registry: JobRegistry, storage: JsonFileStorage, prober: ScriptedProber) -> None:
    service = UptimeService(registry, storage, prober, history_limit=3, probe_on_schedule=False)
    monitor = await service.add_monitor({"name": "db", "host": "10.0.0.9", "port": 5432, "type": "tcp"})

    for _ in range(5):
        await service.check_monitor(monitor)

    assert len(await storage.get_history(monitor.id)) == 3


@pytest.mark.asyncio
async def test_invalid_stored_monitor_does_not_block_others(registry: JobRegistry, storage: JsonFileStorage,
                                                            prober: ScriptedProber, caplog) -> None:
    # Older versions accepted any whole number of minutes
    storage.monitors_file.write_text(json.dumps([
        {"id": "1", "name": "nas", "host": "10.0.0.5", "port": 445, "type": "tcp", "interval": 5},
        {"id": "2", "name": "slow", "host": "10.0.0.6", "port": 22, "type": "tcp", "interval": 2000},
    ]))
    service = UptimeService(registry, storage, prober, probe_on_schedule=False)

    await service.initialize()

    assert registry.job_ids("uptime") == ["1"]
    assert [m.id for m in await service.get_all_monitors()] == ["1"]
    assert "Ignoring invalid stored UptimeMonitor '2'" in caplog.text
    with pytest.raises(NotFoundError):
        await service.get_monitor("2")

    await service.delete_monitor("2")
    assert [m["id"] for m in json.loads(storage.monitors_file.read_text())] == ["1"]


@pytest.mark.asyncio
async def test_history_window(service: UptimeService, storage: JsonFileStorage) -> None:
    now = datetime.now(timezone.utc)
    await storage.append_history("mon_1", HistoryEntry(timestamp=now - timedelta(hours=25), status=MonitorStatus.DOWN))
    await storage.append_history(
        "mon_1", HistoryEntry(timestamp=now - timedelta(hours=1), status=MonitorStatus.UP, response_time_ms=30)
    )

    result = await service.get_monitor_history("mon_1", 24)

    assert len(result.history) == 1
    assert result.history[0].status == MonitorStatus.UP
    assert result.stats.uptime_percentage == 100.0
    assert result.stats.total_checks == 1
    assert result.stats.avg_response_time == 30

    wider = await service.get_monitor_history("mon_1", 48)
    assert wider.stats.total_checks == 2
    assert wider.stats.uptime_percentage == 50.0


@pytest.mark.asyncio
async def test_history_window_empty(service: UptimeService) -> None:
    result = await service.get_monitor_history("mon_unknown", 24)

    assert result.history == []
    assert result.stats.uptime_percentage == 0
    assert result.stats.avg_response_time is None


@pytest.mark.asyncio
async def test_state_follows_latest_probe(fast_service: FastUptimeService, registry: JobRegistry,
                                          prober: ScriptedProber) -> None:
    prober.results = [ProbeResult(is_up=True, response_time_ms=5), ProbeResult(is_up=False)]
    monitor = await fast_service.add_monitor(monitor_data(interval=1))

    await asyncio.sleep(0.25)

    snapshot = await fast_service.get_monitor(monitor.id)
    assert snapshot.current_status.status == MonitorStatus.DOWN
    history = await fast_service.get_monitor_history(monitor.id, 1)
    assert history.history[0].status == MonitorStatus.UP
    assert history.history[-1].status == MonitorStatus.DOWN


@pytest.mark.asyncio
async def test_delete_monitor_stops_probes(fast_service: FastUptimeService, registry: JobRegistry,
                                           storage: JsonFileStorage) -> None:
    monitor = await fast_service.add_monitor(monitor_data(interval=1))
    await asyncio.sleep(0.25)

    await fast_service.delete_monitor(monitor.id)
    await registry.wait_idle()
    count = len(await storage.get_history(monitor.id))
    # Wait past several intervals
    await asyncio.sleep(0.4)

    assert count >= 2
    assert len(await storage.get_history(monitor.id)) == count
    assert monitor.id not in registry
    assert monitor.id not in fast_service.current_states
    with pytest.raises(NotFoundError):
        await fast_service.get_monitor(monitor.id)
    with pytest.raises(NotFoundError):
        await fast_service.delete_monitor(monitor.id)


@pytest.mark.asyncio
async def test_result_of_deleted_monitor_is_dropped(registry: JobRegistry, storage: JsonFileStorage) -> None:
    prober = ScriptedProber(delay=0.2)
    service = UptimeService(registry, storage, prober)
    monitor = await service.add_monitor(monitor_data())

    # The immediate probe is still in flight
    await asyncio.sleep(0.05)
    await service.delete_monitor(monitor.id)
    await registry.wait_idle()

    assert prober.calls == 1
    assert await storage.get_history(monitor.id) == []


@pytest.mark.asyncio
async def test_update_interval_replaces_trigger(fast_service: FastUptimeService, registry: JobRegistry,
                                                storage: JsonFileStorage) -> None:
    monitor = await fast_service.add_monitor(monitor_data(interval=1))
    await asyncio.sleep(0.55)
    fast_job = registry.get(monitor.id)

    updated = await fast_service.update_monitor(monitor.id, {"interval": 5})
    await asyncio.sleep(0.55)
    slow_job = registry.get(monitor.id)

    assert updated.interval_minutes == 5
    assert updated.updated_at is not None
    assert registry.get(monitor.id).trigger.interval == timedelta(milliseconds=500)
    # Every 100 ms plus the immediate probe, then the immediate probe plus one at 500 ms
    assert fast_job.cancelled
    assert fast_job.fire_count >= 5
    assert 1 <= slow_job.fire_count <= 2


@pytest.mark.asyncio
async def test_update_monitor_partial(service: UptimeService, registry: JobRegistry) -> None:
    monitor = await service.add_monitor(monitor_data())

    updated = await service.update_monitor(monitor.id, {"port": 9090, "id": "mon_hijack"})

    assert updated.id == monitor.id
    assert updated.port == 9090
    assert updated.host == monitor.host
    assert updated.created_at == monitor.created_at
    assert registry.get(monitor.id).trigger.interval == timedelta(minutes=5)


@pytest.mark.asyncio
async def test_update_monitor_errors(service: UptimeService) -> None:
    with pytest.raises(NotFoundError):
        await service.update_monitor("mon_missing", {"port": 80})

    monitor = await service.add_monitor(monitor_data())
    with pytest.raises(ValidationError):
        await service.update_monitor(monitor.id, {"port": 0})
