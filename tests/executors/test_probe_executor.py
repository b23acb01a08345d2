import asyncio
import socket
import time

import aiohttp
import pytest
import pytest_asyncio
from aioresponses import aioresponses

from watchkeeper.domain.monitor import UptimeMonitor
from watchkeeper.errors import ProbeFailure
from watchkeeper.executors.probe import ProbeExecutor


@pytest.fixture(scope="function")
def prober() -> ProbeExecutor:
    return ProbeExecutor(timeout=1.0)


@pytest_asyncio.fixture(scope="function")
async def tcp_server():
    async def handle(reader, writer):
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    yield server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()


def closed_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def http_monitor(protocol: str = "http", path: str = "/health") -> UptimeMonitor:
    return UptimeMonitor(name="web", host="example.local", port=8080, protocol=protocol, path=path)


@pytest.mark.asyncio
async def test_tcp_open_port(prober: ProbeExecutor, tcp_server: int) -> None:
    monitor = UptimeMonitor(name="local", host="127.0.0.1", port=tcp_server, protocol="tcp")

    result = await prober.probe(monitor)

    assert result.is_up is True
    assert isinstance(result.response_time_ms, int)
    assert result.response_time_ms >= 0


@pytest.mark.asyncio
async def test_tcp_closed_port(prober: ProbeExecutor) -> None:
    monitor = UptimeMonitor(name="closed", host="127.0.0.1", port=closed_port(), protocol="tcp")

    start = time.monotonic()
    result = await prober.probe(monitor)
    elapsed = time.monotonic() - start

    assert result.is_up is False
    assert result.response_time_ms is None
    assert elapsed <= prober.timeout + 0.5


@pytest.mark.asyncio
async def test_tcp_timeout(monkeypatch) -> None:
    prober = ProbeExecutor(timeout=0.2)

    async def never_connects(host, port):
        await asyncio.sleep(10)

    monkeypatch.setattr(asyncio, "open_connection", never_connects)
    monitor = UptimeMonitor(name="slow", host="10.255.255.1", port=22, protocol="tcp")

    start = time.monotonic()
    result = await prober.probe(monitor)

    assert result.is_up is False
    assert result.response_time_ms is None
    assert time.monotonic() - start < 0.2 + 0.5


@pytest.mark.asyncio
@pytest.mark.parametrize("status,is_up", [
    (200, True),
    (204, True),
    (301, True),
    (399, True),
    (404, False),
    (500, False),
    (503, False),
])
async def test_http_status(prober: ProbeExecutor, status: int, is_up: bool) -> None:
    with aioresponses() as m:
        m.get("http://example.local:8080/health", status=status)

        result = await prober.probe(http_monitor())

    assert result.is_up is is_up
    if is_up:
        assert result.response_time_ms is not None
    else:
        assert result.response_time_ms is None


@pytest.mark.asyncio
async def test_https_url(prober: ProbeExecutor) -> None:
    with aioresponses() as m:
        m.get("https://example.local:8080/", status=204)

        result = await prober.probe(http_monitor("https", "/"))

    assert result.is_up is True


@pytest.mark.asyncio
@pytest.mark.parametrize("exception", [
    asyncio.TimeoutError(),
    aiohttp.ClientConnectionError("Connection refused"),
])
async def test_http_errors_are_down(prober: ProbeExecutor, exception: Exception) -> None:
    with aioresponses() as m:
        m.get("http://example.local:8080/health", exception=exception)

        result = await prober.probe(http_monitor())

    assert result.is_up is False
    assert result.response_time_ms is None


@pytest.mark.asyncio
async def test_unexpected_error_is_down(prober: ProbeExecutor, monkeypatch) -> None:
    async def explode(host, port):
        raise RuntimeError("boom")

    monkeypatch.setattr(prober, "_check_tcp", explode)
    monitor = UptimeMonitor(name="odd", host="127.0.0.1", port=1, protocol="tcp")

    result = await prober.probe(monitor)

    assert result.is_up is False


@pytest.mark.asyncio
async def test_check_tcp_raises_probe_failure(prober: ProbeExecutor) -> None:
    with pytest.raises(ProbeFailure):
        await prober._check_tcp("127.0.0.1", closed_port())
