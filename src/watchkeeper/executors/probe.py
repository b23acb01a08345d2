import asyncio
import logging
import time
from typing import Optional

import aiohttp

from watchkeeper.domain.monitor import MonitorProtocol, ProbeResult, UptimeMonitor
from watchkeeper.errors import ProbeFailure

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0


class ProbeExecutor:
    """
    Reachability checks for uptime monitors.

    TCP monitors are up when a connection is established before the timeout.
    HTTP(S) monitors are up when a GET returns a status in [200, 400); redirects
    are not followed. Every error or timeout is a "down" result: `probe` never
    raises.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS, verify_tls: bool = True):
        self.timeout = timeout
        self.verify_tls = verify_tls

    async def probe(self, monitor: UptimeMonitor) -> ProbeResult:
        start = time.monotonic()
        try:
            if monitor.protocol == MonitorProtocol.TCP:
                await self._check_tcp(monitor.host, monitor.port)
            else:
                await self._check_http(monitor.url)
        except ProbeFailure as e:
            logger.debug(f"Probe of {monitor.name} failed: {e}")
            return ProbeResult(is_up=False)
        except Exception as e:
            logger.error(f"Unexpected error checking monitor {monitor.name}: {e}")
            return ProbeResult(is_up=False)
        return ProbeResult(is_up=True, response_time_ms=int((time.monotonic() - start) * 1000))

    async def _check_tcp(self, host: str, port: int) -> None:
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ProbeFailure(f"Timed out connecting to {host}:{port}")
        except OSError as e:
            raise ProbeFailure(f"Cannot connect to {host}:{port}: {e}") from e
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    async def _check_http(self, url: Optional[str]) -> None:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, allow_redirects=False, ssl=self.verify_tls) as response:
                    status = response.status
        except asyncio.TimeoutError:
            raise ProbeFailure(f"Timed out requesting {url}")
        except aiohttp.ClientError as e:
            raise ProbeFailure(f"Request to {url} failed: {e}") from e
        if not 200 <= status < 400:
            raise ProbeFailure(f"{url} answered with status {status}")
