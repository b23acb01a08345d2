import asyncio
import logging
import signal

from watchkeeper.config import Settings, build_storage
from watchkeeper.executors.archive import ExclusionRules, ZipArchiver
from watchkeeper.executors.backup import BackupExecutor
from watchkeeper.executors.probe import ProbeExecutor
from watchkeeper.scheduler.registry import JobRegistry
from watchkeeper.services.backup import BackupService
from watchkeeper.services.uptime import UptimeService

logger = logging.getLogger("watchkeeper")


async def main(settings: Settings) -> None:
    storage = await build_storage(settings)
    registry = JobRegistry()

    archiver = ZipArchiver(ExclusionRules(settings.backup_exclude_patterns), settings.backup_compress_level)
    backups = BackupService(registry, storage, BackupExecutor(storage, archiver))
    uptime = UptimeService(
        registry,
        storage,
        ProbeExecutor(settings.probe_timeout_seconds, settings.verify_tls),
        history_limit=settings.history_limit,
        probe_on_schedule=settings.probe_on_schedule,
    )

    await backups.initialize()
    await uptime.initialize()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    logger.info(f"watchkeeper running with {len(registry)} jobs")
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down, waiting for running jobs to finish...")
        await registry.stop()


def run() -> None:
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
