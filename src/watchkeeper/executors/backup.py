import asyncio
import logging
import zipfile
from collections import defaultdict
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from watchkeeper.domain.instance import BackupInstance, BackupRecord, utcnow
from watchkeeper.errors import BackupError
from watchkeeper.executors.archive import ZipArchiver
from watchkeeper.storages.protocol import Storage

logger = logging.getLogger(__name__)


def format_bytes(size: int, decimals: int = 2) -> str:
    if size == 0:
        return "0 Bytes"
    value = float(size)
    for unit in ["Bytes", "KB", "MB", "GB", "TB"]:
        if value < 1024 or unit == "TB":
            return f"{round(value, decimals):g} {unit}"
        value /= 1024
    return f"{size} Bytes"


def backup_file_name(instance_name: str, at: datetime) -> str:
    # ISO-8601 with millisecond precision; ':' and '.' are not safe in file names on every platform
    stamp = at.strftime("%Y-%m-%dT%H-%M-%S-") + f"{at.microsecond // 1000:03d}Z"
    return f"{instance_name}_{stamp}.zip"


class BackupExecutor:
    """
    Archives backup instances and enforces their retention bound.

    Runs for the same instance are serialized by a per-instance lock, so a
    manual trigger and a scheduled firing never archive concurrently. Runs for
    different instances proceed in parallel; archiving happens in a worker
    thread and never blocks the event loop.
    """

    def __init__(self, storage: Storage, archiver: Optional[ZipArchiver] = None):
        self.storage = storage
        self.archiver = archiver or ZipArchiver()
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def is_running(self, instance_id: str) -> bool:
        lock = self._locks.get(instance_id)
        return lock is not None and lock.locked()

    async def perform_backup(self, instance: BackupInstance) -> BackupRecord:
        """
        Archive the instance's source path and record the result.

        Args:
            instance (BackupInstance): The instance to back up.

        Returns:
            BackupRecord: The record of the new archive.

        Raises:
            BackupError: If the source path is missing or the archive cannot be written.
        """
        async with self._locks[instance.id]:
            logger.info(f"Starting backup for: {instance.name}")
            record = await self._write_archive(instance)
            logger.info(f"Backup completed: {record.file_name} ({format_bytes(record.size_bytes)})")
            await self._record_backup(instance, record)
            return record

    async def _write_archive(self, instance: BackupInstance) -> BackupRecord:
        source = Path(instance.source_path)
        if not source.exists():
            raise BackupError(f"Source path does not exist: {instance.source_path}")

        target = Path(instance.target_path)
        try:
            await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise BackupError(f"Cannot create target directory {target}: {e}") from e

        started = utcnow()
        destination = target / backup_file_name(instance.name, started)
        # Names have millisecond resolution; never overwrite an archive still on record
        while destination.exists():
            started += timedelta(milliseconds=1)
            destination = target / backup_file_name(instance.name, started)
        try:
            size = await asyncio.to_thread(self.archiver.write, source, destination)
        except (OSError, ValueError, zipfile.BadZipFile) as e:
            await asyncio.to_thread(destination.unlink, missing_ok=True)
            raise BackupError(f"Backup of {instance.name} failed: {e}") from e

        return BackupRecord(
            file_name=destination.name,
            file_path=str(destination.resolve()),
            size_bytes=size,
            timestamp=utcnow(),
        )

    async def _record_backup(self, instance: BackupInstance, record: BackupRecord) -> None:
        evicted: List[BackupRecord] = []

        def apply(current: BackupInstance) -> BackupInstance:
            evicted.extend(current.add_backup(record))
            return current

        updated = await self.storage.update_instance(instance.id, apply)
        if updated is None:
            logger.warning(
                f"Instance {instance.id} was deleted during backup; keeping {record.file_path} but not recording it"
            )
            return
        await self.remove_files(evicted)

    async def remove_files(self, records: List[BackupRecord]) -> None:
        """
        Delete evicted archives. Failures are logged and do not stop the others.
        """
        for old in records:
            try:
                await asyncio.to_thread(Path(old.file_path).unlink)
                logger.info(f"Deleted old backup: {old.file_name}")
            except OSError as e:
                logger.error(f"Error deleting old backup {old.file_name}: {e}")
