import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import pydantic

from watchkeeper.domain.instance import BackupInstance, BackupRecord, utcnow
from watchkeeper.domain.trigger import CronTrigger
from watchkeeper.errors import NotFoundError, ValidationError
from watchkeeper.executors.backup import BackupExecutor
from watchkeeper.recurrence import backup_trigger, validate_backup_interval
from watchkeeper.scheduler.registry import JobAction, JobRegistry
from watchkeeper.services.base import ScheduleController, validation_error
from watchkeeper.storages.protocol import Storage

logger = logging.getLogger(__name__)


class BackupService(ScheduleController[BackupInstance]):
    """
    Backup instances: CRUD, scheduled and manual backups, archive lookup.
    """
    group = "backup"

    def __init__(self, registry: JobRegistry, storage: Storage, executor: Optional[BackupExecutor] = None):
        super().__init__(registry, storage)
        self.executor: BackupExecutor = executor or BackupExecutor(storage)

    async def _load_entities(self) -> List[BackupInstance]:
        return await self.storage.list_instances()

    def _trigger_for(self, entity: BackupInstance) -> CronTrigger:
        return backup_trigger(entity.interval)

    def _action_for(self, entity_id: str) -> JobAction:
        async def run_scheduled_backup() -> None:
            instance = await self.storage.get_instance(entity_id)
            if instance is None:
                logger.warning(f"Skipping scheduled backup: instance {entity_id} no longer exists")
                return
            logger.info(f"Running scheduled backup for instance: {instance.name}")
            await self.executor.perform_backup(instance)

        return run_scheduled_backup

    @staticmethod
    def _validate(data: Dict[str, Any]) -> BackupInstance:
        try:
            instance = BackupInstance.model_validate(data)
        except pydantic.ValidationError as e:
            raise validation_error(e) from e
        validate_backup_interval(instance.interval)
        if not Path(instance.source_path).exists():
            raise ValidationError(f"Source path does not exist: {instance.source_path}")
        return instance

    async def list_instances(self) -> List[BackupInstance]:
        return await self.storage.list_instances()

    async def get_instance(self, instance_id: str) -> BackupInstance:
        instance = await self.storage.get_instance(instance_id)
        if instance is None:
            raise NotFoundError("Instance", instance_id)
        return instance

    async def create_instance(self, data: Dict[str, Any]) -> BackupInstance:
        """
        Validate and persist a new instance, then schedule its backups.

        Raises:
            ValidationError: If a field is missing or out of range, the interval is
                not understood, or the source path does not exist.
        """
        data = {k: v for k, v in data.items() if k not in ("id", "backups", "lastBackup",
                                                            "last_backup_timestamp", "size", "total_size")}
        instance = self._validate(data)
        await self.storage.put_instance(instance)
        self._schedule(instance)
        return instance

    async def update_instance(self, instance_id: str, updates: Dict[str, Any]) -> BackupInstance:
        current = await self.get_instance(instance_id)
        editable = {k: v for k, v in updates.items() if k not in ("backups", "lastBackup", "last_backup_timestamp",
                                                                  "size", "total_size")}
        candidate = self._validate(self._merge(current, editable))
        evicted: List[BackupRecord] = []

        def apply(stored: BackupInstance) -> BackupInstance:
            # Backup history may have changed while validating; keep the stored one
            merged = candidate.model_copy(update={
                "backups": stored.backups,
                "last_backup_timestamp": stored.last_backup_timestamp,
                "total_size": stored.total_size,
                "updated_at": utcnow(),
            })
            evicted.extend(merged.enforce_retention())
            return merged

        updated = await self.storage.update_instance(instance_id, apply)
        if updated is None:
            raise NotFoundError("Instance", instance_id)
        self._unschedule(instance_id)
        self._schedule(updated)
        await self.executor.remove_files(evicted)
        return updated

    async def delete_instance(self, instance_id: str) -> None:
        self._unschedule(instance_id)
        if not await self.storage.delete_instance(instance_id):
            raise NotFoundError("Instance", instance_id)
        logger.info(f"Deleted instance {instance_id}")

    async def perform_backup(self, instance_id: str) -> BackupInstance:
        """
        Run a backup now, outside the schedule, and return the updated instance.

        Raises:
            NotFoundError: If the instance does not exist.
            BackupError: If the backup fails.
        """
        instance = await self.get_instance(instance_id)
        await self.executor.perform_backup(instance)
        return await self.get_instance(instance_id)

    async def get_backup_file(self, instance_id: str, index: int) -> BackupRecord:
        instance = await self.get_instance(instance_id)
        if index < 0 or index >= len(instance.backups):
            raise NotFoundError("Backup", f"{instance_id}[{index}]")
        record = instance.backups[index]
        if not Path(record.file_path).exists():
            raise NotFoundError("Backup file", record.file_path)
        return record
