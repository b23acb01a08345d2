import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, TypeVar

import pydantic

from watchkeeper.domain.trigger import BaseTrigger
from watchkeeper.errors import ValidationError, WatchkeeperError
from watchkeeper.scheduler.registry import JobAction, JobRegistry
from watchkeeper.storages.protocol import Storage

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", bound=pydantic.BaseModel)


def validation_error(e: pydantic.ValidationError) -> ValidationError:
    messages = []
    for error in e.errors():
        location = ".".join(str(part) for part in error["loc"]) or "value"
        messages.append(f"{location}: {error['msg']}")
    return ValidationError("; ".join(messages))


class ScheduleController(ABC, Generic[EntityT]):
    """
    Keeps the registry's jobs in step with the persisted entities of one kind.

    Every create, update and delete goes through here so the matching job is
    registered, replaced or cancelled without restarting the process.
    """
    group: str

    def __init__(self, registry: JobRegistry, storage: Storage):
        self.registry: JobRegistry = registry
        self.storage: Storage = storage

    @abstractmethod
    async def _load_entities(self) -> List[EntityT]:
        pass

    @abstractmethod
    def _trigger_for(self, entity: EntityT) -> BaseTrigger:
        pass

    @abstractmethod
    def _action_for(self, entity_id: str) -> JobAction:
        pass

    def _run_immediately(self, entity: EntityT) -> bool:
        return False

    def _schedule(self, entity: EntityT) -> None:
        trigger = self._trigger_for(entity)
        self.registry.schedule(
            entity.id,
            trigger,
            self._action_for(entity.id),
            group=self.group,
            run_immediately=self._run_immediately(entity),
        )
        logger.info(f"Scheduled {self.group} job for {entity.name}: {trigger.format_trigger()}")

    def _unschedule(self, entity_id: str) -> bool:
        return self.registry.cancel(entity_id)

    async def reload_all(self) -> int:
        """
        Cancel every job of this kind and rebuild one per persisted entity.

        Returns:
            int: The number of jobs registered.
        """
        self.registry.cancel_all(self.group)
        scheduled = 0
        for entity in await self._load_entities():
            try:
                self._schedule(entity)
                scheduled += 1
            except WatchkeeperError as e:
                logger.error(f"Error scheduling {self.group} job for {entity.name}: {e}")
        logger.info(f"Scheduled {scheduled} {self.group} jobs")
        return scheduled

    async def initialize(self) -> None:
        logger.info(f"Initializing {self.group} service...")
        await self.reload_all()

    async def reload_schedules(self) -> int:
        logger.info(f"Reloading {self.group} schedules...")
        return await self.reload_all()

    @staticmethod
    def _merge(entity: EntityT, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Overlay updates (by field name or alias) on an entity's fields.
        The id and creation time are never overwritten.
        """
        fields = type(entity).model_fields
        aliases = {field.alias: name for name, field in fields.items() if field.alias}
        data = entity.model_dump()
        for key, value in updates.items():
            name = aliases.get(key, key)
            if name in fields and name not in ("id", "created_at"):
                data[name] = value
        return data
