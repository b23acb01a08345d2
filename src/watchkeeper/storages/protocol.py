import logging
from typing import Any, Callable, Iterable, List, Optional, Protocol, Type, TypeVar

import pydantic

from watchkeeper.domain.instance import BackupInstance
from watchkeeper.domain.monitor import HistoryEntry, UptimeMonitor

logger = logging.getLogger(__name__)

InstanceMutator = Callable[[BackupInstance], BackupInstance]
MonitorMutator = Callable[[UptimeMonitor], UptimeMonitor]

DocumentT = TypeVar("DocumentT", bound=pydantic.BaseModel)


def document_id(document: Any) -> Optional[str]:
    return document.get("id") if isinstance(document, dict) else None


def parse_document(model: Type[DocumentT], document: Any) -> Optional[DocumentT]:
    """
    Validate one stored document.

    Documents that no longer validate, such as ones written by older versions
    with looser rules, are logged and treated as absent. They stay in storage
    until deleted, and never make the rest of the collection unreadable.
    """
    try:
        return model.model_validate(document)
    except pydantic.ValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        logger.error(f"Ignoring invalid stored {model.__name__} {document_id(document)!r}: {problems}")
        return None


def parse_documents(model: Type[DocumentT], documents: Iterable[Any]) -> List[DocumentT]:
    parsed = (parse_document(model, document) for document in documents)
    return [entity for entity in parsed if entity is not None]


class Storage(Protocol):
    async def list_instances(self) -> List[BackupInstance]:
        """List all backup instances in insertion order."""
        ...

    async def get_instance(self, instance_id: str) -> Optional[BackupInstance]:
        """Retrieve a backup instance by its ID."""
        ...

    async def put_instance(self, instance: BackupInstance) -> str:
        """Insert or replace a backup instance and return its ID."""
        ...

    async def update_instance(self, instance_id: str, mutate: InstanceMutator) -> Optional[BackupInstance]:
        """
        Load, mutate and persist an instance as one critical section.
        Return the stored result, or None if the instance does not exist.
        """
        ...

    async def delete_instance(self, instance_id: str) -> bool:
        """Delete an instance by its ID. Return True if it existed."""
        ...

    async def list_monitors(self) -> List[UptimeMonitor]:
        """List all uptime monitors in insertion order."""
        ...

    async def get_monitor(self, monitor_id: str) -> Optional[UptimeMonitor]:
        """Retrieve a monitor by its ID."""
        ...

    async def put_monitor(self, monitor: UptimeMonitor) -> str:
        """Insert or replace a monitor and return its ID."""
        ...

    async def update_monitor(self, monitor_id: str, mutate: MonitorMutator) -> Optional[UptimeMonitor]:
        """Load, mutate and persist a monitor as one critical section."""
        ...

    async def delete_monitor(self, monitor_id: str) -> bool:
        """Delete a monitor by its ID. Return True if it existed."""
        ...

    async def append_history(self, monitor_id: str, entry: HistoryEntry, limit: int = 1000) -> None:
        """Append a probe result, keeping only the newest `limit` entries."""
        ...

    async def get_history(self, monitor_id: str) -> List[HistoryEntry]:
        """Return the stored history of a monitor, oldest first."""
        ...
