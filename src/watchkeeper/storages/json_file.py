import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union

from watchkeeper.domain.instance import BackupInstance
from watchkeeper.domain.monitor import HistoryEntry, UptimeMonitor
from watchkeeper.storages.protocol import (
    InstanceMutator,
    MonitorMutator,
    Storage,
    document_id,
    parse_document,
    parse_documents,
)

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", BackupInstance, UptimeMonitor)

INSTANCES_FILE = "instances.json"
MONITORS_FILE = "uptime-monitors.json"
HISTORY_FILE = "uptime-history.json"


class JsonFileStorage(Storage):
    """
    Whole-file JSON snapshot storage.

    Each collection lives in its own file and is loaded, mutated and written back
    in full. Every operation on a collection holds that collection's lock, so
    overlapping job completions cannot lose each other's updates. Files are
    written to a temporary sibling and atomically renamed into place.
    """

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self.instances_file = self.data_dir / INSTANCES_FILE
        self.monitors_file = self.data_dir / MONITORS_FILE
        self.history_file = self.data_dir / HISTORY_FILE
        self._instances_lock = asyncio.Lock()
        self._monitors_lock = asyncio.Lock()
        self._history_lock = asyncio.Lock()
        self._ensure_files()

    def _ensure_files(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        for path, empty in ((self.instances_file, []), (self.monitors_file, []), (self.history_file, {})):
            if not path.exists():
                self._write(path, empty)
                logger.info(f"Created empty data file {path}")

    @staticmethod
    def _read(path: Path) -> Any:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    @staticmethod
    def _write(path: Path, data: Any) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def _load(self, path: Path) -> Any:
        return await asyncio.to_thread(self._read, path)

    async def _save(self, path: Path, data: Any) -> None:
        await asyncio.to_thread(self._write, path, data)

    # Documents are kept raw so that entries which fail validation survive
    # rewrites of the rest of their collection.

    async def _list(self, path: Path, lock: asyncio.Lock, model: Type[EntityT]) -> List[EntityT]:
        async with lock:
            documents = await self._load(path)
        return parse_documents(model, documents)

    async def _get(self, path: Path, lock: asyncio.Lock, model: Type[EntityT], entity_id: str) -> Optional[EntityT]:
        async with lock:
            documents = await self._load(path)
        for document in documents:
            if document_id(document) == entity_id:
                return parse_document(model, document)
        return None

    async def _put(self, path: Path, lock: asyncio.Lock, entity: EntityT) -> None:
        async with lock:
            documents = await self._load(path)
            _replace_or_append(documents, entity.model_dump(mode="json", by_alias=True))
            await self._save(path, documents)

    async def _update(self, path: Path, lock: asyncio.Lock, model: Type[EntityT], entity_id: str,
                      mutate: Callable[[EntityT], EntityT]) -> Optional[EntityT]:
        async with lock:
            documents = await self._load(path)
            for index, document in enumerate(documents):
                if document_id(document) != entity_id:
                    continue
                current = parse_document(model, document)
                if current is None:
                    return None
                updated = mutate(current)
                documents[index] = updated.model_dump(mode="json", by_alias=True)
                await self._save(path, documents)
                return updated
        return None

    async def _delete(self, path: Path, lock: asyncio.Lock, entity_id: str) -> bool:
        async with lock:
            documents = await self._load(path)
            remaining = [d for d in documents if document_id(d) != entity_id]
            if len(remaining) == len(documents):
                return False
            await self._save(path, remaining)
            return True

    # Backup instances

    async def list_instances(self) -> List[BackupInstance]:
        return await self._list(self.instances_file, self._instances_lock, BackupInstance)

    async def get_instance(self, instance_id: str) -> Optional[BackupInstance]:
        return await self._get(self.instances_file, self._instances_lock, BackupInstance, instance_id)

    async def put_instance(self, instance: BackupInstance) -> str:
        await self._put(self.instances_file, self._instances_lock, instance)
        return instance.id

    async def update_instance(self, instance_id: str, mutate: InstanceMutator) -> Optional[BackupInstance]:
        return await self._update(self.instances_file, self._instances_lock, BackupInstance, instance_id, mutate)

    async def delete_instance(self, instance_id: str) -> bool:
        return await self._delete(self.instances_file, self._instances_lock, instance_id)

    # Uptime monitors

    async def list_monitors(self) -> List[UptimeMonitor]:
        return await self._list(self.monitors_file, self._monitors_lock, UptimeMonitor)

    async def get_monitor(self, monitor_id: str) -> Optional[UptimeMonitor]:
        return await self._get(self.monitors_file, self._monitors_lock, UptimeMonitor, monitor_id)

    async def put_monitor(self, monitor: UptimeMonitor) -> str:
        await self._put(self.monitors_file, self._monitors_lock, monitor)
        return monitor.id

    async def update_monitor(self, monitor_id: str, mutate: MonitorMutator) -> Optional[UptimeMonitor]:
        return await self._update(self.monitors_file, self._monitors_lock, UptimeMonitor, monitor_id, mutate)

    async def delete_monitor(self, monitor_id: str) -> bool:
        return await self._delete(self.monitors_file, self._monitors_lock, monitor_id)

    # Probe history

    async def append_history(self, monitor_id: str, entry: HistoryEntry, limit: int = 1000) -> None:
        async with self._history_lock:
            history: Dict[str, List[Dict[str, Any]]] = await self._load(self.history_file)
            entries = history.setdefault(monitor_id, [])
            entries.append(entry.model_dump(mode="json", by_alias=True))
            if len(entries) > limit:
                history[monitor_id] = entries[-limit:]
            await self._save(self.history_file, history)

    async def get_history(self, monitor_id: str) -> List[HistoryEntry]:
        async with self._history_lock:
            history = await self._load(self.history_file)
        return parse_documents(HistoryEntry, history.get(monitor_id, []))


def _replace_or_append(documents: List[Any], document: Dict[str, Any]) -> None:
    for index, existing in enumerate(documents):
        if document_id(existing) == document["id"]:
            documents[index] = document
            return
    documents.append(document)
