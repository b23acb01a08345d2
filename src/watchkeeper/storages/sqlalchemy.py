import asyncio
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import Column, DateTime, Integer, JSON, String, delete, func
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.future import select
from sqlalchemy.orm import declarative_base, sessionmaker

from watchkeeper.domain.instance import BackupInstance
from watchkeeper.domain.monitor import HistoryEntry, MonitorStatus, UptimeMonitor
from watchkeeper.storages.protocol import (
    InstanceMutator,
    MonitorMutator,
    Storage,
    parse_document,
    parse_documents,
)

Base = declarative_base()


class InstanceModel(Base):
    __tablename__ = 'backup_instances'

    id = Column(String, primary_key=True)
    position = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    data = Column(JSON, nullable=False)


class MonitorModel(Base):
    __tablename__ = 'uptime_monitors'

    id = Column(String, primary_key=True)
    position = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    data = Column(JSON, nullable=False)


class HistoryModel(Base):
    __tablename__ = 'uptime_history'

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(String, nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False)
    response_time_ms = Column(Integer)


class SqlAlchemyStorage(Storage):
    """
    Embedded database storage behind the same contract as the JSON snapshots.

    Entities are stored as JSON documents; history rows are individual records.
    The per-collection locks keep read-modify-write cycles serialized within the
    process, matching the snapshot storage.
    """

    def __init__(self, db_url: str):
        self.engine = create_async_engine(db_url)
        self.async_session = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        self._instances_lock = asyncio.Lock()
        self._monitors_lock = asyncio.Lock()
        self._history_lock = asyncio.Lock()

    async def create_tables(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        await self.engine.dispose()

    # Backup instances

    async def list_instances(self) -> List[BackupInstance]:
        async with self.async_session() as session:
            result = await session.execute(select(InstanceModel).order_by(InstanceModel.position))
            return parse_documents(BackupInstance, (row.data for row in result.scalars()))

    async def get_instance(self, instance_id: str) -> Optional[BackupInstance]:
        async with self.async_session() as session:
            db_instance = await session.get(InstanceModel, instance_id)
            if db_instance:
                return parse_document(BackupInstance, db_instance.data)
            return None

    async def put_instance(self, instance: BackupInstance) -> str:
        async with self._instances_lock:
            async with self.async_session() as session:
                db_instance = await session.get(InstanceModel, instance.id)
                if db_instance is None:
                    position = await self._next_position(session, InstanceModel)
                    db_instance = InstanceModel(id=instance.id, position=position)
                    session.add(db_instance)
                db_instance.name = instance.name
                db_instance.data = instance.model_dump(mode="json", by_alias=True)
                await session.commit()
                return instance.id

    async def update_instance(self, instance_id: str, mutate: InstanceMutator) -> Optional[BackupInstance]:
        async with self._instances_lock:
            async with self.async_session() as session:
                db_instance = await session.get(InstanceModel, instance_id)
                if db_instance is None:
                    return None
                current = parse_document(BackupInstance, db_instance.data)
                if current is None:
                    return None
                updated = mutate(current)
                db_instance.name = updated.name
                db_instance.data = updated.model_dump(mode="json", by_alias=True)
                await session.commit()
                return updated

    async def delete_instance(self, instance_id: str) -> bool:
        async with self._instances_lock:
            async with self.async_session() as session:
                db_instance = await session.get(InstanceModel, instance_id)
                if db_instance:
                    await session.delete(db_instance)
                    await session.commit()
                    return True
                return False

    # Uptime monitors

    async def list_monitors(self) -> List[UptimeMonitor]:
        async with self.async_session() as session:
            result = await session.execute(select(MonitorModel).order_by(MonitorModel.position))
            return parse_documents(UptimeMonitor, (row.data for row in result.scalars()))

    async def get_monitor(self, monitor_id: str) -> Optional[UptimeMonitor]:
        async with self.async_session() as session:
            db_monitor = await session.get(MonitorModel, monitor_id)
            if db_monitor:
                return parse_document(UptimeMonitor, db_monitor.data)
            return None

    async def put_monitor(self, monitor: UptimeMonitor) -> str:
        async with self._monitors_lock:
            async with self.async_session() as session:
                db_monitor = await session.get(MonitorModel, monitor.id)
                if db_monitor is None:
                    position = await self._next_position(session, MonitorModel)
                    db_monitor = MonitorModel(id=monitor.id, position=position)
                    session.add(db_monitor)
                db_monitor.name = monitor.name
                db_monitor.data = monitor.model_dump(mode="json", by_alias=True)
                await session.commit()
                return monitor.id

    async def update_monitor(self, monitor_id: str, mutate: MonitorMutator) -> Optional[UptimeMonitor]:
        async with self._monitors_lock:
            async with self.async_session() as session:
                db_monitor = await session.get(MonitorModel, monitor_id)
                if db_monitor is None:
                    return None
                current = parse_document(UptimeMonitor, db_monitor.data)
                if current is None:
                    return None
                updated = mutate(current)
                db_monitor.name = updated.name
                db_monitor.data = updated.model_dump(mode="json", by_alias=True)
                await session.commit()
                return updated

    async def delete_monitor(self, monitor_id: str) -> bool:
        async with self._monitors_lock:
            async with self.async_session() as session:
                db_monitor = await session.get(MonitorModel, monitor_id)
                if db_monitor:
                    await session.delete(db_monitor)
                    await session.commit()
                    return True
                return False

    # Probe history

    async def append_history(self, monitor_id: str, entry: HistoryEntry, limit: int = 1000) -> None:
        async with self._history_lock:
            async with self.async_session() as session:
                session.add(HistoryModel(
                    monitor_id=monitor_id,
                    timestamp=entry.timestamp.astimezone(ZoneInfo("UTC")),
                    status=entry.status.value,
                    response_time_ms=entry.response_time_ms,
                ))
                await session.flush()
                keep = (
                    select(HistoryModel.id)
                    .filter_by(monitor_id=monitor_id)
                    .order_by(HistoryModel.id.desc())
                    .limit(limit)
                )
                await session.execute(
                    delete(HistoryModel)
                    .where(HistoryModel.monitor_id == monitor_id)
                    .where(HistoryModel.id.not_in(keep.scalar_subquery()))
                )
                await session.commit()

    async def get_history(self, monitor_id: str) -> List[HistoryEntry]:
        async with self.async_session() as session:
            result = await session.execute(
                select(HistoryModel)
                .filter_by(monitor_id=monitor_id)
                .order_by(HistoryModel.id)
            )
            return [self._db_to_entry(row) for row in result.scalars()]

    @staticmethod
    async def _next_position(session: AsyncSession, model) -> int:
        result = await session.execute(select(func.max(model.position)))
        current = result.scalar()
        return 0 if current is None else current + 1

    @staticmethod
    def _db_to_entry(db_entry: HistoryModel) -> HistoryEntry:
        timestamp: datetime = db_entry.timestamp
        # SQLite drops the timezone; values are always written in UTC
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=ZoneInfo("UTC"))
        return HistoryEntry(
            timestamp=timestamp,
            status=MonitorStatus(db_entry.status),
            response_time_ms=db_entry.response_time_ms,
        )


class InMemoryStorage(SqlAlchemyStorage):
    def __init__(self):
        super().__init__("sqlite+aiosqlite:///:memory:")
