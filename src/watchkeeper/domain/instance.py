import uuid
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(ZoneInfo("UTC"))


class BackupRecord(BaseModel):
    """
    A single archive produced for a backup instance.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file_name: str = Field(..., description="Archive file name, relative to the target path")
    file_path: str = Field(..., description="Absolute path of the archive on disk")
    size_bytes: int = Field(..., alias="size", ge=0, description="Archive size in bytes")
    timestamp: datetime = Field(default_factory=utcnow, description="Completion time of the backup")


class BackupInstance(BaseModel):
    """
    A directory (or file) that is archived on a recurring schedule.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: f"inst_{uuid.uuid4().hex[:8]}", description="Unique instance identifier")
    name: str = Field(..., min_length=1, description="Instance name, used as the archive file prefix")
    source_path: str = Field(..., min_length=1, description="Directory or file to archive")
    target_path: str = Field(..., min_length=1, description="Directory the archives are written to")
    interval: str = Field(..., min_length=1, description="'hourly', 'daily', 'weekly' or a cron expression")
    max_backups: int = Field(..., ge=1, le=5, description="Number of archives kept before the oldest is evicted")
    last_backup_timestamp: Optional[datetime] = Field(None, alias="lastBackup")
    total_size: int = Field(0, alias="size", ge=0, description="Size of the most recent archive in bytes")
    backups: List[BackupRecord] = Field(default_factory=list, description="Archives in insertion order, oldest first")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("name", "source_path", "target_path", "interval")
    def check_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Field must not be blank")
        return v

    def add_backup(self, record: BackupRecord) -> List[BackupRecord]:
        """
        Append a new archive and evict the oldest ones beyond max_backups.

        Returns:
            List[BackupRecord]: The evicted records, oldest first. Their files still
            have to be removed by the caller.
        """
        self.backups.append(record)
        self.last_backup_timestamp = record.timestamp
        self.total_size = record.size_bytes
        return self.enforce_retention()

    def enforce_retention(self) -> List[BackupRecord]:
        evicted: List[BackupRecord] = []
        while len(self.backups) > self.max_backups:
            evicted.append(self.backups.pop(0))
        return evicted
