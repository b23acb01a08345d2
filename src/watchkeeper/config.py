"""Runtime configuration, read from WATCHKEEPER_* environment variables or a .env file."""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from watchkeeper.executors.archive import DEFAULT_EXCLUDE_PATTERNS
from watchkeeper.storages.protocol import Storage


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WATCHKEEPER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    data_dir: str = "./data"
    database_url: Optional[str] = Field(default=None, description="SQLAlchemy async URL; JSON files in data_dir are used when unset")

    # Uptime probes
    probe_timeout_seconds: float = Field(default=5.0, gt=0)
    probe_on_schedule: bool = Field(default=True, description="Probe a monitor once as soon as it is scheduled")
    verify_tls: bool = True
    history_limit: int = Field(default=1000, ge=1)

    # Backups
    backup_compress_level: int = Field(default=9, ge=0, le=9)
    backup_exclude_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))

    log_level: str = "INFO"

    @field_validator("log_level")
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()


async def build_storage(settings: Settings) -> Storage:
    if settings.database_url:
        from watchkeeper.storages.sqlalchemy import SqlAlchemyStorage

        storage = SqlAlchemyStorage(settings.database_url)
        await storage.create_tables()
        return storage

    from watchkeeper.storages.json_file import JsonFileStorage

    return JsonFileStorage(settings.data_dir)
