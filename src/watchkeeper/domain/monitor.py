import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .instance import utcnow


class MonitorProtocol(str, Enum):
    TCP = "tcp"
    HTTP = "http"
    HTTPS = "https"


class MonitorStatus(str, Enum):
    UNKNOWN = "unknown"
    UP = "up"
    DOWN = "down"


class UptimeMonitor(BaseModel):
    """
    A host/port probed on a fixed minute interval.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: f"mon_{uuid.uuid4().hex[:8]}", description="Unique monitor identifier")
    name: str = Field(..., min_length=1)
    host: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)
    protocol: MonitorProtocol = Field(..., alias="type")
    path: str = Field("", description="Request path for http/https monitors, must start with '/'")
    interval_minutes: int = Field(5, alias="interval", ge=1, le=1440, description="Minutes between two probes")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @field_validator("path")
    def check_path(cls, v: Optional[str]) -> str:
        if not v:
            return ""
        if not v.startswith("/"):
            raise ValueError("Path must start with '/'")
        return v

    @model_validator(mode="after")
    def drop_tcp_path(self) -> "UptimeMonitor":
        if self.protocol == MonitorProtocol.TCP:
            self.path = ""
        return self

    @property
    def url(self) -> Optional[str]:
        if self.protocol == MonitorProtocol.TCP:
            return None
        return f"{self.protocol.value}://{self.host}:{self.port}{self.path}"


class CurrentState(BaseModel):
    """
    Latest probe outcome for a monitor. Kept in memory only.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: MonitorStatus = MonitorStatus.UNKNOWN
    last_check: Optional[datetime] = None
    response_time_ms: Optional[int] = Field(None, alias="responseTime")


class MonitorSnapshot(UptimeMonitor):
    current_status: CurrentState = Field(default_factory=CurrentState)


class HistoryEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: datetime = Field(default_factory=utcnow)
    status: MonitorStatus
    response_time_ms: Optional[int] = Field(None, alias="responseTime")

    @field_validator("status")
    def check_status(cls, v: MonitorStatus) -> MonitorStatus:
        if v == MonitorStatus.UNKNOWN:
            raise ValueError("History entries are either up or down")
        return v


class HistoryStats(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    uptime_percentage: float = 0.0
    total_checks: int = 0
    up_checks: int = 0
    down_checks: int = 0
    avg_response_time: Optional[int] = None

    @classmethod
    def from_entries(cls, entries: List[HistoryEntry]) -> "HistoryStats":
        total = len(entries)
        up = sum(1 for entry in entries if entry.status == MonitorStatus.UP)
        times = [entry.response_time_ms for entry in entries if entry.response_time_ms is not None]
        return cls(
            uptime_percentage=round(up / total * 100, 2) if total else 0.0,
            total_checks=total,
            up_checks=up,
            down_checks=total - up,
            avg_response_time=round(sum(times) / len(times)) if times else None,
        )


class MonitorHistory(BaseModel):
    history: List[HistoryEntry] = Field(default_factory=list)
    stats: HistoryStats = Field(default_factory=HistoryStats)


class ProbeResult(BaseModel):
    is_up: bool
    response_time_ms: Optional[int] = None

    @property
    def status(self) -> MonitorStatus:
        return MonitorStatus.UP if self.is_up else MonitorStatus.DOWN
