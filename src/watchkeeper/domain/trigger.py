from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

import tzlocal
from croniter import croniter
from pydantic import BaseModel, Field, field_validator


class TriggerType(str, Enum):
    CRON = "cron"
    INTERVAL = "interval"


class BaseTrigger(BaseModel, ABC):
    """
    Base class for all trigger types.
    """
    type: TriggerType
    description: Optional[str] = Field(None, description="Interval as supplied by the user, e.g. 'daily' or '5'")

    @abstractmethod
    def next_fire_time(self, after: datetime) -> datetime:
        """
        Return the first firing time strictly after the given aware datetime.
        """
        pass

    @abstractmethod
    def format_trigger(self) -> str:
        pass


class CronTrigger(BaseTrigger):
    """
    Fires on a cron schedule evaluated in a fixed timezone.
    A six-field expression carries seconds in the first field.
    """
    type: TriggerType = TriggerType.CRON
    cron_expression: str = Field(..., description="Cron expression defining the recurring execution pattern")
    timezone: str = Field(default_factory=lambda: tzlocal.get_localzone_name() or "UTC", description="IANA timezone the expression is evaluated in")

    @field_validator("cron_expression")
    def check_expression(cls, v: str) -> str:
        if not croniter.is_valid(v, second_at_beginning=True):
            raise ValueError(f"Invalid cron expression: {v!r}")
        return v

    def next_fire_time(self, after: datetime) -> datetime:
        base = after.astimezone(ZoneInfo(self.timezone))
        cron = croniter(self.cron_expression, base, second_at_beginning=True)
        return cron.get_next(datetime)

    def format_trigger(self) -> str:
        return f"Scheduled to recur with cron expression: {self.cron_expression} ({self.timezone})"


class IntervalTrigger(BaseTrigger):
    """
    Fires every fixed interval, measured from the previous firing.
    """
    type: TriggerType = TriggerType.INTERVAL
    interval: timedelta = Field(..., description="Time between two firings")

    @field_validator("interval")
    def check_positive(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("Interval must be positive")
        return v

    def next_fire_time(self, after: datetime) -> datetime:
        return after + self.interval

    def format_trigger(self) -> str:
        return f"Scheduled to recur every {self.interval.total_seconds():g} seconds"
