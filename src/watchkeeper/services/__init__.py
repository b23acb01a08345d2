from .backup import BackupService
from .base import ScheduleController
from .uptime import UptimeService

__all__ = ["BackupService", "ScheduleController", "UptimeService"]
