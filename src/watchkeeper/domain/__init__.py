from .instance import BackupInstance, BackupRecord
from .monitor import (
    CurrentState,
    HistoryEntry,
    HistoryStats,
    MonitorHistory,
    MonitorProtocol,
    MonitorSnapshot,
    MonitorStatus,
    ProbeResult,
    UptimeMonitor,
)
from .trigger import BaseTrigger, CronTrigger, IntervalTrigger, TriggerType

__all__ = [
    "BackupInstance", "BackupRecord",
    "UptimeMonitor", "MonitorProtocol", "MonitorStatus", "MonitorSnapshot", "CurrentState",
    "HistoryEntry", "HistoryStats", "MonitorHistory", "ProbeResult",
    "BaseTrigger", "CronTrigger", "IntervalTrigger", "TriggerType",
]
