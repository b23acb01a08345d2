"""
Scheduled Backup & Uptime Engine

This package runs independently-timed recurring jobs inside a single process.

Core Concepts:

Entity:
    A BackupInstance or an UptimeMonitor, persisted by a Storage and identified by a unique id.

Job:
    A recurring trigger bound to one entity's action, held by the JobRegistry.
    Each entity has at most one job; re-registering replaces the previous one.

Run:
    A single execution of a job's action. Cancelling a job stops future runs
    but never interrupts a run in progress.

Relationships:
    - Services (BackupService, UptimeService) keep jobs in step with entity CRUD.
    - Jobs invoke executors (BackupExecutor, ProbeExecutor), which write results back to the Storage.
"""

from .config import Settings
from .errors import BackupError, NotFoundError, ProbeFailure, ValidationError, WatchkeeperError
from .scheduler import JobRegistry
from .services import BackupService, UptimeService

__all__ = [
    "Settings",
    "JobRegistry",
    "BackupService",
    "UptimeService",
    "WatchkeeperError",
    "NotFoundError",
    "ValidationError",
    "BackupError",
    "ProbeFailure",
]
