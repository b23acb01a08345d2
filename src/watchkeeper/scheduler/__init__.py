from .registry import JobAction, JobRegistry, ScheduledJob

__all__ = ["JobAction", "JobRegistry", "ScheduledJob"]
