"""
Translate human intervals into triggers.

Backup instances use a named interval or a raw cron expression. Named intervals
map to fixed wall-clock times so that many instances do not all start archiving
at arbitrary moments. Uptime monitors use a plain minute count.
"""
from datetime import timedelta
from typing import Dict, Union

from croniter import croniter

from watchkeeper.domain.trigger import CronTrigger, IntervalTrigger
from watchkeeper.errors import ValidationError

NAMED_INTERVALS: Dict[str, str] = {
    "hourly": "0 * * * *",  # top of every hour
    "daily": "0 2 * * *",  # 02:00 local
    "weekly": "0 2 * * 0",  # Sunday 02:00 local
}

MIN_MONITOR_MINUTES = 1
MAX_MONITOR_MINUTES = 1440


def cron_expression_for(interval: str) -> str:
    """
    Return the cron expression for a backup interval.
    Unrecognized names are passed through unchanged as custom expressions.
    """
    return NAMED_INTERVALS.get(interval.strip().lower(), interval.strip())


def validate_backup_interval(interval: str) -> str:
    if not interval or not interval.strip():
        raise ValidationError("Interval is required")
    expression = cron_expression_for(interval)
    if not croniter.is_valid(expression, second_at_beginning=True):
        raise ValidationError(f"Unsupported interval or cron expression: {interval!r}")
    return expression


def backup_trigger(interval: str) -> CronTrigger:
    expression = validate_backup_interval(interval)
    return CronTrigger(cron_expression=expression, description=interval)


def monitor_trigger(interval_minutes: Union[int, str]) -> IntervalTrigger:
    try:
        minutes = int(interval_minutes)
    except (TypeError, ValueError):
        raise ValidationError(f"Interval must be a number of minutes, got {interval_minutes!r}")
    if not MIN_MONITOR_MINUTES <= minutes <= MAX_MONITOR_MINUTES:
        raise ValidationError(
            f"Interval must be between {MIN_MONITOR_MINUTES} and {MAX_MONITOR_MINUTES} minutes, got {minutes}"
        )
    return IntervalTrigger(interval=timedelta(minutes=minutes), description=str(interval_minutes))
