"""
Cron driven backup scheduling.

APScheduler's CronTrigger computes fire times; the loop itself is a single
coroutine that sleeps until the next fire time and then runs one backup
cycle. A failing cycle ends the loop with its exception.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.triggers.cron import CronTrigger

from volume_backup.errors import ConfigurationError


logger = logging.getLogger(__name__)

# Seconds to wait before recomputing when no usable fire time was found
POLL_INTERVAL = 1.0


# Day names in crontab order (Sunday first); APScheduler numbers weekdays from Monday
DAY_NAMES = ('sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat')


def _weekday_value(token: str, first: int) -> int:
    """Numeric weekday in the expression's own numbering (Sunday == first)."""
    name = token.lower()
    if name in DAY_NAMES:
        return DAY_NAMES.index(name) + first
    value = int(token)
    # Crontab also accepts 7 for Sunday
    upper = first + 6 if first else 7
    if not first <= value <= upper:
        raise ValueError(f"day of week {value} is out of range {first}-{upper}")
    return value


def convert_day_of_week(field: str, first: int) -> str:
    """
    Convert a cron day-of-week field to APScheduler day names.

    Args:
        field: Day-of-week field (numbers, names, ranges, lists and steps)
        first: Number of Sunday: 0 for crontab, 1 for the 6/7-field form

    Returns:
        '*' or a comma separated list of day names

    Raises:
        ValueError: If the field is malformed
    """
    if field in ('*', '?'):
        return '*'

    days = set()
    for part in field.split(','):
        part, _, step = part.partition('/')
        step = int(step) if step else 1
        if step < 1:
            raise ValueError(f"invalid step in day of week: {field}")

        if part in ('*', '?'):
            start, end = first, first + 6
        elif '-' in part:
            low, high = part.split('-', 1)
            start, end = _weekday_value(low, first), _weekday_value(high, first)
        else:
            start = _weekday_value(part, first)
            end = first + 6 if step > 1 else start

        if end < start:
            raise ValueError(f"invalid day of week range: {part}")
        for value in range(start, end + 1, step):
            days.add((value - first) % 7)

    return ','.join(DAY_NAMES[day] for day in sorted(days))


def parse_cron_expression(expression: str, timezone=None) -> CronTrigger:
    """
    Parse a cron expression into a trigger.

    Accepts standard 5-field crontab lines (Sunday is 0 or 7), and the
    6-field (leading seconds) and 7-field (trailing year) forms, where
    days of week run from 1 (Sunday) to 7 (Saturday).

    Args:
        expression: Cron expression
        timezone: Timezone name or tzinfo (default: local timezone)

    Returns:
        CronTrigger instance

    Raises:
        ConfigurationError: If the expression is empty or invalid
    """
    if not expression or not expression.strip():
        raise ConfigurationError("Cron expression is empty")

    fields = expression.split()
    try:
        if len(fields) == 5:
            minute, hour, day, month, day_of_week = fields
            return CronTrigger(
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=convert_day_of_week(day_of_week, first=0),
                timezone=timezone
            )
        if len(fields) in (6, 7):
            second, minute, hour, day, month, day_of_week = fields[:6]
            return CronTrigger(
                second=second,
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=convert_day_of_week(day_of_week, first=1),
                year=fields[6] if len(fields) == 7 else None,
                timezone=timezone
            )
    except ValueError as e:
        raise ConfigurationError(f"Invalid cron expression '{expression}': {e}") from e

    raise ConfigurationError(
        f"Invalid cron expression '{expression}': expected 5, 6 or 7 fields, got {len(fields)}"
    )


class BackupScheduler:
    """
    Runs a job at every fire time of a cron expression.
    """

    def __init__(
        self,
        cron_expression: str,
        job: Callable[[], object],
        timezone=None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        """
        Initialize scheduler.

        Args:
            cron_expression: Schedule, validated immediately
            job: Runs one backup cycle
            timezone: Timezone for the cron expression
            clock: Returns the current aware datetime (default: now in trigger timezone)
            sleep: Coroutine function used to wait (default: asyncio.sleep)
        """
        self.trigger = parse_cron_expression(cron_expression, timezone=timezone)
        self.cron_expression = cron_expression
        self.job = job
        self.clock = clock or (lambda: datetime.now(self.trigger.timezone))
        self.sleep = sleep or asyncio.sleep
        self.last_fire_time = None
        self.cycles = 0

    def next_fire_time(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """Next fire time at or after ``now``, or None if the schedule is exhausted."""
        now = now or self.clock()
        return self.trigger.get_next_fire_time(None, now)

    async def run(self, max_cycles: Optional[int] = None):
        """
        Run the scheduling loop.

        Args:
            max_cycles: Stop after this many cycles (default: run forever)

        Raises:
            Exception: Whatever the job raised; the loop does not retry
        """
        logger.info(f"Backup schedule: {self.cron_expression}")

        while max_cycles is None or self.cycles < max_cycles:
            now = self.clock()
            upcoming = self.next_fire_time(now)

            if upcoming is None:
                logger.warning(f"Schedule '{self.cron_expression}' has no upcoming fire time")
                await self.sleep(POLL_INTERVAL)
                continue

            if self.last_fire_time is not None and upcoming <= self.last_fire_time:
                await self.sleep(POLL_INTERVAL)
                continue

            self.last_fire_time = upcoming
            logger.info(f"Next backup will be performed at: {upcoming.isoformat()}")

            delay = (upcoming - now).total_seconds()
            await self.sleep(max(delay, 0))

            self.job()
            self.cycles += 1


def run_scheduled(cron_expression: str, job: Callable[[], object], timezone=None):
    """Run a BackupScheduler until its job raises."""
    scheduler = BackupScheduler(cron_expression, job, timezone=timezone)
    asyncio.run(scheduler.run())
