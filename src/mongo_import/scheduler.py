"""
Cron mode for the importer.

Uses APScheduler to re-run a full import on a cron expression. Both standard
5-field crontab expressions and Quartz-style 6/7-field expressions (leading
seconds, optional trailing year, `?` placeholders) are accepted.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Optional

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from .errors import ConfigError

JOB_ID = "job_mongo_import"

_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")
_NUMERIC_WEEKDAY = re.compile(r"^(\*|\d+)(?:-(\d+))?(?:/(\d+))?$")


def _weekday_names(field: str, sunday: int) -> str:
    """Rewrite numeric day-of-week items as weekday names.

    APScheduler numbers weekdays from Monday = 0, while crontab counts from
    Sunday = 0 (7 also meaning Sunday) and Quartz from Sunday = 1. Numeric
    items, ranges and steps are expanded to explicit names so ranges that
    wrap past Saturday stay valid. Named and other items are left as they
    are.
    """
    if field in ("*", "?"):
        return "*"
    names: list[str] = []
    for item in field.split(","):
        m = _NUMERIC_WEEKDAY.match(item)
        if m is None:
            names.append(item)
            continue
        start, end, step = m.groups()
        if start == "*":
            lo, hi = sunday, sunday + 6
        else:
            lo = int(start)
            hi = int(end) if end is not None else (sunday + 6 if step else lo)
        if not sunday <= lo <= hi <= 7 or step == "0":
            raise ValueError(f"invalid day of week {item!r}")
        for n in range(lo, hi + 1, int(step or 1)):
            name = _WEEKDAY_NAMES[(n - sunday) % 7]
            if name not in names:
                names.append(name)
    return ",".join(names)


def cron_trigger(expression: str, timezone: Any = None) -> CronTrigger:
    """Build a CronTrigger from a crontab or Quartz-style expression.

    Raises:
        ConfigError: the expression has the wrong number of fields or a
            field APScheduler rejects
    """
    fields = expression.split()
    try:
        if len(fields) == 5:
            fields[4] = _weekday_names(fields[4], sunday=0)
            return CronTrigger.from_crontab(" ".join(fields), timezone=timezone)
        if len(fields) in (6, 7):
            fields = ["*" if f == "?" else f for f in fields]
            second, minute, hour, day, month, dow = fields[:6]
            year = fields[6] if len(fields) == 7 else None
            return CronTrigger(
                second=second,
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=_weekday_names(dow, sunday=1),
                year=year,
                timezone=timezone,
            )
    except ValueError as e:
        raise ConfigError(f"Invalid cron schedule {expression!r}: {e}") from e
    raise ConfigError(
        f"Invalid cron schedule {expression!r}: expected 5, 6 or 7 fields, got {len(fields)}"
    )


class ImportScheduler:
    """Runs `job` on a cron schedule.

    Overlapping runs are precluded: one instance at a time, and missed
    triggers are coalesced into one.
    """

    def __init__(
        self,
        schedule: str,
        job: Callable[[], Any],
        scheduler: Optional[BaseScheduler] = None,
    ):
        self.schedule = schedule
        self.trigger = cron_trigger(schedule)
        self._job = job
        self.scheduler = scheduler or BlockingScheduler()

    def _run_job(self) -> None:
        try:
            self._job()
        except Exception as e:
            # keep the schedule alive; the next trigger starts a fresh run
            logger.exception(f"Scheduled import failed: {e}")

    def add_job(self) -> None:
        self.scheduler.add_job(
            self._run_job,
            trigger=self.trigger,
            id=JOB_ID,
            name="Mongo bulk import",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def start(self) -> None:
        """Register the job and start the scheduler (blocks for BlockingScheduler)."""
        self.add_job()
        logger.info(f"Execute in cron mode with schedule of {self.schedule}")
        try:
            self.scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            self.stop()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
        logger.info("Import scheduler stopped")
