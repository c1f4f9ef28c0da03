"""
Poll and digest triggers.

The poll trigger runs a pipeline pass every `poll_interval` seconds and drops
a tick while the previous pass is still running. The digest trigger fires on a
five-field cron expression in local time.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import FrozenSet, Optional, Set

from grabber.services.digest import DigestReporter
from grabber.workflows.base import Pipeline

logger = logging.getLogger(__name__)

# (name, minimum, maximum) for minute, hour, day of month, month, day of week
_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day of month", 1, 31),
    ("month", 1, 12),
    ("day of week", 0, 7),
)


def _parse_field(expr: str, name: str, low: int, high: int) -> FrozenSet[int]:
    values: Set[int] = set()

    for part in expr.split(","):
        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) == 0:
                raise ValueError(f"Invalid step in {name} field: {expr!r}")
            step = int(step_text)

        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_text, end_text = part.split("-", 1)
            if not (start_text.isdigit() and end_text.isdigit()):
                raise ValueError(f"Invalid range in {name} field: {expr!r}")
            start, end = int(start_text), int(end_text)
        elif part.isdigit():
            start = int(part)
            end = high if step > 1 else start
        else:
            raise ValueError(f"Invalid {name} field: {expr!r}")

        if start < low or end > high or start > end:
            raise ValueError(f"{name} field out of range ({low}-{high}): {expr!r}")

        values.update(range(start, end + 1, step))

    return frozenset(values)


@dataclass(frozen=True)
class CronSchedule:
    """
    Standard five-field cron expression: minute hour day-of-month month day-of-week.
    Day of week accepts 0-7 with both 0 and 7 meaning Sunday.
    """

    expression: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> "CronSchedule":
        parts = expression.split()
        if len(parts) != 5:
            raise ValueError(f"Cron expression needs 5 fields, got {len(parts)}: {expression!r}")

        parsed = [_parse_field(part, *bounds) for part, bounds in zip(parts, _FIELDS)]
        minutes, hours, days, months, weekdays = parsed
        # cron weekday: 0 = Sunday; python weekday: 0 = Monday
        weekdays = frozenset(d % 7 for d in weekdays)

        return cls(
            expression=expression,
            minutes=minutes,
            hours=hours,
            days=days,
            months=months,
            weekdays=weekdays,
            day_restricted=not parts[2].startswith("*"),
            weekday_restricted=not parts[4].startswith("*"),
        )

    def _day_matches(self, dt: datetime) -> bool:
        if dt.month not in self.months:
            return False
        day_ok = dt.day in self.days
        weekday_ok = (dt.weekday() + 1) % 7 in self.weekdays
        # Both restricted: either one matching is enough
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def next_after(self, dt: datetime) -> datetime:
        """First matching minute strictly after `dt`."""
        candidate = dt.replace(second=0, microsecond=0) + timedelta(minutes=1)
        # Four years covers every satisfiable day/month combination, Feb 29 included
        limit = candidate + timedelta(days=366 * 4 + 1)

        while candidate < limit:
            if not self._day_matches(candidate):
                candidate = candidate.replace(hour=0, minute=0) + timedelta(days=1)
                continue
            if candidate.hour not in self.hours:
                candidate = candidate.replace(minute=0) + timedelta(hours=1)
                continue
            if candidate.minute not in self.minutes:
                candidate += timedelta(minutes=1)
                continue
            return candidate

        raise ValueError(f"Cron expression never fires: {self.expression!r}")


class Scheduler:
    """
    Drives a pipeline on a fixed poll interval and a cron-scheduled digest.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        digest: Optional[DigestReporter] = None,
        poll_interval: float = 60,
        digest_schedule: Optional[CronSchedule] = None,
    ):
        self.pipeline = pipeline
        self.digest = digest
        self.poll_interval = poll_interval
        self.digest_schedule = digest_schedule
        self._loops: list[asyncio.Task] = []
        self._ticks: Set[asyncio.Task] = set()

    @property
    def state(self):
        return self.pipeline.state

    async def start(self) -> None:
        await self.pipeline.recover()

        if await self.pipeline.refresh_credentials():
            await self.tick()
        else:
            logger.warning("Starting with invalid credentials, polling will resume once they are restored")

        self._loops.append(asyncio.create_task(self._poll_loop(), name="poll"))
        if self.digest is not None and self.digest_schedule is not None:
            self._loops.append(asyncio.create_task(self._digest_loop(), name="digest"))

        logger.info(
            f"Scheduler started: polling every {self.poll_interval}s"
            + (f", digest at '{self.digest_schedule.expression}'" if self.digest_schedule else "")
        )

    async def tick(self) -> None:
        """Run one pass unless one is already in progress."""
        if self.state.stop_requested:
            return
        if self.state.pass_in_progress:
            logger.debug("Previous pass still running, dropping tick")
            return

        self.state.pass_in_progress = True
        try:
            await self.pipeline.run_pass()
        except Exception as e:
            logger.exception(f"Pass failed: {e}")
        finally:
            self.state.pass_in_progress = False

    async def _poll_loop(self) -> None:
        while not self.state.stop_requested:
            await asyncio.sleep(self.poll_interval)
            if self.state.stop_requested:
                break
            task = asyncio.create_task(self.tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)

    async def _digest_loop(self) -> None:
        while not self.state.stop_requested:
            now = datetime.now()
            next_run = self.digest_schedule.next_after(now)
            logger.info(f"Next digest at {next_run.isoformat(timespec='minutes')}")
            await asyncio.sleep(max((next_run - now).total_seconds(), 0))
            if self.state.stop_requested:
                break
            try:
                await self.digest.send_weekly_digest()
            except Exception as e:
                logger.exception(f"Weekly digest failed: {e}")

    async def wait(self) -> None:
        """Block until the loops finish (after `stop`)."""
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)

    async def stop(self) -> None:
        """
        Stop scheduling, cancel the timers and let the in-flight item finish.
        """
        logger.info("Stopping scheduler...")
        self.pipeline.request_stop()

        for task in self._loops:
            task.cancel()
        await self.wait()

        if self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)
        logger.info("Scheduler stopped")
