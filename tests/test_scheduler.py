import asyncio
from datetime import datetime

import pytest

from grabber.core.entities import PassResult, RunState
from grabber.services.scheduler import CronSchedule, Scheduler
from grabber.workflows.base import Pipeline


class FakePipeline(Pipeline):
    name = "fake"

    def __init__(self, valid: bool = True):
        self.state = RunState()
        self.valid = valid
        self.passes = 0
        self.recovered = 0
        self.release = None
        self.error = None

    async def run_pass(self) -> PassResult:
        self.passes += 1
        if self.error is not None:
            raise self.error
        if self.release is not None:
            await self.release.wait()
        return PassResult()

    async def refresh_credentials(self) -> bool:
        self.state.credentials_valid = self.valid
        return self.valid

    async def recover(self) -> int:
        self.recovered += 1
        return 0


class FakeDigest:
    def __init__(self):
        self.sent = 0

    async def send_weekly_digest(self, now=None) -> bool:
        self.sent += 1
        return True


def test_weekly_cron_fires_next_sunday_morning():
    schedule = CronSchedule.parse("0 10 * * 0")

    # Wednesday
    assert schedule.next_after(datetime(2026, 3, 4, 12, 0)) == datetime(2026, 3, 8, 10, 0)
    # exactly on a firing time moves to the next week
    assert schedule.next_after(datetime(2026, 3, 8, 10, 0)) == datetime(2026, 3, 15, 10, 0)
    assert schedule.next_after(datetime(2026, 3, 8, 9, 59, 30)) == datetime(2026, 3, 8, 10, 0)


def test_seven_means_sunday():
    assert CronSchedule.parse("0 10 * * 7").weekdays == CronSchedule.parse("0 10 * * 0").weekdays


def test_steps_ranges_and_lists():
    schedule = CronSchedule.parse("*/15 9-17 * * 1-5")
    assert schedule.minutes == frozenset({0, 15, 30, 45})
    assert schedule.hours == frozenset(range(9, 18))
    # Friday 17:50 rolls over the weekend to Monday 09:00
    assert schedule.next_after(datetime(2026, 3, 6, 17, 50)) == datetime(2026, 3, 9, 9, 0)

    assert CronSchedule.parse("5,35 * * * *").next_after(datetime(2026, 3, 4, 12, 10)) == datetime(2026, 3, 4, 12, 35)


def test_day_fields_are_ored_when_both_restricted():
    schedule = CronSchedule.parse("0 0 1 * 5")
    # Saturday 28th: the 1st (Wednesday) comes before the next Friday
    assert schedule.next_after(datetime(2026, 3, 28, 12, 0)) == datetime(2026, 4, 1, 0, 0)
    assert schedule.next_after(datetime(2026, 4, 1, 0, 0)) == datetime(2026, 4, 3, 0, 0)


@pytest.mark.parametrize("expression", ["* * * *", "61 * * * *", "a * * * *", "*/0 * * * *", "0 10 * * 8"])
def test_invalid_expressions_are_rejected(expression):
    with pytest.raises(ValueError):
        CronSchedule.parse(expression)


def test_overlapping_tick_is_dropped():
    pipeline = FakePipeline()
    scheduler = Scheduler(pipeline, poll_interval=60)

    async def scenario():
        pipeline.release = asyncio.Event()
        first = asyncio.create_task(scheduler.tick())
        await asyncio.sleep(0)
        await scheduler.tick()
        pipeline.release.set()
        await first

    asyncio.run(scenario())

    assert pipeline.passes == 1
    assert pipeline.state.pass_in_progress is False


def test_failing_pass_is_contained():
    pipeline = FakePipeline()
    pipeline.error = RuntimeError("database is locked")
    scheduler = Scheduler(pipeline)

    asyncio.run(scheduler.tick())
    asyncio.run(scheduler.tick())

    assert pipeline.passes == 2
    assert pipeline.state.pass_in_progress is False


def test_start_recovers_then_runs_first_pass():
    pipeline = FakePipeline()
    digest = FakeDigest()
    scheduler = Scheduler(pipeline, digest, poll_interval=3600, digest_schedule=CronSchedule.parse("0 10 * * 0"))

    async def scenario():
        await scheduler.start()
        await scheduler.stop()

    asyncio.run(scenario())

    assert pipeline.recovered == 1
    assert pipeline.passes == 1
    assert pipeline.state.stop_requested is True
    assert digest.sent == 0


def test_start_with_invalid_credentials_skips_first_pass():
    pipeline = FakePipeline(valid=False)
    scheduler = Scheduler(pipeline, poll_interval=3600)

    async def scenario():
        await scheduler.start()
        await scheduler.stop()

    asyncio.run(scenario())

    assert pipeline.passes == 0


def test_poll_loop_runs_passes_until_stopped():
    pipeline = FakePipeline()
    scheduler = Scheduler(pipeline, poll_interval=0.01)

    async def scenario():
        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()
        passes = pipeline.passes
        await asyncio.sleep(0.05)
        return passes

    passes_at_stop = asyncio.run(scenario())

    assert pipeline.passes >= 2
    assert pipeline.passes == passes_at_stop


def test_stop_waits_for_in_flight_pass():
    pipeline = FakePipeline()
    scheduler = Scheduler(pipeline, poll_interval=0.01)

    async def scenario():
        pipeline.valid = False
        await scheduler.start()
        pipeline.state.credentials_valid = True
        pipeline.release = asyncio.Event()
        while not pipeline.state.pass_in_progress:
            await asyncio.sleep(0.005)
        asyncio.get_running_loop().call_later(0.05, pipeline.release.set)
        await scheduler.stop()
        return pipeline.state.pass_in_progress

    assert asyncio.run(scenario()) is False
