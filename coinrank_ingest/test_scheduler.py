import pytest
from datetime import datetime, timedelta, timezone

from coinrank_ingest.config import RunTime
from coinrank_ingest.scheduler import DailyScheduler, next_run_delay

UTC = timezone.utc


@pytest.mark.parametrize("now, target, expected", [
    (datetime(2024, 3, 10, 10, 0, 0, tzinfo=UTC), (20, 32, 0), timedelta(hours=10, minutes=32)),
    (datetime(2024, 3, 10, 21, 0, 0, tzinfo=UTC), (20, 32, 0), timedelta(hours=23, minutes=32)),
    (datetime(2024, 3, 10, 20, 32, 0, tzinfo=UTC), (20, 32, 0), timedelta(days=1)),
    (datetime(2024, 3, 10, 20, 31, 59, tzinfo=UTC), (20, 32, 0), timedelta(seconds=1)),
    (datetime(2024, 12, 31, 23, 59, 59, tzinfo=UTC), (0, 0, 0), timedelta(seconds=1)),
    (datetime(2024, 2, 28, 23, 0, 0, tzinfo=UTC), (2, 17, 0), timedelta(hours=3, minutes=17)),
])
def test_next_run_delay(now, target, expected):
    assert next_run_delay(now, *target) == expected


def test_next_run_delay_just_after_target_waits_almost_a_day():
    now = datetime(2024, 3, 10, 20, 32, 0, 1, tzinfo=UTC)

    delay = next_run_delay(now, 20, 32, 0)

    assert delay == timedelta(days=1) - timedelta(microseconds=1)


def test_next_run_delay_naive_treated_as_utc():
    assert next_run_delay(datetime(2024, 3, 10, 10, 0), 11, 0, 0) == timedelta(hours=1)


def test_next_run_delay_converts_other_timezones():
    # 12:00 at UTC+2 is 10:00 UTC
    now = datetime(2024, 3, 10, 12, 0, tzinfo=timezone(timedelta(hours=2)))

    assert next_run_delay(now, 11, 0, 0) == timedelta(hours=1)


def test_next_run_delay_lands_on_target():
    start = datetime(2024, 1, 1, 0, 0, 0, tzinfo=UTC)
    for minutes in range(0, 48 * 60, 37):
        now = start + timedelta(minutes=minutes, seconds=minutes % 60)

        delay = next_run_delay(now, 6, 45, 30)
        run_at = now + delay

        assert delay >= timedelta(0)
        assert delay <= timedelta(days=1)
        assert (run_at.hour, run_at.minute, run_at.second) == (6, 45, 30)
        today = now.replace(hour=6, minute=45, second=30, microsecond=0)
        expected_date = now.date() if today > now else (now + timedelta(days=1)).date()
        assert run_at.date() == expected_date


class FakeEvent:
    def __init__(self, set_on_wait=None):
        self.waits = []
        self._set = False
        self._set_on_wait = set_on_wait

    def is_set(self):
        return self._set

    def set(self):
        self._set = True

    def wait(self, timeout=None):
        self.waits.append(timeout)
        if self._set_on_wait is not None and len(self.waits) >= self._set_on_wait:
            self._set = True
        return self._set


@pytest.fixture
def clock():
    return lambda: datetime(2024, 3, 10, 20, 0, 0, tzinfo=UTC)


class TestDailyScheduler:

    def test_runs_job_after_each_wait(self, clock):
        calls = []
        event = FakeEvent()
        scheduler = DailyScheduler(lambda: calls.append(1), RunTime(20, 32, 0), clock=clock, stop_event=event)

        scheduler.run_forever(max_cycles=3)

        assert len(calls) == 3
        assert event.waits == [1920.0, 1920.0, 1920.0]

    def test_failed_job_does_not_end_schedule(self, clock):
        calls = []

        def job():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")

        scheduler = DailyScheduler(job, RunTime(20, 32, 0), clock=clock, stop_event=FakeEvent())

        scheduler.run_forever(max_cycles=3)

        assert len(calls) == 3
        assert scheduler.cycles_run == 3

    def test_stop_during_wait_skips_job(self, clock):
        calls = []
        scheduler = DailyScheduler(lambda: calls.append(1), RunTime(20, 32, 0), clock=clock,
                                   stop_event=FakeEvent(set_on_wait=2))

        scheduler.run_forever()

        assert len(calls) == 1

    def test_stop_from_job_ends_loop(self, clock):
        scheduler = DailyScheduler(lambda: scheduler.stop(), RunTime(20, 32, 0), clock=clock,
                                   stop_event=FakeEvent())

        scheduler.run_forever()

        assert scheduler.cycles_run == 1

    def test_logs_next_run(self, clock, caplog):
        caplog.set_level("INFO")
        scheduler = DailyScheduler(lambda: None, RunTime(20, 32, 0), clock=clock, stop_event=FakeEvent())

        scheduler.run_forever(max_cycles=1)

        assert "[scheduler] Next run at 2024-03-10 20:32:00 UTC" in caplog.text

    def test_next_delay_uses_run_at(self, clock):
        scheduler = DailyScheduler(lambda: None, RunTime(21, 0, 0), clock=clock)

        assert scheduler.next_delay() == timedelta(hours=1)
