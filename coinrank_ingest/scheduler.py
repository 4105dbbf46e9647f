"""
Daily scheduler: wait until a fixed UTC time-of-day, run one job, repeat.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .config import RunTime

logger = logging.getLogger(__name__)


def next_run_delay(now: datetime, hour: int, minute: int, second: int) -> timedelta:
    """
    Time remaining until the next occurrence of hour:minute:second UTC.

    Today's occurrence is used only if it is strictly after ``now``;
    otherwise tomorrow's. Never negative.

    :param now: Current instant; naive values are taken as UTC
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now_utc = now.astimezone(timezone.utc)

    target = now_utc.replace(hour=hour, minute=minute, second=second, microsecond=0)
    if target <= now_utc:
        target += timedelta(days=1)

    return max(target - now_utc, timedelta(0))


class DailyScheduler:
    """
    Runs ``job`` once per day at ``run_at`` (UTC) until stopped.

    Cycles never overlap: the next delay is computed only after the current
    job returns. An exception raised by the job is logged and the schedule
    continues with the next day.
    """

    def __init__(
        self,
        job: Callable[[], object],
        run_at: RunTime,
        clock: Optional[Callable[[], datetime]] = None,
        stop_event: Optional[threading.Event] = None
    ):
        self.job = job
        self.run_at = run_at
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.stop_event = stop_event or threading.Event()
        self.cycles_run = 0

    def stop(self):
        self.stop_event.set()

    def next_delay(self) -> timedelta:
        return next_run_delay(self._clock(), self.run_at.hour, self.run_at.minute, self.run_at.second)

    def run_forever(self, max_cycles: Optional[int] = None):
        """
        Sleep until each scheduled time and run the job.

        Returns when stop() is called (or the stop event is set by a signal
        handler), or after ``max_cycles`` jobs when given.
        """
        while not self.stop_event.is_set():
            if max_cycles is not None and self.cycles_run >= max_cycles:
                break

            delay = self.next_delay()
            next_at = self._clock() + delay
            logger.info(
                f"[scheduler] Next run at {next_at.strftime('%Y-%m-%d %H:%M:%S')} UTC (in {delay})"
            )

            if self.stop_event.wait(delay.total_seconds()):
                break

            logger.info("[job] Starting coin fetch...")
            try:
                self.job()
            except Exception:
                logger.exception("[job] Cycle failed; keeping schedule")
            self.cycles_run += 1

        logger.info("[scheduler] Stopped")
