"""
Token-bucket rate limiter used to pace upstream page requests.

The bucket holds at most ``burst`` permits and refills one permit every
``interval_seconds``. With ``burst=1`` this strictly serializes callers at a
fixed minimum spacing.
"""

import time
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class AcquireCancelled(Exception):
    """The stop event was set while waiting for a permit."""
    pass


class TokenBucketLimiter:
    """
    Blocking token bucket.

    :param interval_seconds: Seconds needed to refill one permit
    :param burst: Maximum number of permits that can accumulate
    :param clock: Monotonic clock, injectable for tests
    :param sleep: Sleep function, injectable for tests
    """

    def __init__(
        self,
        interval_seconds: float,
        burst: int = 1,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        if burst < 1:
            raise ValueError("burst must be >= 1")

        self.interval_seconds = interval_seconds
        self.burst = burst
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._tokens = float(burst)
        self._last_refill = self._clock()

    def _refill(self):
        now = self._clock()
        elapsed = now - self._last_refill
        self._last_refill = now

        if self.interval_seconds == 0:
            self._tokens = float(self.burst)
            return

        self._tokens = min(float(self.burst), self._tokens + elapsed / self.interval_seconds)

    def acquire(self, stop_event=None) -> float:
        """
        Block until a permit is available, then take it.

        :param stop_event: Optional threading.Event; when given the wait is
                           done on it and setting it cancels the acquire
        :return: Seconds spent waiting
        :raises AcquireCancelled: If stop_event is set before a permit is taken
        """
        waited = 0.0
        self._refill()

        while self._tokens < 1.0:
            delay = (1.0 - self._tokens) * self.interval_seconds
            logger.debug(f"Rate limiter waiting {delay:.3f}s for a permit")
            if stop_event is None:
                self._sleep(delay)
            elif stop_event.wait(delay):
                raise AcquireCancelled()
            waited += delay
            self._refill()

        if stop_event is not None and stop_event.is_set():
            raise AcquireCancelled()

        self._tokens -= 1.0
        return waited
