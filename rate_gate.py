"""
rate_gate.py - Rolling per-minute and per-day quota for provider calls
"""

import threading
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Callable
from config import REQUESTS_PER_MINUTE, REQUESTS_PER_DAY
from utils_logging import log_event

MINUTE_WINDOW_SECONDS = 60.0
WAKE_MARGIN_SECONDS = 0.1


class QuotaExceeded(RuntimeError):
    """The daily request ceiling is reached; nothing will free up before midnight."""


def next_local_midnight(now: float) -> float:
    """Epoch timestamp of the next local midnight after `now`."""
    today = datetime.fromtimestamp(now).replace(hour=0, minute=0, second=0, microsecond=0)
    return (today + timedelta(days=1)).timestamp()


class RateGate:
    """
    Two rolling windows of request timestamps.

    acquire() returns at once when both windows have room, sleeps until the
    oldest minute entry expires when only the minute window is full, and
    raises QuotaExceeded when the day window is full. A woken waiter checks
    again before recording, so several threads sharing one gate cannot
    overshoot the minute quota together.
    """

    def __init__(
        self,
        requests_per_minute: int = REQUESTS_PER_MINUTE,
        requests_per_day: int = REQUESTS_PER_DAY,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if requests_per_minute < 1 or requests_per_day < 1:
            raise ValueError("rate limits must be at least 1 request")

        self.requests_per_minute = requests_per_minute
        self.requests_per_day = requests_per_day
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()

        self.minute_window: deque = deque()
        self.day_window: deque = deque()
        self.daily_reset_at = next_local_midnight(clock())

    def _roll_day(self, now: float):
        if now >= self.daily_reset_at:
            self.day_window.clear()
            self.daily_reset_at = next_local_midnight(now)
            log_event("Daily request window reset", "debug")

    def _prune_minute(self, now: float):
        while self.minute_window and now - self.minute_window[0] >= MINUTE_WINDOW_SECONDS:
            self.minute_window.popleft()

    def acquire(self):
        """Block until a request slot is available, then claim it."""
        while True:
            with self._lock:
                now = self._clock()
                self._roll_day(now)
                self._prune_minute(now)

                if len(self.day_window) >= self.requests_per_day:
                    hours_left = (self.daily_reset_at - now) / 3600
                    log_event(f"⛔ Daily rate limit reached ({self.requests_per_day}); resets in {hours_left:.1f}h", "warning")
                    raise QuotaExceeded(f"Daily rate limit of {self.requests_per_day} requests exceeded")

                if len(self.minute_window) < self.requests_per_minute:
                    self.minute_window.append(now)
                    self.day_window.append(now)
                    return

                wait = MINUTE_WINDOW_SECONDS - (now - self.minute_window[0]) + WAKE_MARGIN_SECONDS

            log_event(f"⏱️  Rate limit: waiting {wait:.2f}s for a minute slot", "debug")
            self._sleep(wait)

    def status(self) -> dict:
        """Remaining capacity in both windows. Does not modify the windows."""
        with self._lock:
            now = self._clock()
            minute_used = sum(1 for t in self.minute_window if now - t < MINUTE_WINDOW_SECONDS)
            day_used = 0 if now >= self.daily_reset_at else len(self.day_window)

        return {
            "minuteRemaining": self.requests_per_minute - minute_used,
            "dayRemaining": self.requests_per_day - day_used,
        }
