"""
Shared quota tracker for Gemini API calls (per-minute and per-day budgets).
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pricewatch.config import settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QuotaState:
    minute_count: int
    minute_window_start: datetime
    day_count: int
    day_window_start: datetime


class QuotaTracker:
    """
    Tracks the call budget of one upstream resource shared by every request
    in the process.

    Windows are rolled forward lazily on each access: the minute counter
    resets once 60 seconds have passed since the window started, the day
    counter resets when the calendar day (UTC) changes. Every method holds
    the lock, and ``try_acquire`` is the check-then-increment unit callers
    should use so two requests can never both take the last slot.
    """

    def __init__(
        self,
        max_requests_per_minute: int = 60,
        max_requests_per_day: int = 1000,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.max_per_minute = max_requests_per_minute
        self.max_per_day = max_requests_per_day
        self._clock = clock or _utcnow
        now = self._clock()
        self.state = QuotaState(
            minute_count=0,
            minute_window_start=now,
            day_count=0,
            day_window_start=now,
        )
        self._lock = threading.Lock()

    def _roll_windows(self, now: datetime):
        state = self.state
        if (now - state.minute_window_start).total_seconds() >= 60:
            state.minute_count = 0
            state.minute_window_start = now
        if now.date() != state.day_window_start.date():
            logger.info(f"🔄 New day ({now.date()}) - resetting daily Gemini quota")
            state.day_count = 0
            state.day_window_start = now

    def _has_capacity(self) -> bool:
        return (self.state.minute_count < self.max_per_minute
                and self.state.day_count < self.max_per_day)

    def can_call(self) -> bool:
        """Check whether a call fits in the current windows, without counting it."""
        with self._lock:
            self._roll_windows(self._clock())
            return self._has_capacity()

    def record_call(self):
        """Count one call against both windows."""
        with self._lock:
            self._roll_windows(self._clock())
            self.state.minute_count += 1
            self.state.day_count += 1

    def try_acquire(self) -> bool:
        """Atomically check for capacity and count the call if there is some."""
        with self._lock:
            self._roll_windows(self._clock())
            if not self._has_capacity():
                logger.warning(
                    f"⏳ Gemini quota reached ({self.state.minute_count}/{self.max_per_minute} this minute, "
                    f"{self.state.day_count}/{self.max_per_day} today)"
                )
                return False
            self.state.minute_count += 1
            self.state.day_count += 1
            logger.debug(f"🤖 Gemini API call {self.state.minute_count}/{self.max_per_minute} in current minute")
            return True

    def remaining(self) -> Dict[str, int]:
        with self._lock:
            self._roll_windows(self._clock())
            return {
                "per_minute": max(0, self.max_per_minute - self.state.minute_count),
                "per_day": max(0, self.max_per_day - self.state.day_count),
            }

    def get_stats(self) -> Dict[str, Any]:
        """Current quota status for the rate-limit endpoint."""
        remaining = self.remaining()
        with self._lock:
            return {
                "max_requests_per_minute": self.max_per_minute,
                "max_requests_per_day": self.max_per_day,
                "requests_in_current_minute": self.state.minute_count,
                "requests_today": self.state.day_count,
                "remaining": remaining,
                "rate_limited": remaining["per_minute"] == 0 or remaining["per_day"] == 0,
            }


# Global quota tracker (shared across requests)
gemini_quota_tracker = QuotaTracker(
    max_requests_per_minute=settings.GEMINI_RATE_LIMIT_PER_MINUTE,
    max_requests_per_day=settings.GEMINI_RATE_LIMIT_PER_DAY,
)
