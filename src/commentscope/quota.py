"""
Rolling-window quota accounting for embedding calls.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from .models import QuotaState
from .policy import DAY, DEFAULT_POLICY, HOUR, MINUTE, ScoringPolicy


@dataclass(frozen=True)
class QuotaAvailability:
    """Remaining fraction of each window, plus the weighted overall figure."""

    minute: float
    hour: float
    day: float
    overall: float

    def as_dict(self) -> dict[str, float]:
        return {
            "minute": self.minute,
            "hour": self.hour,
            "day": self.day,
            "overall": self.overall,
        }


class QuotaTracker:
    """Track estimated token spend against minute, hour and day limits."""

    WINDOWS = ("minute", "hour", "day")

    def __init__(
        self,
        policy: ScoringPolicy = DEFAULT_POLICY,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self._clock = clock
        self._lock = threading.Lock()
        self._lengths = {"minute": MINUTE, "hour": HOUR, "day": DAY}
        self._limits = {
            "minute": policy.quota_minute_limit,
            "hour": policy.quota_hour_limit,
            "day": policy.quota_day_limit,
        }
        now = clock()
        self._windows: dict[str, QuotaState] = {
            name: QuotaState(window_start=now, used=0) for name in self.WINDOWS
        }

    def limit(self, window: str) -> int:
        return self._limits[window]

    def available(self) -> QuotaAvailability:
        with self._lock:
            self._roll_windows()
            fractions = {
                name: _clamp(1.0 - self._windows[name].used / self._limits[name])
                for name in self.WINDOWS
            }
        overall = (
            self.policy.quota_day_weight * fractions["day"]
            + self.policy.quota_hour_weight * fractions["hour"]
            + self.policy.quota_minute_weight * fractions["minute"]
        )
        return QuotaAvailability(
            minute=fractions["minute"],
            hour=fractions["hour"],
            day=fractions["day"],
            overall=overall,
        )

    def consume(self, amount: int) -> None:
        """Charge *amount* estimated tokens to every window."""
        if amount <= 0:
            return
        with self._lock:
            self._roll_windows()
            for name in self.WINDOWS:
                current = self._windows[name]
                self._windows[name] = QuotaState(
                    window_start=current.window_start,
                    used=current.used + amount,
                )

    def usage(self, window: str) -> int:
        with self._lock:
            self._roll_windows()
            return self._windows[window].used

    def state(self) -> dict[str, QuotaState]:
        with self._lock:
            self._roll_windows()
            return dict(self._windows)

    def _roll_windows(self) -> None:
        now = self._clock()
        for name in self.WINDOWS:
            current = self._windows[name]
            if now - current.window_start > self._lengths[name]:
                self._windows[name] = QuotaState(window_start=now, used=0)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))
