"""Per-source failure accounting with windowed lockout.

Each source address gets its own entry, so one misbehaving host on the
network cannot lock out the others. A lockout is a cooldown, not a ban:
once it elapses the source may try again.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

__all__ = [
    "Allowed",
    "Locked",
    "RateLimitEntry",
    "RateLimiter",
]


@dataclass(frozen=True)
class Allowed:
    """Source may attempt pairing/authentication."""


@dataclass(frozen=True)
class Locked:
    """Source is locked out.

    Attributes:
        remaining: Whole seconds until the lockout ends (at least 1).
    """

    remaining: int


CheckResult = Union[Allowed, Locked]


@dataclass
class RateLimitEntry:
    """Failure accounting for one source."""

    window_start: float
    attempt_count: int = 0
    lockout_until: Optional[float] = None

    def is_locked(self, now: float) -> bool:
        return self.lockout_until is not None and now < self.lockout_until


class RateLimiter:
    """Rolling-window failure counter with lockout.

    Attributes:
        max_attempts: Failures within one window that trigger a lockout.
        window: Window length in seconds.
        lockout: Lockout length in seconds.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window: float = 30.0,
        lockout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_attempts = max_attempts
        self.window = window
        self.lockout = lockout
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}

    def check(self, source: str) -> CheckResult:
        """Check whether a source is currently locked out.

        Does not modify any state.
        """
        entry = self._entries.get(source)
        now = self._clock()
        if entry is None or not entry.is_locked(now):
            return Allowed()
        return Locked(remaining=max(1, math.ceil(entry.lockout_until - now)))

    def record_failure(self, source: str) -> None:
        """Count a failed attempt, locking the source out at the threshold."""
        now = self._clock()
        self._prune(now)

        entry = self._entries.get(source)
        if entry is None:
            entry = RateLimitEntry(window_start=now)
            self._entries[source] = entry

        if now - entry.window_start > self.window:
            entry.window_start = now
            entry.attempt_count = 0

        entry.attempt_count += 1

        if entry.attempt_count >= self.max_attempts:
            entry.lockout_until = now + self.lockout

    def record_success(self, source: str) -> None:
        """Reset all accounting for a source."""
        entry = self._entries.get(source)
        if entry is None:
            return
        entry.window_start = self._clock()
        entry.attempt_count = 0
        entry.lockout_until = None

    def attempts(self, source: str) -> int:
        """Failures counted for a source in its current window."""
        entry = self._entries.get(source)
        return entry.attempt_count if entry else 0

    def _prune(self, now: float) -> None:
        """Drop entries that are neither locked nor inside their window."""
        stale = [
            source
            for source, entry in self._entries.items()
            if not entry.is_locked(now) and now - entry.window_start > self.window
        ]
        for source in stale:
            del self._entries[source]
