"""Time sources consumed by the auction (integer Unix seconds)."""

import time
from typing import Protocol


class TimeSource(Protocol):
    def now(self) -> int:
        ...


class SystemTimeSource:
    """Wall-clock time, truncated to whole seconds."""

    def now(self) -> int:
        return int(time.time())


class ManualTimeSource:
    """
    Externally driven time.

    Used by tests and by the CLI's --now option to replay a scenario.
    """

    def __init__(self, start: int = 0):
        self._now = start

    def now(self) -> int:
        return self._now

    def set(self, timestamp: int) -> None:
        if timestamp < self._now:
            raise ValueError(f"Time cannot go backwards: {timestamp} < {self._now}")
        self._now = timestamp

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError(f"Cannot advance by negative amount: {seconds}")
        self._now += seconds
        return self._now
