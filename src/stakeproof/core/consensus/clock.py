"""
Host clock.

Operations read the clock once when they execute; there is no background
timer. Expiry is therefore evaluated lazily by whichever operation runs next.
"""

import threading
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class Clock:
    """Ledger position at execution time. Slots start at 1; 0 means "never"."""
    slot: int
    unix_timestamp: int

    def __post_init__(self):
        if self.slot < 1:
            raise ValueError("slot must be >= 1")


class SystemClock:
    """Wall-clock timestamps with a monotonically increasing slot counter."""

    def __init__(self, slot_duration: float = 0.4):
        self.slot_duration = slot_duration
        self._genesis = time.time()

    def __call__(self) -> Clock:
        now = time.time()
        slot = int((now - self._genesis) / self.slot_duration) + 1
        return Clock(slot=slot, unix_timestamp=int(now))


class ManualClock:
    """Caller-driven clock for replays and tests."""

    def __init__(self, slot: int = 1, unix_timestamp: int = 1_700_000_000):
        self._lock = threading.Lock()
        self.slot = slot
        self.unix_timestamp = unix_timestamp

    def advance(self, slots: int = 1, seconds: int = 0):
        with self._lock:
            self.slot += slots
            self.unix_timestamp += seconds

    def __call__(self) -> Clock:
        with self._lock:
            return Clock(slot=self.slot, unix_timestamp=self.unix_timestamp)
