"""
Clock - Freezable time source for flush deadlines and token timestamps.

All "now" values in the pipeline come from a Clock so that time-based
thresholds can be tested without sleeping.

Usage:
    clock = Clock()
    deadline = clock.now() + 10

    # Freeze time for testing
    clock.freeze(1_700_000_000)
    clock.advance(30)
    assert clock.now() == 1_700_000_030
"""

import threading
import time
from typing import Optional


class Clock:
    """
    A wall clock (seconds since the epoch) that can be frozen.

    When frozen, now() returns the frozen value until it is advanced or
    unfrozen. Otherwise it returns time.time().
    """

    def __init__(self, frozen_time: Optional[float] = None):
        """
        Initialize the Clock.

        Args:
            frozen_time: If provided, the clock starts frozen at this time
        """
        self._frozen_time: Optional[float] = frozen_time
        self._lock = threading.Lock()

    def now(self) -> float:
        """
        Get the current time in seconds since the epoch.

        Returns:
            Current time (frozen or real)
        """
        with self._lock:
            if self._frozen_time is not None:
                return self._frozen_time
        return time.time()

    def freeze(self, timestamp: float) -> None:
        """
        Freeze the clock at a specific time.

        Args:
            timestamp: Seconds since the epoch
        """
        with self._lock:
            self._frozen_time = float(timestamp)

    def advance(self, seconds: float) -> float:
        """
        Move a frozen clock forward.

        Raises:
            RuntimeError: If the clock is not frozen
        """
        with self._lock:
            if self._frozen_time is None:
                raise RuntimeError("Cannot advance a clock that is not frozen")
            self._frozen_time += seconds
            return self._frozen_time

    def unfreeze(self) -> None:
        """Unfreeze the clock to return real time."""
        with self._lock:
            self._frozen_time = None

    @property
    def is_frozen(self) -> bool:
        """Check if the clock is frozen."""
        with self._lock:
            return self._frozen_time is not None

    def __enter__(self) -> "Clock":
        return self

    def __exit__(self, *args) -> None:
        self.unfreeze()


# Shared real-time clock used when callers do not supply one
system_clock = Clock()
