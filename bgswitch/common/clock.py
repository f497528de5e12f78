"""
Clock abstraction so polling loops can be driven deterministically in tests.
"""

import time
from datetime import datetime, timezone


class Clock:
    """Wall/monotonic time and sleeping, backed by the time module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


SYSTEM_CLOCK = Clock()
