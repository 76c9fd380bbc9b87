from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction used for turn pacing.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class WallClock(Protocol):
    """Calendar time source used to stamp finished sessions."""

    def utc_now(self) -> datetime:
        """Return an aware UTC datetime."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class SystemWallClock:
    def utc_now(self) -> datetime:
        return datetime.now(timezone.utc)
