"""
Clock abstraction for policy checks.

Booking windows and cancellation cutoffs depend on "now". Services take a
clock instead of calling ``datetime.now()`` so that checks are deterministic
under test.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


class Clock:
    """Wall clock returning timezone-aware datetimes."""

    def now(self, tz: Optional[str] = None) -> datetime:
        current = datetime.now(timezone.utc)
        if tz:
            return current.astimezone(ZoneInfo(tz))
        return current


class FixedClock(Clock):
    """Clock frozen at a given instant. Naive instants are taken as UTC."""

    def __init__(self, instant: datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self.instant = instant

    def now(self, tz: Optional[str] = None) -> datetime:
        if tz:
            return self.instant.astimezone(ZoneInfo(tz))
        return self.instant.astimezone(timezone.utc)

    def advance(self, **delta) -> None:
        """Move the clock forward, e.g. ``clock.advance(hours=2)``."""
        self.instant = self.instant + timedelta(**delta)


system_clock = Clock()
