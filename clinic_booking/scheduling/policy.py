from dataclasses import dataclass

from ..core.config import settings


@dataclass(frozen=True)
class ClinicPolicy:
    """Booking rules a clinic applies to its appointments."""

    slot_duration: int = settings.DEFAULT_SLOT_DURATION
    booking_advance_days: int = settings.DEFAULT_BOOKING_ADVANCE_DAYS
    cancel_before_hours: int = settings.DEFAULT_CANCEL_BEFORE_HOURS
    timezone: str = settings.DEFAULT_TIMEZONE
    auto_confirm: bool = False
