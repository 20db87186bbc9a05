from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    PAST_DATE = "PAST_DATE"
    OUT_OF_ADVANCE_WINDOW = "OUT_OF_ADVANCE_WINDOW"
    INVALID_TIME_RANGE = "INVALID_TIME_RANGE"
    OUTSIDE_WORKING_HOURS = "OUTSIDE_WORKING_HOURS"
    SLOT_ALREADY_BOOKED = "SLOT_ALREADY_BOOKED"
    CANCELLATION_WINDOW_PASSED = "CANCELLATION_WINDOW_PASSED"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    NOT_FOUND = "NOT_FOUND"


class BookingError(Exception):
    """A scheduling request was rejected.

    Carries a machine-readable ``kind`` that the API layer maps to a
    structured error response.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.kind.value,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self):
        return f"<BookingError(kind='{self.kind.value}', message='{self.message}')>"


def not_found(resource: str, resource_id: Any) -> BookingError:
    """Build a NOT_FOUND error for an unknown id."""
    return BookingError(
        ErrorKind.NOT_FOUND,
        f"{resource} not found",
        {"resource": resource, "id": resource_id},
    )
