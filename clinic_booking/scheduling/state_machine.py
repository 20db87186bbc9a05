"""
Appointment lifecycle.

    PENDING -> CONFIRMED
    PENDING/CONFIRMED -> COMPLETED | COMPLETED_OFFLINE | CANCELLED | NO_SHOW

COMPLETED, COMPLETED_OFFLINE, CANCELLED and NO_SHOW are terminal. Every
transition is also gated on the role of the actor requesting it.
"""

import enum
from typing import Dict, FrozenSet, List, Tuple

from ..core.security import ActorRole, STAFF_ROLES
from .errors import BookingError, ErrorKind


class AppointmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    COMPLETED_OFFLINE = "COMPLETED_OFFLINE"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# Statuses that hold a slot
BLOCKING_STATUSES: FrozenSet[AppointmentStatus] = frozenset({
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
})

TERMINAL_STATUSES: FrozenSet[AppointmentStatus] = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.COMPLETED_OFFLINE,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

_STAFF = frozenset(STAFF_ROLES)
_STAFF_OR_PATIENT = _STAFF | {ActorRole.PATIENT}
_STAFF_OR_DOCTOR = _STAFF | {ActorRole.DOCTOR}


def _from_open_states(target: AppointmentStatus, roles: FrozenSet[ActorRole]):
    return {
        (AppointmentStatus.PENDING, target): roles,
        (AppointmentStatus.CONFIRMED, target): roles,
    }


TRANSITIONS: Dict[Tuple[AppointmentStatus, AppointmentStatus], FrozenSet[ActorRole]] = {
    (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED): _STAFF,
    **_from_open_states(AppointmentStatus.CANCELLED, _STAFF_OR_PATIENT),
    **_from_open_states(AppointmentStatus.COMPLETED, _STAFF_OR_DOCTOR),
    **_from_open_states(AppointmentStatus.NO_SHOW, _STAFF),
    **_from_open_states(AppointmentStatus.COMPLETED_OFFLINE, _STAFF),
}


def is_blocking(status: AppointmentStatus) -> bool:
    return status in BLOCKING_STATUSES


def is_terminal(status: AppointmentStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(
    current: AppointmentStatus,
    target: AppointmentStatus,
    role: ActorRole,
) -> bool:
    """Whether an actor with ``role`` may move an appointment to ``target``."""
    return role in TRANSITIONS.get((current, target), frozenset())


def allowed_targets(current: AppointmentStatus, role: ActorRole) -> List[AppointmentStatus]:
    return [
        target
        for (source, target), roles in TRANSITIONS.items()
        if source == current and role in roles
    ]


def ensure_transition(
    current: AppointmentStatus,
    target: AppointmentStatus,
    role: ActorRole,
) -> None:
    """Raise INVALID_STATE_TRANSITION unless the transition is permitted."""
    if can_transition(current, target, role):
        return

    current = AppointmentStatus(current)
    target = AppointmentStatus(target)
    role = ActorRole(role)

    if is_terminal(current):
        reason = f"{current.value} is a final state"
    elif (current, target) in TRANSITIONS:
        reason = f"role '{role.value}' may not perform this transition"
    else:
        reason = "transition is not allowed"

    raise BookingError(
        ErrorKind.INVALID_STATE_TRANSITION,
        f"Cannot transition from {current.value} to {target.value}: {reason}",
        {
            "current_status": current.value,
            "requested_status": target.value,
            "actor_role": role.value,
        },
    )
