"""Appointment status enum and transition table.

- Closed enum: the store holds the enum value, never free text
- One transition map: every status check in the package goes through it
- Rescheduling is not a status: a successful reschedule lands on SCHEDULED
"""
from enum import Enum
from typing import Dict, FrozenSet


class AppointmentStatus(str, Enum):
    """Lifecycle status of an appointment."""
    SCHEDULED = "Scheduled"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @classmethod
    def parse(cls, value: str) -> "AppointmentStatus":
        """Parse a stored status, ignoring case."""
        for status in cls:
            if status.value.lower() == value.strip().lower():
                return status
        raise ValueError(f"Unknown appointment status: {value!r}")


# Statuses that hold a slot
ACTIVE_STATUSES: FrozenSet[AppointmentStatus] = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
})

TERMINAL_STATUSES: FrozenSet[AppointmentStatus] = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
})


# Current status → allowed next statuses
VALID_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


def validate_transition(
    current: AppointmentStatus,
    intended: AppointmentStatus
) -> bool:
    """
    Validate a status transition.

    Args:
        current: Current appointment status
        intended: Requested next status

    Returns:
        True if the transition is allowed

    Example:
        >>> validate_transition(
        ...     AppointmentStatus.SCHEDULED,
        ...     AppointmentStatus.CONFIRMED
        ... )
        True
    """
    return intended in VALID_TRANSITIONS.get(current, frozenset())


def is_active(status: AppointmentStatus) -> bool:
    return status in ACTIVE_STATUSES
