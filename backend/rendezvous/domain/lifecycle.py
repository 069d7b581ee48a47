"""Appointment status enums and the transition table.

Pure domain logic with no external dependencies.
"""
from enum import Enum

from rendezvous.core.exceptions import InvalidTransitionError


class AppointmentStatus(str, Enum):
    """Appointment lifecycle states."""

    PAYMENT_INITIATED = "PAYMENT_INITIATED"  # Authorization created, card not yet confirmed
    PAYMENT_AUTHORIZED = "PAYMENT_AUTHORIZED"  # Funds reserved, waiting for the pro
    CONFIRMED = "CONFIRMED"  # Pro accepted, payment captured
    PENDING_PAYOUT = "PENDING_PAYOUT"  # Evaluation passed, payout delay running
    PAID_OUT = "PAID_OUT"  # Pro share transferred
    CANCELLED_BY_CLIENT = "CANCELLED_BY_CLIENT"
    CANCELLED_BY_PRO = "CANCELLED_BY_PRO"
    CANCELLED_BY_PRO_PENDING = "CANCELLED_BY_PRO_PENDING"  # Late pro cancellation awaiting admin


class UserRole(str, Enum):
    CLIENT = "CLIENT"
    PRO = "PRO"
    ADMIN = "ADMIN"


CANCELLED_STATUSES = frozenset(
    {
        AppointmentStatus.CANCELLED_BY_CLIENT,
        AppointmentStatus.CANCELLED_BY_PRO,
        AppointmentStatus.CANCELLED_BY_PRO_PENDING,
    }
)

TERMINAL_STATUSES = CANCELLED_STATUSES | {AppointmentStatus.PAID_OUT}

# Valid state transitions
TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PAYMENT_INITIATED: frozenset({AppointmentStatus.PAYMENT_AUTHORIZED}),
    AppointmentStatus.PAYMENT_AUTHORIZED: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED_BY_PRO}),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.PENDING_PAYOUT}) | CANCELLED_STATUSES,
    AppointmentStatus.PENDING_PAYOUT: frozenset({AppointmentStatus.PAID_OUT}),
    AppointmentStatus.PAID_OUT: frozenset(),
    AppointmentStatus.CANCELLED_BY_CLIENT: frozenset(),
    AppointmentStatus.CANCELLED_BY_PRO: frozenset(),
    AppointmentStatus.CANCELLED_BY_PRO_PENDING: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    """Raise InvalidTransitionError unless current -> target is in the table."""
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move appointment from {current.value} to {target.value}"
        )
