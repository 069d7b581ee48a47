"""Cancellation policy for confirmed appointments.

Pure function, no I/O. The caller applies the refund through the payment
gateway and persists the returned status.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from rendezvous.core.exceptions import ForbiddenError
from rendezvous.domain.lifecycle import AppointmentStatus, UserRole
from rendezvous.domain.pricing import CANCELLATION_FEE, late_cancellation_refund


class RefundKind(str, Enum):
    NONE = "none"
    PARTIAL = "partial"
    FULL = "full"  # cancel if only authorized, refund if captured


@dataclass(frozen=True)
class CancellationDecision:
    new_status: AppointmentStatus
    refund_kind: RefundKind
    refund_amount: int
    within_window: bool
    message: str  # operator notification record
    client_body: str
    pro_body: str


def hours_until(start: datetime, now: datetime) -> float:
    return (start - now).total_seconds() / 3600


def format_amount(minor_units: int) -> str:
    return f"{minor_units / 100:.2f} €"


def decide_cancellation(
    *,
    role: UserRole,
    date_time: datetime,
    montant_total: int,
    time_slot: str,
    now: datetime,
    window_hours: int = 24,
    fee: int = CANCELLATION_FEE,
) -> CancellationDecision:
    """Decide refund and resulting status for cancelling a CONFIRMED appointment.

    Args:
        role: Who is cancelling (CLIENT or PRO)
        date_time: Appointment start (aware datetime)
        montant_total: Amount charged, tax included
        time_slot: Local "HH:MM" used in the messages
        now: Current time (aware datetime)
        window_hours: Late-cancellation window
        fee: Amount kept on a late client cancellation

    Raises:
        ForbiddenError: role is neither CLIENT nor PRO
    """
    within_window = hours_until(date_time, now) < window_hours
    day = date_time.strftime("%d/%m/%Y")

    if role == UserRole.CLIENT:
        if within_window:
            refund = late_cancellation_refund(montant_total, fee)
            return CancellationDecision(
                new_status=AppointmentStatus.CANCELLED_BY_CLIENT,
                refund_kind=RefundKind.PARTIAL if refund > 0 else RefundKind.NONE,
                refund_amount=refund,
                within_window=True,
                message=(
                    f"Client cancelled the appointment of {day} at {time_slot} less than "
                    f"{window_hours}h ahead. Refund {format_amount(refund)}, "
                    f"fee kept {format_amount(montant_total - refund)}."
                ),
                client_body=(
                    f"Your appointment of {day} at {time_slot} is cancelled. "
                    f"{format_amount(refund)} will be refunded, the late cancellation fee is kept."
                ),
                pro_body=f"Your client cancelled the appointment of {day} at {time_slot}.",
            )
        return CancellationDecision(
            new_status=AppointmentStatus.CANCELLED_BY_CLIENT,
            refund_kind=RefundKind.FULL,
            refund_amount=montant_total,
            within_window=False,
            message=f"Client cancelled the appointment of {day} at {time_slot}. Full refund.",
            client_body=(
                f"Your appointment of {day} at {time_slot} is cancelled. "
                f"You will be fully refunded ({format_amount(montant_total)})."
            ),
            pro_body=f"Your client cancelled the appointment of {day} at {time_slot}.",
        )

    if role == UserRole.PRO:
        if within_window:
            return CancellationDecision(
                new_status=AppointmentStatus.CANCELLED_BY_PRO_PENDING,
                refund_kind=RefundKind.NONE,
                refund_amount=0,
                within_window=True,
                message=(
                    f"Professional cancelled the appointment of {day} at {time_slot} less than "
                    f"{window_hours}h ahead. Awaiting admin review."
                ),
                client_body=(
                    f"Your professional cancelled the appointment of {day} at {time_slot}. "
                    "Our team will contact you about your refund."
                ),
                pro_body=(
                    f"Your cancellation of {day} at {time_slot} was recorded and is awaiting "
                    "review by our team."
                ),
            )
        return CancellationDecision(
            new_status=AppointmentStatus.CANCELLED_BY_PRO,
            refund_kind=RefundKind.FULL,
            refund_amount=montant_total,
            within_window=False,
            message=f"Professional cancelled the appointment of {day} at {time_slot}. Full refund.",
            client_body=(
                f"Your professional cancelled the appointment of {day} at {time_slot}. "
                f"You will be fully refunded ({format_amount(montant_total)})."
            ),
            pro_body=f"Your cancellation of {day} at {time_slot} is confirmed.",
        )

    raise ForbiddenError("Only the client or the professional can cancel an appointment")
