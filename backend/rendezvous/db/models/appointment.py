"""Appointment model: the aggregate root of the booking lifecycle."""

import uuid

from sqlalchemy import JSON, Boolean, Column, Integer, String

from rendezvous.db.base import Base
from rendezvous.db.types import UTCDateTime, utcnow
from rendezvous.domain.lifecycle import AppointmentStatus


def _new_id() -> str:
    return uuid.uuid4().hex


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(64), primary_key=True, default=_new_id)
    pro_id = Column(String(128), nullable=False, index=True)
    client_id = Column(String(128), nullable=False, index=True)

    # Commercial terms
    duration = Column(Integer, nullable=False)  # minutes, 30 or 60
    date_time = Column(UTCDateTime, nullable=False, index=True)
    time_slot = Column(String(16), nullable=False)  # "HH:MM" local display
    montant_ht = Column(Integer, nullable=False)  # pre-tax, minor units
    montant_total = Column(Integer, nullable=False)  # montant_ht + VAT, fixed at creation

    # Payment linkage
    stripe_payment_intent_id = Column(String(255), nullable=True, unique=True)
    stripe_transfer_id = Column(String(255), nullable=True)
    pro_share_paid = Column(Integer, nullable=True)
    vat_included_in_payout = Column(Boolean, nullable=True)
    payment_failures = Column(Integer, nullable=False, default=0)  # failed processor calls, see idempotency_key()

    # Lifecycle
    status = Column(String(40), nullable=False, default=AppointmentStatus.PAYMENT_INITIATED.value, index=True)
    version = Column(Integer, nullable=False, default=1)
    pending_payout_since = Column(UTCDateTime, nullable=True, index=True)
    paid_out_at = Column(UTCDateTime, nullable=True)

    # Call and quality data
    call_history = Column(JSON, nullable=False, default=list)  # [{"durationMinutes": 12, ...}]
    evaluation_history = Column(JSON, nullable=False, default=list)
    last_evaluated_at = Column(UTCDateTime, nullable=True)
    room_id = Column(String(6), nullable=True)  # minted once at CONFIRMED

    # Audit
    created_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    def idempotency_key(self, operation: str) -> str:
        """``{operation}-{id}``, suffixed with the failure count once a processor call has failed."""
        if not self.payment_failures:
            return f"{operation}-{self.id}"
        return f"{operation}-{self.id}-{self.payment_failures}"

    @property
    def current_status(self) -> AppointmentStatus:
        return AppointmentStatus(self.status)
