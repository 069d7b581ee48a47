"""Invoice records and the sequential numbering counter."""

import uuid

from sqlalchemy import Column, Integer, String, UniqueConstraint

from rendezvous.db.base import Base
from rendezvous.db.types import UTCDateTime, utcnow


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (UniqueConstraint("appointment_id", "user_role", name="uq_invoices_appointment_role"),)

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    invoice_number = Column(String(32), nullable=False, unique=True)
    appointment_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    user_role = Column(String(20), nullable=False)

    amount_ht = Column(Integer, nullable=False)
    vat_amount = Column(Integer, nullable=False)
    amount_total = Column(Integer, nullable=False)
    platform_fee = Column(Integer, nullable=True)  # pro invoices only

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)


class InvoiceCounter(Base):
    __tablename__ = "invoice_counters"

    name = Column(String(32), primary_key=True)
    value = Column(Integer, nullable=False, default=0)
