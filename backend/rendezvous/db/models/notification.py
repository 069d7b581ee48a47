"""Notification model: operator and audit records tied to appointments."""

from enum import Enum

from sqlalchemy import Boolean, Column, Integer, String, Text

from rendezvous.db.base import Base
from rendezvous.db.types import UTCDateTime, utcnow


class NotificationKind(str, Enum):
    GENERAL = "GENERAL"
    CANCELLATION = "CANCELLATION"
    LOW_RATING = "LOW_RATING"
    SHORT_CALL_UNDER_10_MINUTES = "SHORT_CALL_UNDER_10_MINUTES"
    PAYOUT_ERROR = "PAYOUT_ERROR"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(40), nullable=False, default=NotificationKind.GENERAL.value, index=True)
    message = Column(Text, nullable=False)
    appointment_id = Column(String(64), nullable=True, index=True)

    rating = Column(Integer, nullable=True)
    total_call_duration = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)

    processed = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
