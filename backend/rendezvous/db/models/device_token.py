"""DeviceToken model: FCM registration tokens per user."""

from sqlalchemy import Boolean, Column, Integer, String, UniqueConstraint

from rendezvous.db.base import Base
from rendezvous.db.types import UTCDateTime, utcnow


class DeviceToken(Base):
    __tablename__ = "device_tokens"
    __table_args__ = (UniqueConstraint("user_id", "token", name="uq_device_tokens_user_token"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False, index=True)
    token = Column(String(512), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
