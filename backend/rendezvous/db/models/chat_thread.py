"""ChatThread model: one conversation per (pro, client) pair."""

import uuid

from sqlalchemy import Boolean, Column, String, UniqueConstraint

from rendezvous.db.base import Base
from rendezvous.db.types import UTCDateTime, utcnow


class ChatThread(Base):
    __tablename__ = "chat_threads"
    __table_args__ = (UniqueConstraint("pro_id", "client_id", name="uq_chat_threads_pair"),)

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    pro_id = Column(String(128), nullable=False, index=True)
    client_id = Column(String(128), nullable=False, index=True)
    appointment_id = Column(String(64), nullable=True)  # latest appointment that activated the thread
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
