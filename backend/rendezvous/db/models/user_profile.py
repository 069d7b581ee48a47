"""UserProfile model: client and pro records read by the appointment core."""

from sqlalchemy import Boolean, Column, Float, Integer, String

from rendezvous.db.base import Base
from rendezvous.db.types import UTCDateTime, utcnow


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(String(128), primary_key=True)
    role = Column(String(20), nullable=False, index=True)  # UserRole values
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)

    # Stripe Connect (pros only)
    stripe_account_id = Column(String(255), nullable=True)
    stripe_account_status = Column(String(20), nullable=True)  # pending, active, restricted, rejected
    stripe_onboarding_complete = Column(Boolean, nullable=False, default=False)
    vat_registered = Column(Boolean, nullable=False, default=False)

    # Running review stats
    average_rating = Column(Float, nullable=False, default=0.0)
    reviews_count = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.id

    @property
    def payout_ready(self) -> bool:
        return bool(
            self.stripe_account_id
            and self.stripe_account_status == "active"
            and self.stripe_onboarding_complete
        )
