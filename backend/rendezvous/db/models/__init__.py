"""Re-export all models so Base.metadata sees them."""

from rendezvous.db.models.appointment import Appointment
from rendezvous.db.models.chat_thread import ChatThread
from rendezvous.db.models.device_token import DeviceToken
from rendezvous.db.models.invoice import Invoice, InvoiceCounter
from rendezvous.db.models.notification import Notification, NotificationKind
from rendezvous.db.models.user_profile import UserProfile

__all__ = [
    "Appointment",
    "ChatThread",
    "DeviceToken",
    "Invoice",
    "InvoiceCounter",
    "Notification",
    "NotificationKind",
    "UserProfile",
]
