"""Reminder pushes driven by the Redis side-index."""

from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rendezvous.core.config import Settings, get_settings
from rendezvous.db.models.appointment import Appointment
from rendezvous.db.repositories import AppointmentRepository
from rendezvous.domain.lifecycle import AppointmentStatus
from rendezvous.domain.reminders import ReminderWindow, due_windows, reminder_texts
from rendezvous.services.notification_service import PushMessage, PushNotifier
from rendezvous.services.reminder_index import ReminderEntry, ReminderIndex

logger = structlog.get_logger(__name__)

REBUILD_DAY_OFFSETS = (0, 2)


class ReminderService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        reminder_index: ReminderIndex,
        notifier: PushNotifier,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.reminder_index = reminder_index
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.appointments = AppointmentRepository()

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.settings.local_timezone)

    async def rebuild_index(self, now: datetime | None = None) -> int:
        """Snapshot CONFIRMED appointments starting today or in two days (local dates)."""
        now = now or datetime.now(UTC)
        today = now.astimezone(self.tz).date()

        entries: list[ReminderEntry] = []
        async with self.session_factory() as session:
            for offset in REBUILD_DAY_OFFSETS:
                day = today + timedelta(days=offset)
                start = datetime.combine(day, time.min, tzinfo=self.tz).astimezone(UTC)
                end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.tz).astimezone(UTC)
                appointments = await self.appointments.find(
                    session,
                    AppointmentStatus.CONFIRMED,
                    range_field=Appointment.date_time,
                    lower=start,
                    upper=end,
                )
                entries.extend(ReminderEntry.from_appointment(appointment) for appointment in appointments)

        await self.reminder_index.replace_all(entries)
        logger.info("reminder_index_rebuilt", entries=len(entries), day=today.isoformat())
        return len(entries)

    async def send_due_reminders(self, now: datetime | None = None) -> int:
        """Push every reminder whose window contains ``now``; each window fires once per appointment."""
        now = now or datetime.now(UTC)
        sent = 0
        for entry in await self.reminder_index.entries():
            if entry.status != AppointmentStatus.CONFIRMED.value:
                continue
            for window in due_windows(entry.date_time, entry.duration, now):
                try:
                    if not await self.reminder_index.claim(
                        entry.id, window.name, self.settings.reminder_marker_ttl_seconds
                    ):
                        continue
                    await self._push(entry, window)
                    sent += 1
                except Exception as exc:
                    logger.warning("reminder_failed", appointment_id=entry.id, window=window.name, error=str(exc))

        if sent:
            logger.info("reminders_sent", count=sent)
        return sent

    async def _push(self, entry: ReminderEntry, window: ReminderWindow) -> None:
        local_date = entry.date_time.astimezone(self.tz).strftime("%d/%m/%Y")
        client_body, pro_body = reminder_texts(window, local_date, entry.time_slot)
        data = {"appointmentId": entry.id, "window": window.name, "roomId": entry.room_id or ""}
        await self.notifier.notify(
            entry.client_id, PushMessage(title="Appointment reminder", body=client_body, kind="REMINDER", data=data)
        )
        await self.notifier.notify(
            entry.pro_id, PushMessage(title="Appointment reminder", body=pro_body, kind="REMINDER", data=data)
        )
        logger.info("reminder_sent", appointment_id=entry.id, window=window.name)
