"""AppointmentService: drives appointments through the status state machine.

Payment side effects run before the status write and carry idempotency keys
derived from the appointment id, so a request retried after a failed write
replays safely. Each status write is a conditional update on the row version
and commits together with the Notification row describing it.
"""

import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rendezvous.core.auth import AuthUser
from rendezvous.core.config import Settings, get_settings
from rendezvous.core.exceptions import (
    BadInputError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PaymentGatewayError,
    PaymentRequiredError,
)
from rendezvous.db.models.appointment import Appointment
from rendezvous.db.models.invoice import Invoice
from rendezvous.db.models.notification import NotificationKind
from rendezvous.db.repositories import AppointmentRepository, NotificationRepository, UserRepository
from rendezvous.domain.cancellation import RefundKind, decide_cancellation
from rendezvous.domain.lifecycle import AppointmentStatus, UserRole, ensure_transition
from rendezvous.domain.pricing import base_amount, total_with_vat
from rendezvous.services.chat_service import ChatService
from rendezvous.services.invoice_service import InvoiceService
from rendezvous.services.notification_service import PushMessage, PushNotifier
from rendezvous.services.payment_gateway import PaymentGateway
from rendezvous.services.reminder_index import ReminderEntry, ReminderIndex

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CreatedAppointment:
    appointment: Appointment
    client_secret: str | None


@dataclass(frozen=True)
class ConfirmedAppointment:
    appointment: Appointment
    client_invoice: Invoice
    pro_invoice: Invoice


def parse_time_slot(time_slot: str) -> time:
    try:
        hours, minutes = time_slot.split(":")
        return time(int(hours), int(minutes))
    except ValueError as exc:
        raise BadInputError(f"Invalid time slot: {time_slot!r}, expected HH:MM") from exc


def local_to_utc(day: date, time_slot: str, tz_name: str) -> datetime:
    local = datetime.combine(day, parse_time_slot(time_slot), tzinfo=ZoneInfo(tz_name))
    return local.astimezone(UTC)


def new_room_id() -> str:
    return str(100_000 + secrets.randbelow(900_000))


class AppointmentService:
    """Create, authorize, confirm, cancel and expire appointments."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        notifier: PushNotifier,
        reminder_index: ReminderIndex,
        settings: Settings | None = None,
        invoices: InvoiceService | None = None,
        chats: ChatService | None = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.notifier = notifier
        self.reminder_index = reminder_index
        self.settings = settings or get_settings()
        self.invoices = invoices or InvoiceService()
        self.chats = chats or ChatService(session_factory)
        self.appointments = AppointmentRepository()
        self.users = UserRepository()
        self.notifications = NotificationRepository()

    async def create(
        self,
        user: AuthUser,
        pro_id: str,
        day: date,
        time_slot: str,
        duration: int,
        now: datetime | None = None,
    ) -> CreatedAppointment:
        """Open a manual-capture authorization and persist the appointment at PAYMENT_INITIATED.

        Raises:
            ForbiddenError: caller is not a client
            BadInputError: unsupported duration, malformed or past slot
            NotFoundError: pro does not exist
            PaymentRequiredError: processor returned no authorization handle
        """
        now = now or datetime.now(UTC)
        if user.role != UserRole.CLIENT:
            raise ForbiddenError("Only clients can book appointments")
        if duration not in self.settings.allowed_durations:
            raise BadInputError(f"Duration must be one of {self.settings.allowed_durations} minutes")

        date_time = local_to_utc(day, time_slot, self.settings.local_timezone)
        if date_time <= now:
            raise BadInputError("Appointment must be scheduled in the future")

        async with self.session_factory() as session:
            pro = await self.users.get(session, pro_id)
        if pro is None or pro.role != UserRole.PRO.value:
            raise NotFoundError("Professional not found")

        montant_ht = base_amount(duration, self.settings.price_per_minute)
        montant_total = total_with_vat(montant_ht, self.settings.vat_rate)

        authorization = await self.gateway.create_authorization(
            montant_total,
            self.settings.currency,
            {"appointmentDuration": duration, "clientId": user.user_id, "proId": pro_id},
        )
        if not authorization.handle:
            raise PaymentRequiredError("Payment authorization could not be created")

        async with self.session_factory() as session:
            appointment = self.appointments.add(
                session,
                Appointment(
                    pro_id=pro_id,
                    client_id=user.user_id,
                    duration=duration,
                    date_time=date_time,
                    time_slot=time_slot,
                    montant_ht=montant_ht,
                    montant_total=montant_total,
                    stripe_payment_intent_id=authorization.handle,
                    status=AppointmentStatus.PAYMENT_INITIATED.value,
                    call_history=[],
                    evaluation_history=[],
                    created_at=now,
                    updated_at=now,
                ),
            )
            await session.commit()

        logger.info(
            "appointment_created",
            appointment_id=appointment.id,
            pro_id=pro_id,
            client_id=user.user_id,
            montant_total=montant_total,
        )
        return CreatedAppointment(appointment=appointment, client_secret=authorization.client_secret)

    async def authorize_payment(self, appointment_id: str, user: AuthUser, now: datetime | None = None) -> Appointment:
        """Record that the client's card authorization succeeded."""
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            appointment = await self.appointments.get(session, appointment_id)
            if user.role != UserRole.CLIENT or appointment.client_id != user.user_id:
                raise ForbiddenError("Only the booking client can authorize this payment")
            ensure_transition(appointment.current_status, AppointmentStatus.PAYMENT_AUTHORIZED)

            await self.appointments.compare_and_set(
                session,
                appointment,
                {"status": AppointmentStatus.PAYMENT_AUTHORIZED},
                expected_status=AppointmentStatus.PAYMENT_INITIATED,
                now=now,
            )
            client = await self.users.get(session, appointment.client_id)
            await session.commit()

        logger.info("appointment_payment_authorized", appointment_id=appointment_id)

        client_name = client.display_name if client else "A client"
        await self.notifier.notify(
            appointment.pro_id,
            PushMessage(
                title="New appointment",
                body=f"{client_name} booked {appointment.time_slot} on {self._local_day(appointment)}.",
                kind="NEW_APPOINTMENT",
                data={"appointmentId": appointment.id},
            ),
        )
        return appointment

    async def confirm(self, appointment_id: str, user: AuthUser, now: datetime | None = None) -> ConfirmedAppointment:
        """Capture the payment, then persist CONFIRMED with a room id and both invoices."""
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            appointment = await self.appointments.get(session, appointment_id)
        if user.role != UserRole.PRO or appointment.pro_id != user.user_id:
            raise ForbiddenError("Only the appointment's professional can confirm it")
        ensure_transition(appointment.current_status, AppointmentStatus.CONFIRMED)

        if appointment.stripe_payment_intent_id:
            async with self._recording_payment_failure(appointment):
                await self.gateway.capture(
                    appointment.stripe_payment_intent_id, idempotency_key=appointment.idempotency_key("capture")
                )

        async with self.session_factory() as session:
            appointment = await self.appointments.get(session, appointment_id)
            await self.appointments.compare_and_set(
                session,
                appointment,
                {"status": AppointmentStatus.CONFIRMED, "room_id": new_room_id()},
                expected_status=AppointmentStatus.PAYMENT_AUTHORIZED,
                now=now,
            )
            client_invoice = await self.invoices.issue(session, appointment, UserRole.CLIENT)
            pro_invoice = await self.invoices.issue(session, appointment, UserRole.PRO)
            await session.commit()

        logger.info("appointment_confirmed", appointment_id=appointment_id, room_id=appointment.room_id)

        await self.reminder_index.add(ReminderEntry.from_appointment(appointment))
        try:
            await self.chats.activate(appointment.pro_id, appointment.client_id, appointment.id)
        except Exception as exc:
            logger.warning("chat_activation_failed", appointment_id=appointment_id, error=str(exc))

        await self.notifier.notify(
            appointment.client_id,
            PushMessage(
                title="Appointment confirmed",
                body=f"Your appointment on {self._local_day(appointment)} at {appointment.time_slot} is confirmed.",
                kind="APPOINTMENT_CONFIRMED",
                data={"appointmentId": appointment.id, "roomId": appointment.room_id or ""},
            ),
        )
        return ConfirmedAppointment(appointment=appointment, client_invoice=client_invoice, pro_invoice=pro_invoice)

    async def cancel(self, appointment_id: str, user: AuthUser, now: datetime | None = None) -> Appointment:
        """Cancel from PAYMENT_AUTHORIZED (pro only) or CONFIRMED (cancellation policy)."""
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            appointment = await self.appointments.get(session, appointment_id)

        is_client = user.role == UserRole.CLIENT and appointment.client_id == user.user_id
        is_pro = user.role == UserRole.PRO and appointment.pro_id == user.user_id
        if not (is_client or is_pro):
            raise ForbiddenError("Only the appointment's client or professional can cancel it")

        status = appointment.current_status
        if status == AppointmentStatus.PAYMENT_AUTHORIZED:
            return await self._cancel_unconfirmed(appointment, user, now)
        if status == AppointmentStatus.CONFIRMED:
            return await self._cancel_confirmed(appointment, user, now)
        raise InvalidTransitionError(f"Cannot cancel an appointment in status {status.value}")

    async def _cancel_unconfirmed(self, appointment: Appointment, user: AuthUser, now: datetime) -> Appointment:
        if user.role != UserRole.PRO:
            raise InvalidTransitionError("Only the professional can cancel an appointment awaiting confirmation")
        ensure_transition(appointment.current_status, AppointmentStatus.CANCELLED_BY_PRO)

        if appointment.stripe_payment_intent_id:
            async with self._recording_payment_failure(appointment):
                await self.gateway.cancel_uncaptured(
                    appointment.stripe_payment_intent_id, idempotency_key=appointment.idempotency_key("cancel")
                )

        day = self._local_day(appointment)
        async with self.session_factory() as session:
            appointment = await self.appointments.get(session, appointment.id)
            await self.appointments.compare_and_set(
                session,
                appointment,
                {"status": AppointmentStatus.CANCELLED_BY_PRO},
                expected_status=AppointmentStatus.PAYMENT_AUTHORIZED,
                now=now,
            )
            self.notifications.add(
                session,
                NotificationKind.CANCELLATION,
                f"Professional declined the appointment of {day} at {appointment.time_slot}. Authorization released.",
                appointment_id=appointment.id,
            )
            await session.commit()

        logger.info("appointment_cancelled", appointment_id=appointment.id, status=appointment.status, refund="release")
        await self.notifier.notify(
            appointment.client_id,
            PushMessage(
                title="Appointment cancelled",
                body=f"Your appointment of {day} at {appointment.time_slot} was declined. You have not been charged.",
                kind="APPOINTMENT_CANCELLED",
                data={"appointmentId": appointment.id},
            ),
        )
        return appointment

    async def _cancel_confirmed(self, appointment: Appointment, user: AuthUser, now: datetime) -> Appointment:
        tz = ZoneInfo(self.settings.local_timezone)
        decision = decide_cancellation(
            role=user.role,
            date_time=appointment.date_time.astimezone(tz),
            montant_total=appointment.montant_total,
            time_slot=appointment.time_slot,
            now=now,
            window_hours=self.settings.late_cancellation_hours,
            fee=self.settings.cancellation_fee,
        )
        ensure_transition(appointment.current_status, decision.new_status)

        handle = appointment.stripe_payment_intent_id
        key = appointment.idempotency_key("refund")
        async with self._recording_payment_failure(appointment):
            if handle and decision.refund_kind == RefundKind.PARTIAL:
                await self.gateway.refund(handle, idempotency_key=key, amount=decision.refund_amount)
            elif handle and decision.refund_kind == RefundKind.FULL:
                await self.gateway.release_or_refund(handle, idempotency_key=key)

        async with self.session_factory() as session:
            appointment = await self.appointments.get(session, appointment.id)
            await self.appointments.compare_and_set(
                session,
                appointment,
                {"status": decision.new_status},
                expected_status=AppointmentStatus.CONFIRMED,
                now=now,
            )
            self.notifications.add(
                session,
                NotificationKind.CANCELLATION,
                decision.message,
                appointment_id=appointment.id,
            )
            await session.commit()

        logger.info(
            "appointment_cancelled",
            appointment_id=appointment.id,
            status=appointment.status,
            refund=decision.refund_kind.value,
            refund_amount=decision.refund_amount,
        )

        await self.reminder_index.remove(appointment.id)
        data = {"appointmentId": appointment.id}
        await self.notifier.notify(
            appointment.client_id,
            PushMessage(title="Appointment cancelled", body=decision.client_body, kind="APPOINTMENT_CANCELLED", data=data),
        )
        await self.notifier.notify(
            appointment.pro_id,
            PushMessage(title="Appointment cancelled", body=decision.pro_body, kind="APPOINTMENT_CANCELLED", data=data),
        )
        return appointment

    async def expire_stale_initiations(self, now: datetime | None = None) -> int:
        """Hard-delete appointments stuck at PAYMENT_INITIATED past the expiry delay."""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(minutes=self.settings.initiation_expiry_minutes)

        async with self.session_factory() as session:
            stale = await self.appointments.find(
                session,
                AppointmentStatus.PAYMENT_INITIATED,
                range_field=Appointment.created_at,
                upper=cutoff,
            )
            deleted = await self.appointments.delete_many(
                session,
                [appointment.id for appointment in stale],
                expected_status=AppointmentStatus.PAYMENT_INITIATED,
            )
            await session.commit()

        if deleted:
            logger.info("stale_initiations_expired", deleted=deleted, cutoff=cutoff.isoformat())
        return deleted

    @asynccontextmanager
    async def _recording_payment_failure(self, appointment: Appointment):
        try:
            yield
        except PaymentGatewayError as exc:
            async with self.session_factory() as session:
                await self.appointments.record_payment_failure(session, appointment.id)
                await session.commit()
            logger.warning(
                "payment_call_failed",
                appointment_id=appointment.id,
                operation=exc.operation,
                failures=(appointment.payment_failures or 0) + 1,
            )
            raise

    def _local_day(self, appointment: Appointment) -> str:
        return appointment.date_time.astimezone(ZoneInfo(self.settings.local_timezone)).strftime("%d/%m/%Y")
