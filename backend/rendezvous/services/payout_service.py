"""Releases the pro's share for appointments whose payout delay has elapsed."""

from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rendezvous.core.config import Settings, get_settings
from rendezvous.core.exceptions import ConflictError, PaymentGatewayError
from rendezvous.db.models.appointment import Appointment
from rendezvous.db.models.notification import NotificationKind
from rendezvous.db.repositories import AppointmentRepository, NotificationRepository, UserRepository
from rendezvous.domain.lifecycle import AppointmentStatus
from rendezvous.domain.pricing import payout_amount
from rendezvous.services.payment_gateway import PaymentGateway

logger = structlog.get_logger(__name__)


class PayoutService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.appointments = AppointmentRepository()
        self.users = UserRepository()
        self.notifications = NotificationRepository()

    async def process_due_payouts(self, now: datetime | None = None) -> dict[str, int]:
        """Transfer the pro share for every PENDING_PAYOUT appointment past the delay."""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(hours=self.settings.payout_delay_hours)

        async with self.session_factory() as session:
            due = await self.appointments.find(
                session,
                AppointmentStatus.PENDING_PAYOUT,
                range_field=Appointment.pending_payout_since,
                upper=cutoff,
                upper_inclusive=True,
            )

        summary = {"paid": 0, "deferred": 0, "failed": 0}
        for appointment in due:
            try:
                outcome = await self._pay_one(appointment.id, now)
            except Exception as exc:
                outcome = "failed"
                logger.error("payout_failed", appointment_id=appointment.id, error=str(exc))
                await self._record_error(appointment.id, str(exc), transfer_failed=isinstance(exc, PaymentGatewayError))
            if outcome is not None:
                summary[outcome] += 1

        logger.info("due_payouts_processed", **summary)
        return summary

    async def _pay_one(self, appointment_id: str, now: datetime) -> str | None:
        async with self.session_factory() as session:
            appointment = await self.appointments.get(session, appointment_id)
            if appointment.current_status != AppointmentStatus.PENDING_PAYOUT:
                return None
            pro = await self.users.get(session, appointment.pro_id)

        if pro is None or not pro.payout_ready:
            logger.warning(
                "payout_account_not_ready",
                appointment_id=appointment_id,
                pro_id=appointment.pro_id,
                account_status=pro.stripe_account_status if pro else None,
            )
            return "deferred"

        amount = payout_amount(appointment.montant_ht, appointment.montant_total, pro.vat_registered)
        transfer_id = await self.gateway.transfer(
            amount,
            self.settings.currency,
            pro.stripe_account_id,
            idempotency_key=appointment.idempotency_key("transfer"),
            metadata={"appointmentId": appointment.id, "proId": pro.id, "vatIncluded": pro.vat_registered},
            description=f"Payout for appointment {appointment.id}",
        )

        async with self.session_factory() as session:
            appointment = await self.appointments.get(session, appointment_id)
            try:
                await self.appointments.compare_and_set(
                    session,
                    appointment,
                    {
                        "status": AppointmentStatus.PAID_OUT,
                        "paid_out_at": now,
                        "stripe_transfer_id": transfer_id,
                        "pro_share_paid": amount,
                        "vat_included_in_payout": pro.vat_registered,
                    },
                    expected_status=AppointmentStatus.PENDING_PAYOUT,
                    now=now,
                )
            except ConflictError:
                logger.error("payout_write_conflict", appointment_id=appointment_id, transfer_id=transfer_id)
                raise
            await session.commit()

        logger.info("payout_completed", appointment_id=appointment_id, transfer_id=transfer_id, amount=amount)
        return "paid"

    async def _record_error(self, appointment_id: str, error: str, transfer_failed: bool = False) -> None:
        """Write a PAYOUT_ERROR record; a rejected transfer also moves the next run to a new key."""
        async with self.session_factory() as session:
            if transfer_failed:
                await self.appointments.record_payment_failure(session, appointment_id)
            self.notifications.add(
                session,
                NotificationKind.PAYOUT_ERROR,
                f"Payout failed for appointment {appointment_id}",
                appointment_id=appointment_id,
                error=error,
            )
            await session.commit()
