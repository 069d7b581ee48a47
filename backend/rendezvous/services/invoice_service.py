"""Invoice records with sequential numbering."""

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rendezvous.db.models.appointment import Appointment
from rendezvous.db.models.invoice import Invoice, InvoiceCounter
from rendezvous.domain.lifecycle import UserRole
from rendezvous.domain.pricing import platform_fee

logger = structlog.get_logger(__name__)

COUNTER_NAME = "invoice"


class InvoiceService:
    """Issues one invoice per (appointment, role); runs inside the caller's transaction."""

    async def next_number(self, session: AsyncSession, year: int) -> str:
        result = await session.execute(
            update(InvoiceCounter)
            .where(InvoiceCounter.name == COUNTER_NAME)
            .values(value=InvoiceCounter.value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.add(InvoiceCounter(name=COUNTER_NAME, value=1))
            await session.flush()
            value = 1
        else:
            value = (
                await session.execute(select(InvoiceCounter.value).where(InvoiceCounter.name == COUNTER_NAME))
            ).scalar_one()
        return f"INV-{year}-{value:06d}"

    async def issue(self, session: AsyncSession, appointment: Appointment, role: UserRole) -> Invoice:
        existing = (
            await session.execute(
                select(Invoice).where(Invoice.appointment_id == appointment.id, Invoice.user_role == role.value)
            )
        ).scalar_one_or_none()
        if existing is not None:
            return existing

        user_id = appointment.pro_id if role == UserRole.PRO else appointment.client_id
        invoice = Invoice(
            invoice_number=await self.next_number(session, appointment.date_time.year),
            appointment_id=appointment.id,
            user_id=user_id,
            user_role=role.value,
            amount_ht=appointment.montant_ht,
            vat_amount=appointment.montant_total - appointment.montant_ht,
            amount_total=appointment.montant_total,
            platform_fee=platform_fee(appointment.montant_ht) if role == UserRole.PRO else None,
        )
        session.add(invoice)
        await session.flush()

        logger.info(
            "invoice_issued",
            appointment_id=appointment.id,
            invoice_number=invoice.invoice_number,
            role=role.value,
        )
        return invoice
