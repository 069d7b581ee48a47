"""Repositories over the appointment, user and notification tables.

Methods take the caller's ``AsyncSession`` so several writes can share one
transaction; the caller commits. State writes go through
``AppointmentRepository.compare_and_set``, a conditional UPDATE keyed on the
row version (and optionally the expected status) that fails with
ConflictError when another writer got there first.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from rendezvous.core.exceptions import ConflictError, NotFoundError
from rendezvous.db.models.appointment import Appointment
from rendezvous.db.models.device_token import DeviceToken
from rendezvous.db.models.notification import Notification, NotificationKind
from rendezvous.db.models.user_profile import UserProfile
from rendezvous.db.types import utcnow
from rendezvous.domain.lifecycle import AppointmentStatus


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class AppointmentRepository:
    """Key-addressed CRUD and field-filtered queries over appointments."""

    async def get(self, session: AsyncSession, appointment_id: str) -> Appointment:
        appointment = await session.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        return appointment

    def add(self, session: AsyncSession, appointment: Appointment) -> Appointment:
        session.add(appointment)
        return appointment

    async def compare_and_set(
        self,
        session: AsyncSession,
        appointment: Appointment,
        values: dict[str, Any],
        *,
        expected_status: AppointmentStatus | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        """Apply values only if the row still has the version (and status) that was read.

        Raises:
            ConflictError: the row changed since it was loaded
        """
        conditions = [Appointment.id == appointment.id, Appointment.version == appointment.version]
        if expected_status is not None:
            conditions.append(Appointment.status == expected_status.value)

        payload = {key: _plain(value) for key, value in values.items()}
        payload["version"] = Appointment.version + 1
        payload["updated_at"] = now or utcnow()

        result = await session.execute(
            update(Appointment)
            .where(*conditions)
            .values(**payload)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Appointment was modified concurrently, please retry")

        await session.refresh(appointment)
        return appointment

    async def record_payment_failure(self, session: AsyncSession, appointment_id: str) -> None:
        """Bump ``payment_failures`` so the next attempt runs under a new idempotency key."""
        await session.execute(
            update(Appointment)
            .where(Appointment.id == appointment_id)
            .values(payment_failures=Appointment.payment_failures + 1)
            .execution_options(synchronize_session=False)
        )

    async def find(
        self,
        session: AsyncSession,
        status: AppointmentStatus,
        *,
        range_field: InstrumentedAttribute | None = None,
        lower: datetime | None = None,
        upper: datetime | None = None,
        upper_inclusive: bool = False,
        limit: int | None = None,
    ) -> list[Appointment]:
        """Equality on status plus an optional [lower, upper) range on one column."""
        stmt = select(Appointment).where(Appointment.status == status.value)
        if range_field is not None:
            if lower is not None:
                stmt = stmt.where(range_field >= lower)
            if upper is not None:
                stmt = stmt.where(range_field <= upper if upper_inclusive else range_field < upper)
            stmt = stmt.order_by(range_field, Appointment.id)
        else:
            stmt = stmt.order_by(Appointment.created_at, Appointment.id)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def delete_many(
        self,
        session: AsyncSession,
        appointment_ids: list[str],
        *,
        expected_status: AppointmentStatus,
    ) -> int:
        """Batch delete that skips rows whose status moved on since they were selected."""
        if not appointment_ids:
            return 0
        result = await session.execute(
            delete(Appointment)
            .where(Appointment.id.in_(appointment_ids), Appointment.status == expected_status.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class UserRepository:
    async def get(self, session: AsyncSession, user_id: str) -> UserProfile | None:
        return await session.get(UserProfile, user_id)

    async def record_review(self, session: AsyncSession, pro_id: str, rating: int) -> None:
        """Fold one rating into the pro's running average in a single UPDATE."""
        await session.execute(
            update(UserProfile)
            .where(UserProfile.id == pro_id)
            .values(
                average_rating=(UserProfile.average_rating * UserProfile.reviews_count + rating)
                / (UserProfile.reviews_count + 1),
                reviews_count=UserProfile.reviews_count + 1,
            )
            .execution_options(synchronize_session=False)
        )

    async def active_device_tokens(self, session: AsyncSession, user_id: str) -> list[str]:
        result = await session.execute(
            select(DeviceToken.token).where(DeviceToken.user_id == user_id, DeviceToken.is_active.is_(True))
        )
        return list(result.scalars().all())

    async def deactivate_device_tokens(self, session: AsyncSession, tokens: list[str]) -> None:
        if not tokens:
            return
        await session.execute(
            update(DeviceToken)
            .where(DeviceToken.token.in_(tokens))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )


class NotificationRepository:
    def add(
        self,
        session: AsyncSession,
        kind: NotificationKind,
        message: str,
        *,
        appointment_id: str | None = None,
        rating: int | None = None,
        total_call_duration: float | None = None,
        error: str | None = None,
    ) -> Notification:
        notification = Notification(
            kind=kind.value,
            message=message,
            appointment_id=appointment_id,
            rating=rating,
            total_call_duration=int(total_call_duration) if total_call_duration is not None else None,
            error=error,
        )
        session.add(notification)
        return notification

    async def list_for_appointment(self, session: AsyncSession, appointment_id: str) -> list[Notification]:
        result = await session.execute(
            select(Notification).where(Notification.appointment_id == appointment_id).order_by(Notification.id)
        )
        return list(result.scalars().all())
