"""Client evaluations and the daily quality gate that releases appointments for payout."""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rendezvous.core.auth import AuthUser
from rendezvous.core.config import Settings, get_settings
from rendezvous.core.exceptions import BadInputError, ForbiddenError
from rendezvous.db.models.appointment import Appointment
from rendezvous.db.models.notification import NotificationKind
from rendezvous.db.repositories import AppointmentRepository, NotificationRepository, UserRepository
from rendezvous.domain.evaluation import (
    assess,
    latest_unprocessed,
    mark_all_processed,
    new_evaluation,
    total_call_duration,
)
from rendezvous.domain.lifecycle import AppointmentStatus, UserRole
from rendezvous.services.reminder_index import ReminderIndex

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EvaluationReceipt:
    appointment_id: str
    pro_id: str
    total_duration: float
    rating: int
    evaluation_added: bool = True


class EvaluationService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        reminder_index: ReminderIndex,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.reminder_index = reminder_index
        self.settings = settings or get_settings()
        self.appointments = AppointmentRepository()
        self.users = UserRepository()
        self.notifications = NotificationRepository()

    async def evaluate(
        self,
        appointment_id: str,
        user: AuthUser,
        pro_id: str,
        rating: int,
        now: datetime | None = None,
    ) -> EvaluationReceipt:
        """Append an unprocessed evaluation; the status is left untouched.

        Raises:
            BadInputError: rating outside 1-5 or pro id not matching the appointment
            ForbiddenError: caller is not the appointment's client
        """
        now = now or datetime.now(UTC)
        if not 1 <= rating <= 5:
            raise BadInputError("Rating must be between 1 and 5")

        async with self.session_factory() as session:
            appointment = await self.appointments.get(session, appointment_id)
            if user.role != UserRole.CLIENT or appointment.client_id != user.user_id:
                raise ForbiddenError("Only the appointment's client can evaluate it")
            if appointment.pro_id != pro_id:
                raise BadInputError("Professional does not match the appointment")

            duration = total_call_duration(appointment.call_history)
            history = [*(appointment.evaluation_history or []), new_evaluation(rating, user.user_id, duration, now)]
            await self.appointments.compare_and_set(
                session,
                appointment,
                {"evaluation_history": history, "last_evaluated_at": now},
                now=now,
            )
            await session.commit()

        logger.info("appointment_evaluated", appointment_id=appointment_id, rating=rating, total_duration=duration)
        return EvaluationReceipt(appointment_id=appointment_id, pro_id=pro_id, total_duration=duration, rating=rating)

    async def process_due_evaluations(self, now: datetime | None = None) -> dict[str, int]:
        """Run the quality gate over past CONFIRMED appointments with unprocessed evaluations.

        Each appointment is handled in its own transaction; a failure is logged
        and the batch moves on.
        """
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            candidates = await self.appointments.find(
                session,
                AppointmentStatus.CONFIRMED,
                range_field=Appointment.date_time,
                upper=now,
            )

        summary = {"promoted": 0, "flagged": 0, "failed": 0}
        for candidate in candidates:
            if latest_unprocessed(candidate.evaluation_history) is None:
                continue
            try:
                outcome = await self._process_one(candidate.id, now)
            except Exception as exc:
                summary["failed"] += 1
                logger.error("evaluation_processing_failed", appointment_id=candidate.id, error=str(exc))
                continue
            if outcome is not None:
                summary[outcome] += 1

        logger.info("due_evaluations_processed", **summary)
        return summary

    async def _process_one(self, appointment_id: str, now: datetime) -> str | None:
        async with self.session_factory() as session:
            appointment = await self.appointments.get(session, appointment_id)
            latest = latest_unprocessed(appointment.evaluation_history)
            if appointment.current_status != AppointmentStatus.CONFIRMED or latest is None:
                return None

            assessment = assess(
                latest,
                min_rating=self.settings.min_payout_rating,
                min_duration=self.settings.min_call_duration_minutes,
            )
            history = mark_all_processed(appointment.evaluation_history)

            if assessment.passes:
                await self.appointments.compare_and_set(
                    session,
                    appointment,
                    {
                        "status": AppointmentStatus.PENDING_PAYOUT,
                        "pending_payout_since": now,
                        "evaluation_history": history,
                    },
                    expected_status=AppointmentStatus.CONFIRMED,
                    now=now,
                )
                await self.users.record_review(session, appointment.pro_id, assessment.rating)
                outcome = "promoted"
            else:
                if assessment.low_rating:
                    self.notifications.add(
                        session,
                        NotificationKind.LOW_RATING,
                        f"Appointment rated {assessment.rating}/5, payout withheld.",
                        appointment_id=appointment.id,
                        rating=assessment.rating,
                        total_call_duration=assessment.total_call_duration,
                    )
                if assessment.short_call:
                    self.notifications.add(
                        session,
                        NotificationKind.SHORT_CALL_UNDER_10_MINUTES,
                        f"Call lasted {assessment.total_call_duration:g} minutes, payout withheld.",
                        appointment_id=appointment.id,
                        rating=assessment.rating,
                        total_call_duration=assessment.total_call_duration,
                    )
                await self.appointments.compare_and_set(
                    session,
                    appointment,
                    {"evaluation_history": history},
                    expected_status=AppointmentStatus.CONFIRMED,
                    now=now,
                )
                outcome = "flagged"

            await session.commit()

        if outcome == "promoted":
            await self.reminder_index.remove(appointment_id)
        logger.info("evaluation_processed", appointment_id=appointment_id, outcome=outcome, rating=assessment.rating)
        return outcome
