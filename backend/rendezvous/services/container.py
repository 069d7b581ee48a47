"""Wires the services once at startup; routes and jobs receive them from ``app.state``."""

from dataclasses import dataclass

import structlog
from fastapi import Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rendezvous.core.config import Settings
from rendezvous.services.appointment_service import AppointmentService
from rendezvous.services.evaluation_service import EvaluationService
from rendezvous.services.notification_service import (
    FcmPushNotifier,
    LoggingPushNotifier,
    PushNotifier,
    init_firebase_app,
)
from rendezvous.services.payment_gateway import PaymentGateway, StripePaymentGateway
from rendezvous.services.payout_service import PayoutService
from rendezvous.services.reminder_index import ReminderIndex
from rendezvous.services.reminder_service import ReminderService

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    appointments: AppointmentService
    evaluations: EvaluationService
    payouts: PayoutService
    reminders: ReminderService


def build_notifier(session_factory: async_sessionmaker[AsyncSession], settings: Settings) -> PushNotifier:
    if not settings.firebase_credentials_path:
        logger.warning("firebase_not_configured")
        return LoggingPushNotifier()
    return FcmPushNotifier(session_factory, app=init_firebase_app(settings.firebase_credentials_path))


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    redis: Redis,
    settings: Settings,
    gateway: PaymentGateway | None = None,
    notifier: PushNotifier | None = None,
) -> Services:
    gateway = gateway or StripePaymentGateway(settings.stripe_secret_key)
    notifier = notifier or build_notifier(session_factory, settings)
    index = ReminderIndex(redis)
    return Services(
        appointments=AppointmentService(session_factory, gateway, notifier, index, settings),
        evaluations=EvaluationService(session_factory, index, settings),
        payouts=PayoutService(session_factory, gateway, settings),
        reminders=ReminderService(session_factory, index, notifier, settings),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the services built in the lifespan."""
    return request.app.state.services
