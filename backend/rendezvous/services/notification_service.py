"""Push notifications to clients and pros.

Push is fire-and-forget: a failed send is logged and never fails the
operation that triggered it.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Protocol

import firebase_admin
import structlog
from firebase_admin import credentials, messaging
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rendezvous.db.repositories import UserRepository

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PushMessage:
    title: str
    body: str
    kind: str = "GENERAL"
    data: dict[str, str] = field(default_factory=dict)


class PushNotifier(Protocol):
    async def notify(self, user_id: str, message: PushMessage) -> bool: ...


class LoggingPushNotifier:
    """Used when Firebase is not configured; records the push in the log only."""

    async def notify(self, user_id: str, message: PushMessage) -> bool:
        logger.info("push_skipped_not_configured", user_id=user_id, kind=message.kind, title=message.title)
        return False


def init_firebase_app(credentials_path: str, name: str = "rendezvous") -> firebase_admin.App:
    try:
        return firebase_admin.get_app(name)
    except ValueError:
        cred = credentials.Certificate(credentials_path)
        app = firebase_admin.initialize_app(cred, name=name)
        logger.info("firebase_initialized", app_name=name)
        return app


class FcmPushNotifier:
    """Sends to every active device token of the user via Firebase Cloud Messaging."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        app: firebase_admin.App | None = None,
        users: UserRepository | None = None,
    ):
        self.session_factory = session_factory
        self.app = app
        self.users = users or UserRepository()

    async def notify(self, user_id: str, message: PushMessage) -> bool:
        try:
            return await self._send(user_id, message)
        except Exception as exc:
            logger.warning("push_failed", user_id=user_id, kind=message.kind, error=str(exc))
            return False

    async def _send(self, user_id: str, message: PushMessage) -> bool:
        async with self.session_factory() as session:
            tokens = await self.users.active_device_tokens(session, user_id)
        if not tokens:
            logger.info("push_no_device_tokens", user_id=user_id, kind=message.kind)
            return False

        multicast = messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(title=message.title, body=message.body),
            data={"kind": message.kind, **message.data},
        )
        # firebase_admin is synchronous
        response = await asyncio.to_thread(messaging.send_each_for_multicast, multicast, app=self.app)

        stale = [
            token
            for token, result in zip(tokens, response.responses)
            if not result.success and isinstance(result.exception, messaging.UnregisteredError)
        ]
        if stale:
            async with self.session_factory() as session:
                await self.users.deactivate_device_tokens(session, stale)
                await session.commit()

        logger.info(
            "push_sent",
            user_id=user_id,
            kind=message.kind,
            success_count=response.success_count,
            failure_count=response.failure_count,
            deactivated=len(stale),
        )
        return response.success_count > 0
