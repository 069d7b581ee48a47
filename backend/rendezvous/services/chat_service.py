"""Chat thread activation between a pro and a client."""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rendezvous.db.models.chat_thread import ChatThread

logger = structlog.get_logger(__name__)


class ChatService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def activate(self, pro_id: str, client_id: str, appointment_id: str) -> str:
        """Create the pair's thread or re-activate it for the latest appointment. Returns the thread id."""
        async with self.session_factory() as session:
            thread = (
                await session.execute(
                    select(ChatThread).where(ChatThread.pro_id == pro_id, ChatThread.client_id == client_id)
                )
            ).scalar_one_or_none()

            if thread is None:
                thread = ChatThread(pro_id=pro_id, client_id=client_id, appointment_id=appointment_id)
                session.add(thread)
                created = True
            else:
                thread.appointment_id = appointment_id
                thread.is_active = True
                created = False

            await session.commit()

        logger.info("chat_activated", thread_id=thread.id, appointment_id=appointment_id, created=created)
        return thread.id
