"""Redis side-index of CONFIRMED appointments that may need reminders.

The index is advisory. The appointments table stays the source of truth and
the daily rebuild repairs any drift, so write failures are logged and
swallowed rather than failing the operation that triggered them.
"""

from datetime import datetime

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from redis.asyncio import Redis
from redis.exceptions import RedisError

from rendezvous.db.models.appointment import Appointment

logger = structlog.get_logger(__name__)

INDEX_KEY = "rendezvous:reminders:index"
MARKER_KEY = "rendezvous:reminders:sent:{appointment_id}:{window}"


class ReminderEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    pro_id: str
    client_id: str
    date_time: datetime
    duration: int
    time_slot: str
    status: str
    room_id: str | None = None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "ReminderEntry":
        return cls(
            id=appointment.id,
            pro_id=appointment.pro_id,
            client_id=appointment.client_id,
            date_time=appointment.date_time,
            duration=appointment.duration,
            time_slot=appointment.time_slot,
            status=appointment.status,
            room_id=appointment.room_id,
        )


class ReminderIndex:
    def __init__(self, redis: Redis):
        self.redis = redis

    async def add(self, entry: ReminderEntry) -> None:
        try:
            await self.redis.hset(INDEX_KEY, entry.id, entry.model_dump_json(by_alias=True))
        except RedisError as exc:
            logger.warning("reminder_index_add_failed", appointment_id=entry.id, error=str(exc))

    async def remove(self, appointment_id: str) -> None:
        try:
            await self.redis.hdel(INDEX_KEY, appointment_id)
        except RedisError as exc:
            logger.warning("reminder_index_remove_failed", appointment_id=appointment_id, error=str(exc))

    async def replace_all(self, entries: list[ReminderEntry]) -> None:
        """Swap the whole index for a fresh snapshot in one transaction."""
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(INDEX_KEY)
                if entries:
                    pipe.hset(
                        INDEX_KEY,
                        mapping={entry.id: entry.model_dump_json(by_alias=True) for entry in entries},
                    )
                await pipe.execute()
        except RedisError as exc:
            logger.warning("reminder_index_rebuild_failed", entries=len(entries), error=str(exc))

    async def entries(self) -> list[ReminderEntry]:
        raw = await self.redis.hgetall(INDEX_KEY)
        result = []
        for appointment_id, payload in raw.items():
            try:
                result.append(ReminderEntry.model_validate_json(payload))
            except ValueError:
                logger.warning("reminder_index_entry_invalid", appointment_id=appointment_id)
        return result

    async def claim(self, appointment_id: str, window: str, ttl_seconds: int) -> bool:
        """True exactly once per (appointment, window) while the marker lives."""
        key = MARKER_KEY.format(appointment_id=appointment_id, window=window)
        return bool(await self.redis.set(key, "1", nx=True, ex=ttl_seconds))
