"""Shared test fixtures for all test groups."""

import itertools
from datetime import UTC, datetime, timedelta

import pytest
from fakeredis import FakeAsyncRedis

from rendezvous.core.config import Settings
from rendezvous.core.exceptions import PaymentGatewayError
from rendezvous.db.base import create_engine, create_session_factory, create_tables
from rendezvous.db.models import Appointment, UserProfile
from rendezvous.domain.lifecycle import AppointmentStatus, UserRole
from rendezvous.services.container import build_services
from rendezvous.services.payment_gateway import Authorization
from rendezvous.services.reminder_index import ReminderIndex

# Tuesday 10 March 2026, 13:00 in Paris (UTC+1, before the DST switch)
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


class FakePaymentGateway:
    """In-memory PaymentGateway recording every call."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.missing_handle = False
        self.fail_transfer = False
        self.fail_refund = False
        # Like the processor, a failed result is replayed for every later call with the same key
        self.failed_keys: dict[str, PaymentGatewayError] = {}
        self.attempted_keys: list[str] = []
        self.intent_status: dict[str, str] = {}
        self.transfers: dict[str, str] = {}
        self._ids = itertools.count(1)

    def called(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    def _fail_if(self, flag: bool, operation: str, idempotency_key: str, detail: str) -> None:
        self.attempted_keys.append(idempotency_key)
        if idempotency_key in self.failed_keys:
            raise self.failed_keys[idempotency_key]
        if flag:
            self.failed_keys[idempotency_key] = PaymentGatewayError(operation, detail)
            raise self.failed_keys[idempotency_key]

    async def create_authorization(self, amount, currency, metadata):
        self.calls.append(("create_authorization", amount, currency, metadata))
        if self.missing_handle:
            return Authorization(handle=None, client_secret=None)
        handle = f"pi_test_{next(self._ids)}"
        self.intent_status[handle] = "requires_capture"
        return Authorization(handle=handle, client_secret=f"{handle}_secret")

    async def capture(self, handle, idempotency_key):
        self.calls.append(("capture", handle, idempotency_key))
        self.intent_status[handle] = "succeeded"

    async def cancel_uncaptured(self, handle, idempotency_key):
        self.calls.append(("cancel_uncaptured", handle, idempotency_key))
        self.intent_status[handle] = "canceled"

    async def refund(self, handle, idempotency_key, amount=None):
        self._fail_if(self.fail_refund, "refund", idempotency_key, "charge already disputed")
        self.calls.append(("refund", handle, idempotency_key, amount))

    async def release_or_refund(self, handle, idempotency_key):
        self._fail_if(self.fail_refund, "refund", idempotency_key, "charge already disputed")
        self.calls.append(("release_or_refund", handle, idempotency_key))
        if self.intent_status.get(handle) == "requires_capture":
            self.intent_status[handle] = "canceled"
            return "cancelled"
        return "refunded"

    async def transfer(self, amount, currency, destination, idempotency_key, metadata=None, description=None):
        self._fail_if(self.fail_transfer, "transfer", idempotency_key, "destination account closed")
        self.calls.append(("transfer", amount, destination, idempotency_key))
        return self.transfers.setdefault(idempotency_key, f"tr_test_{len(self.transfers) + 1}")


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def notify(self, user_id, message):
        self.sent.append((user_id, message))
        return True

    def to(self, user_id: str):
        return [message for recipient, message in self.sent if recipient == user_id]


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        jwt_secret="test-secret",
        stripe_secret_key="sk_test_dummy",
        scheduler_enabled=False,
    )


@pytest.fixture
async def engine(tmp_path):
    """SQLite file database per test."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'rendezvous.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def redis():
    """Create a fake Redis instance for testing."""
    fake_redis = FakeAsyncRedis(decode_responses=True)
    yield fake_redis
    await fake_redis.flushall()
    await fake_redis.aclose()


@pytest.fixture
def reminder_index(redis):
    return ReminderIndex(redis)


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def services(session_factory, redis, settings, gateway, notifier):
    return build_services(session_factory, redis, settings, gateway=gateway, notifier=notifier)


@pytest.fixture
def make_user(session_factory):
    async def _make(user_id: str, role: UserRole = UserRole.CLIENT, **fields) -> UserProfile:
        async with session_factory() as session:
            profile = UserProfile(id=user_id, role=role.value, **fields)
            session.add(profile)
            await session.commit()
        return profile

    return _make


@pytest.fixture
def make_appointment(session_factory):
    """Insert an appointment directly; defaults to a confirmed 60-minute booking in three days."""
    counter = itertools.count(1)

    async def _make(**fields) -> Appointment:
        n = next(counter)
        values = {
            "pro_id": "pro-1",
            "client_id": "client-1",
            "duration": 60,
            "date_time": NOW + timedelta(days=3),
            "time_slot": "14:00",
            "montant_ht": 6000,
            "montant_total": 7200,
            "stripe_payment_intent_id": f"pi_seed_{n}",
            "status": AppointmentStatus.CONFIRMED,
            "call_history": [],
            "evaluation_history": [],
            "created_at": NOW - timedelta(days=1),
            "updated_at": NOW - timedelta(days=1),
        }
        values.update(fields)
        if isinstance(values["status"], AppointmentStatus):
            values["status"] = values["status"].value

        async with session_factory() as session:
            appointment = Appointment(**values)
            session.add(appointment)
            await session.commit()
        return appointment

    return _make


@pytest.fixture
def load_appointment(session_factory):
    async def _load(appointment_id: str) -> Appointment | None:
        async with session_factory() as session:
            return await session.get(Appointment, appointment_id)

    return _load
