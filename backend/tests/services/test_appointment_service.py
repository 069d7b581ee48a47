"""Tests for AppointmentService: booking, authorization, confirmation, cancellation, expiry."""

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from rendezvous.core.auth import AuthUser
from rendezvous.core.exceptions import (
    BadInputError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PaymentGatewayError,
    PaymentRequiredError,
)
from rendezvous.db.models import Appointment, ChatThread, Notification, NotificationKind
from rendezvous.domain.lifecycle import AppointmentStatus, UserRole

pytestmark = pytest.mark.integration

CLIENT = AuthUser(user_id="client-1", role=UserRole.CLIENT)
PRO = AuthUser(user_id="pro-1", role=UserRole.PRO)
OTHER_CLIENT = AuthUser(user_id="client-2", role=UserRole.CLIENT)


@pytest.fixture
async def people(make_user):
    await make_user("client-1", UserRole.CLIENT, first_name="Ada", last_name="Martin")
    await make_user("pro-1", UserRole.PRO, first_name="Louis", last_name="Bernard")


@pytest.fixture
def appointments(services):
    return services.appointments


# ============================================================================
# create
# ============================================================================


async def test_create_computes_amounts_and_opens_manual_authorization(appointments, gateway, people, now):
    created = await appointments.create(CLIENT, "pro-1", date(2026, 3, 12), "14:30", 60, now=now)

    appointment = created.appointment
    assert appointment.status == AppointmentStatus.PAYMENT_INITIATED.value
    assert appointment.montant_ht == 6000
    assert appointment.montant_total == 7200
    assert created.client_secret == f"{appointment.stripe_payment_intent_id}_secret"

    [(_, amount, currency, metadata)] = gateway.called("create_authorization")
    assert amount == 7200
    assert currency == "eur"
    assert metadata == {"appointmentDuration": 60, "clientId": "client-1", "proId": "pro-1"}


async def test_create_stores_local_slot_as_utc(appointments, people, now):
    created = await appointments.create(CLIENT, "pro-1", date(2026, 3, 12), "14:30", 30, now=now)

    # Paris is UTC+1 in March before the DST switch
    assert created.appointment.date_time.hour == 13
    assert created.appointment.date_time.minute == 30
    assert created.appointment.montant_total == 3600


async def test_create_rejects_unsupported_duration(appointments, gateway, people, now):
    with pytest.raises(BadInputError):
        await appointments.create(CLIENT, "pro-1", date(2026, 3, 12), "14:30", 45, now=now)
    assert gateway.calls == []


async def test_create_rejects_past_slot(appointments, people, now):
    with pytest.raises(BadInputError):
        await appointments.create(CLIENT, "pro-1", date(2026, 3, 9), "14:30", 60, now=now)


async def test_create_rejects_malformed_slot(appointments, people, now):
    with pytest.raises(BadInputError):
        await appointments.create(CLIENT, "pro-1", date(2026, 3, 12), "2pm", 60, now=now)


async def test_create_requires_existing_pro(appointments, people, now):
    with pytest.raises(NotFoundError):
        await appointments.create(CLIENT, "client-1", date(2026, 3, 12), "14:30", 60, now=now)
    with pytest.raises(NotFoundError):
        await appointments.create(CLIENT, "nobody", date(2026, 3, 12), "14:30", 60, now=now)


async def test_create_forbidden_for_pro(appointments, people, now):
    with pytest.raises(ForbiddenError):
        await appointments.create(PRO, "pro-1", date(2026, 3, 12), "14:30", 60, now=now)


async def test_create_without_authorization_handle_is_payment_required(appointments, gateway, session_factory, people, now):
    gateway.missing_handle = True

    with pytest.raises(PaymentRequiredError) as exc_info:
        await appointments.create(CLIENT, "pro-1", date(2026, 3, 12), "14:30", 60, now=now)

    assert exc_info.value.status_code == 402
    async with session_factory() as session:
        assert (await session.execute(select(Appointment))).first() is None


# ============================================================================
# authorize_payment
# ============================================================================


async def test_authorize_moves_to_authorized_and_notifies_pro(
    appointments, make_appointment, notifier, people, now
):
    appointment = await make_appointment(status=AppointmentStatus.PAYMENT_INITIATED)

    updated = await appointments.authorize_payment(appointment.id, CLIENT, now=now)

    assert updated.status == AppointmentStatus.PAYMENT_AUTHORIZED.value
    assert updated.version == appointment.version + 1
    [message] = notifier.to("pro-1")
    assert "Ada Martin" in message.body


async def test_authorize_by_other_client_is_forbidden(appointments, make_appointment, now):
    appointment = await make_appointment(status=AppointmentStatus.PAYMENT_INITIATED)

    with pytest.raises(ForbiddenError):
        await appointments.authorize_payment(appointment.id, OTHER_CLIENT, now=now)


async def test_authorize_twice_is_invalid(appointments, make_appointment, people, now):
    appointment = await make_appointment(status=AppointmentStatus.PAYMENT_INITIATED)
    await appointments.authorize_payment(appointment.id, CLIENT, now=now)

    with pytest.raises(InvalidTransitionError):
        await appointments.authorize_payment(appointment.id, CLIENT, now=now)


async def test_authorize_unknown_appointment(appointments):
    with pytest.raises(NotFoundError):
        await appointments.authorize_payment("missing", CLIENT)


# ============================================================================
# confirm
# ============================================================================


async def test_confirm_captures_then_confirms(
    appointments, make_appointment, gateway, reminder_index, notifier, session_factory, now
):
    appointment = await make_appointment(status=AppointmentStatus.PAYMENT_AUTHORIZED)

    result = await appointments.confirm(appointment.id, PRO, now=now)

    assert result.appointment.status == AppointmentStatus.CONFIRMED.value
    assert len(result.appointment.room_id) == 6
    assert result.appointment.room_id.isdigit()
    assert gateway.called("capture") == [("capture", appointment.stripe_payment_intent_id, f"capture-{appointment.id}")]

    assert [entry.id for entry in await reminder_index.entries()] == [appointment.id]

    assert result.client_invoice.user_role == "CLIENT"
    assert result.pro_invoice.user_role == "PRO"
    assert result.pro_invoice.platform_fee == 2000
    assert result.client_invoice.platform_fee is None
    assert result.client_invoice.invoice_number != result.pro_invoice.invoice_number

    async with session_factory() as session:
        thread = (await session.execute(select(ChatThread))).scalar_one()
    assert (thread.pro_id, thread.client_id, thread.appointment_id) == ("pro-1", "client-1", appointment.id)

    [message] = notifier.to("client-1")
    assert message.data["roomId"] == result.appointment.room_id


async def test_invoice_numbers_are_sequential(appointments, make_appointment, now):
    first = await make_appointment(status=AppointmentStatus.PAYMENT_AUTHORIZED)
    second = await make_appointment(status=AppointmentStatus.PAYMENT_AUTHORIZED)

    one = await appointments.confirm(first.id, PRO, now=now)
    two = await appointments.confirm(second.id, PRO, now=now)

    numbers = [
        one.client_invoice.invoice_number,
        one.pro_invoice.invoice_number,
        two.client_invoice.invoice_number,
        two.pro_invoice.invoice_number,
    ]
    assert numbers == [f"INV-2026-{n:06d}" for n in range(1, 5)]


async def test_confirm_by_other_pro_is_forbidden(appointments, make_appointment, gateway, now):
    appointment = await make_appointment(status=AppointmentStatus.PAYMENT_AUTHORIZED)

    with pytest.raises(ForbiddenError):
        await appointments.confirm(appointment.id, AuthUser("pro-2", UserRole.PRO), now=now)
    assert gateway.called("capture") == []


async def test_confirm_from_initiated_is_invalid_and_does_not_capture(appointments, make_appointment, gateway, now):
    appointment = await make_appointment(status=AppointmentStatus.PAYMENT_INITIATED)

    with pytest.raises(InvalidTransitionError):
        await appointments.confirm(appointment.id, PRO, now=now)
    assert gateway.called("capture") == []


# ============================================================================
# cancel
# ============================================================================


async def _notifications(session_factory, appointment_id):
    async with session_factory() as session:
        result = await session.execute(select(Notification).where(Notification.appointment_id == appointment_id))
        return list(result.scalars().all())


async def test_client_late_cancel_refunds_total_minus_fee(
    appointments, make_appointment, gateway, session_factory, now
):
    appointment = await make_appointment(date_time=now + timedelta(hours=5))

    updated = await appointments.cancel(appointment.id, CLIENT, now=now)

    assert updated.status == AppointmentStatus.CANCELLED_BY_CLIENT.value
    assert gateway.called("refund") == [
        ("refund", appointment.stripe_payment_intent_id, f"refund-{appointment.id}", 6200)
    ]
    [notification] = await _notifications(session_factory, appointment.id)
    assert notification.kind == NotificationKind.CANCELLATION.value


async def test_client_late_cancel_below_fee_makes_no_refund_call(appointments, make_appointment, gateway, now):
    appointment = await make_appointment(date_time=now + timedelta(hours=5), montant_ht=400, montant_total=500)

    updated = await appointments.cancel(appointment.id, CLIENT, now=now)

    assert updated.status == AppointmentStatus.CANCELLED_BY_CLIENT.value
    assert gateway.called("refund") == []
    assert gateway.called("release_or_refund") == []


async def test_client_early_cancel_refunds_in_full(appointments, make_appointment, gateway, now):
    appointment = await make_appointment(date_time=now + timedelta(days=3))

    updated = await appointments.cancel(appointment.id, CLIENT, now=now)

    assert updated.status == AppointmentStatus.CANCELLED_BY_CLIENT.value
    assert gateway.called("release_or_refund") == [
        ("release_or_refund", appointment.stripe_payment_intent_id, f"refund-{appointment.id}")
    ]


async def test_cancel_after_refund_failure_retries_under_a_new_key(
    appointments, make_appointment, gateway, load_appointment, now
):
    appointment = await make_appointment(date_time=now + timedelta(hours=5))
    gateway.fail_refund = True

    with pytest.raises(PaymentGatewayError):
        await appointments.cancel(appointment.id, CLIENT, now=now)

    stored = await load_appointment(appointment.id)
    assert stored.status == AppointmentStatus.CONFIRMED.value
    assert stored.payment_failures == 1

    gateway.fail_refund = False
    updated = await appointments.cancel(appointment.id, CLIENT, now=now)

    assert updated.status == AppointmentStatus.CANCELLED_BY_CLIENT.value
    assert gateway.attempted_keys == [f"refund-{appointment.id}", f"refund-{appointment.id}-1"]
    assert gateway.called("refund") == [
        ("refund", appointment.stripe_payment_intent_id, f"refund-{appointment.id}-1", 6200)
    ]


async def test_pro_late_cancel_is_pending_without_refund(appointments, make_appointment, gateway, notifier, now):
    appointment = await make_appointment(date_time=now + timedelta(hours=3))

    updated = await appointments.cancel(appointment.id, PRO, now=now)

    assert updated.status == AppointmentStatus.CANCELLED_BY_PRO_PENDING.value
    assert gateway.called("refund") == []
    assert gateway.called("release_or_refund") == []
    assert notifier.to("client-1") and notifier.to("pro-1")


async def test_pro_early_cancel_refunds_in_full(appointments, make_appointment, gateway, now):
    appointment = await make_appointment(date_time=now + timedelta(days=2))

    updated = await appointments.cancel(appointment.id, PRO, now=now)

    assert updated.status == AppointmentStatus.CANCELLED_BY_PRO.value
    assert len(gateway.called("release_or_refund")) == 1


async def test_pro_cancel_before_confirmation_releases_authorization(
    appointments, make_appointment, gateway, session_factory, now
):
    appointment = await make_appointment(status=AppointmentStatus.PAYMENT_AUTHORIZED)

    updated = await appointments.cancel(appointment.id, PRO, now=now)

    assert updated.status == AppointmentStatus.CANCELLED_BY_PRO.value
    assert gateway.called("cancel_uncaptured") == [
        ("cancel_uncaptured", appointment.stripe_payment_intent_id, f"cancel-{appointment.id}")
    ]
    assert len(await _notifications(session_factory, appointment.id)) == 1


async def test_client_cannot_cancel_before_confirmation(appointments, make_appointment, gateway, now):
    appointment = await make_appointment(status=AppointmentStatus.PAYMENT_AUTHORIZED)

    with pytest.raises(InvalidTransitionError):
        await appointments.cancel(appointment.id, CLIENT, now=now)
    assert gateway.calls == []


@pytest.mark.parametrize(
    "status",
    [AppointmentStatus.PAYMENT_INITIATED, AppointmentStatus.PENDING_PAYOUT, AppointmentStatus.CANCELLED_BY_CLIENT],
)
async def test_cancel_from_other_statuses_is_invalid(appointments, make_appointment, status, now):
    appointment = await make_appointment(status=status)

    with pytest.raises(InvalidTransitionError):
        await appointments.cancel(appointment.id, CLIENT, now=now)


async def test_cancel_by_stranger_is_forbidden(appointments, make_appointment, now):
    appointment = await make_appointment()

    with pytest.raises(ForbiddenError):
        await appointments.cancel(appointment.id, OTHER_CLIENT, now=now)


async def test_confirm_then_cancel_updates_reminder_index(appointments, make_appointment, reminder_index, now):
    appointment = await make_appointment(status=AppointmentStatus.PAYMENT_AUTHORIZED)

    await appointments.confirm(appointment.id, PRO, now=now)
    assert [entry.id for entry in await reminder_index.entries()] == [appointment.id]

    await appointments.cancel(appointment.id, CLIENT, now=now)
    assert await reminder_index.entries() == []


# ============================================================================
# expire_stale_initiations
# ============================================================================


async def test_expire_deletes_only_stale_initiations(appointments, make_appointment, load_appointment, now):
    stale = await make_appointment(status=AppointmentStatus.PAYMENT_INITIATED, created_at=now - timedelta(minutes=11))
    fresh = await make_appointment(status=AppointmentStatus.PAYMENT_INITIATED, created_at=now - timedelta(minutes=9))
    old_confirmed = await make_appointment(created_at=now - timedelta(hours=1))

    deleted = await appointments.expire_stale_initiations(now=now)

    assert deleted == 1
    assert await load_appointment(stale.id) is None
    assert await load_appointment(fresh.id) is not None
    assert await load_appointment(old_confirmed.id) is not None


async def test_expire_with_nothing_stale(appointments, now):
    assert await appointments.expire_stale_initiations(now=now) == 0
