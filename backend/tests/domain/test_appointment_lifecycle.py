"""Tests for the appointment transition table."""

import pytest

from rendezvous.core.exceptions import InvalidTransitionError
from rendezvous.domain.lifecycle import (
    CANCELLED_STATUSES,
    TERMINAL_STATUSES,
    TRANSITIONS,
    AppointmentStatus,
    can_transition,
    ensure_transition,
)

pytestmark = pytest.mark.unit

S = AppointmentStatus

LEGAL = {
    (S.PAYMENT_INITIATED, S.PAYMENT_AUTHORIZED),
    (S.PAYMENT_AUTHORIZED, S.CONFIRMED),
    (S.PAYMENT_AUTHORIZED, S.CANCELLED_BY_PRO),
    (S.CONFIRMED, S.PENDING_PAYOUT),
    (S.CONFIRMED, S.CANCELLED_BY_CLIENT),
    (S.CONFIRMED, S.CANCELLED_BY_PRO),
    (S.CONFIRMED, S.CANCELLED_BY_PRO_PENDING),
    (S.PENDING_PAYOUT, S.PAID_OUT),
}


def test_every_status_has_an_entry():
    assert set(TRANSITIONS) == set(AppointmentStatus)


@pytest.mark.parametrize("current", list(AppointmentStatus))
@pytest.mark.parametrize("target", list(AppointmentStatus))
def test_only_listed_moves_are_accepted(current, target):
    assert can_transition(current, target) is ((current, target) in LEGAL)


def test_terminal_statuses_have_no_exit():
    for status in TERMINAL_STATUSES:
        assert TRANSITIONS[status] == frozenset()


def test_cancellation_only_from_authorized_or_confirmed():
    sources = {current for current, target in LEGAL if target in CANCELLED_STATUSES}
    assert sources == {S.PAYMENT_AUTHORIZED, S.CONFIRMED}


def test_ensure_transition_raises_with_both_statuses():
    with pytest.raises(InvalidTransitionError) as exc_info:
        ensure_transition(S.PAID_OUT, S.CONFIRMED)

    assert exc_info.value.status_code == 400
    assert "PAID_OUT" in exc_info.value.message
    assert "CONFIRMED" in exc_info.value.message


def test_ensure_transition_allows_legal_move():
    ensure_transition(S.CONFIRMED, S.PENDING_PAYOUT)
