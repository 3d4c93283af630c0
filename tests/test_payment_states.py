"""
Tests for the payment intent transition table.
"""

import pytest

from apps.billing.exceptions import InvalidTransition
from apps.billing.services.payment_states import (
    CREATED, PENDING, VERIFIED, REJECTED, REFUNDED,
    TERMINAL_STATES, TRANSITIONS, can_transition, ensure_transition,
)


def test_forward_path():
    """created -> pending -> verified -> refunded is the only paid path."""
    assert can_transition(CREATED, PENDING)
    assert can_transition(PENDING, VERIFIED)
    assert can_transition(VERIFIED, REFUNDED)


def test_cancellation_from_open_states():
    assert can_transition(CREATED, REJECTED)
    assert can_transition(PENDING, REJECTED)


@pytest.mark.parametrize("current,target", [
    (CREATED, VERIFIED),
    (CREATED, REFUNDED),
    (PENDING, CREATED),
    (PENDING, REFUNDED),
    (VERIFIED, REJECTED),
    (VERIFIED, PENDING),
    (REJECTED, VERIFIED),
    (REFUNDED, VERIFIED),
])
def test_no_skipping_or_going_back(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidTransition) as exc_info:
        ensure_transition(current, target)
    assert exc_info.value.current == current
    assert exc_info.value.target == target


def test_terminal_states_only_allow_refund():
    for state in TERMINAL_STATES:
        allowed = TRANSITIONS[state]
        assert allowed <= {REFUNDED}
    assert TRANSITIONS[REJECTED] == frozenset()
    assert TRANSITIONS[REFUNDED] == frozenset()


def test_unknown_state_has_no_transitions():
    assert not can_transition("settled", VERIFIED)
