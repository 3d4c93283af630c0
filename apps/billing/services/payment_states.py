"""
Legal payment intent transitions
"""
from typing import Dict, FrozenSet

from shared.models.payment import PaymentStatus
from ..exceptions import InvalidTransition

CREATED = PaymentStatus.CREATED.value
PENDING = PaymentStatus.PENDING_VERIFICATION.value
VERIFIED = PaymentStatus.VERIFIED.value
REJECTED = PaymentStatus.REJECTED.value
REFUNDED = PaymentStatus.REFUNDED.value

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    CREATED: frozenset({PENDING, REJECTED}),  # submit, cancel
    PENDING: frozenset({VERIFIED, REJECTED}),  # admin resolution, cancel
    VERIFIED: frozenset({REFUNDED}),
    REJECTED: frozenset(),
    REFUNDED: frozenset(),
}

TERMINAL_STATES = frozenset({VERIFIED, REJECTED, REFUNDED})


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str):
    """Raise InvalidTransition unless current -> target is in the table"""
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Payment cannot move from {current} to {target}",
            current=current,
            target=target,
        )
