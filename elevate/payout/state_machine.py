"""
Legal payout state transitions.
"""

from elevate.core.exceptions import InvalidTransitionError
from elevate.models.payout import Payout, PayoutState


ALLOWED = {
    PayoutState.PREPARED: {PayoutState.BROADCAST, PayoutState.FAILED},
    PayoutState.BROADCAST: {PayoutState.CONFIRMED, PayoutState.FAILED},
    PayoutState.CONFIRMED: set(),
    PayoutState.FAILED: set(),
}

TERMINAL = {PayoutState.CONFIRMED, PayoutState.FAILED}


def assert_transition(old: PayoutState, new: PayoutState) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransitionError(old.value, new.value)


def transition(payout: Payout, new: PayoutState) -> Payout:
    """Move `payout` to `new`, refusing illegal transitions."""
    assert_transition(payout.payout_state, new)
    payout.payout_state = new
    return payout
