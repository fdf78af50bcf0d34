"""
Lifecycle state machines for ESOP grants and funding rounds.

Each machine is a transition table keyed by (current state, event). Services
ask the table for the next state instead of comparing status fields inline,
so an action that is not allowed from the current state always fails the
same way: with InvalidStateError and no mutation.
"""
from enum import Enum
from typing import Dict, Tuple, Union

from equity_ledger.constants import GrantStatus, RoundStatus
from equity_ledger.exceptions import InvalidStateError


class GrantEvent(str, Enum):
    APPROVE = "approve"
    ACTIVATE = "activate"
    VEST_PARTIAL = "vest_partial"
    VEST_FULL = "vest_full"
    EXERCISE = "exercise"  # Leaves vested-but-unexercised shares
    EXERCISE_ALL = "exercise_all"  # Fully vested and fully exercised
    CANCEL = "cancel"
    EXPIRE = "expire"
    FORFEIT = "forfeit"


class RoundEvent(str, Enum):
    OPEN = "open"
    CLOSE = "close"
    CANCEL = "cancel"


_G = GrantStatus
_E = GrantEvent

_VESTING_STATES = (_G.ACTIVE, _G.PARTIALLY_VESTED, _G.FULLY_VESTED)

GRANT_TRANSITIONS: Dict[Tuple[GrantStatus, GrantEvent], GrantStatus] = {
    (_G.DRAFT, _E.APPROVE): _G.APPROVED,
    (_G.APPROVED, _E.ACTIVATE): _G.ACTIVE,

    (_G.ACTIVE, _E.VEST_PARTIAL): _G.PARTIALLY_VESTED,
    (_G.ACTIVE, _E.VEST_FULL): _G.FULLY_VESTED,
    (_G.PARTIALLY_VESTED, _E.VEST_PARTIAL): _G.PARTIALLY_VESTED,
    (_G.PARTIALLY_VESTED, _E.VEST_FULL): _G.FULLY_VESTED,
    (_G.FULLY_VESTED, _E.VEST_FULL): _G.FULLY_VESTED,

    (_G.ACTIVE, _E.EXERCISE): _G.ACTIVE,
    (_G.PARTIALLY_VESTED, _E.EXERCISE): _G.PARTIALLY_VESTED,
    (_G.FULLY_VESTED, _E.EXERCISE): _G.FULLY_VESTED,
    (_G.FULLY_VESTED, _E.EXERCISE_ALL): _G.EXERCISED,
}

# Cancellation is open to every non-terminal state
for _state in (_G.DRAFT, _G.APPROVED) + _VESTING_STATES:
    GRANT_TRANSITIONS[(_state, _E.CANCEL)] = _G.CANCELLED

# Expiry and forfeiture only apply once the grant is live
for _state in (_G.APPROVED,) + _VESTING_STATES:
    GRANT_TRANSITIONS[(_state, _E.EXPIRE)] = _G.EXPIRED
    GRANT_TRANSITIONS[(_state, _E.FORFEIT)] = _G.FORFEITED


ROUND_TRANSITIONS: Dict[Tuple[RoundStatus, RoundEvent], RoundStatus] = {
    (RoundStatus.PLANNING, RoundEvent.OPEN): RoundStatus.ACTIVE,
    (RoundStatus.ACTIVE, RoundEvent.CLOSE): RoundStatus.CLOSED,
    (RoundStatus.PLANNING, RoundEvent.CANCEL): RoundStatus.CANCELLED,
    (RoundStatus.ACTIVE, RoundEvent.CANCEL): RoundStatus.CANCELLED,
}


def can_transition_grant(state: Union[GrantStatus, str], event: GrantEvent) -> bool:
    return (GrantStatus(state), event) in GRANT_TRANSITIONS


def transition_grant(state: Union[GrantStatus, str], event: GrantEvent) -> GrantStatus:
    """Next grant status for event, or InvalidStateError"""
    current = GrantStatus(state)
    try:
        return GRANT_TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidStateError(
            f"Cannot {event.value} a grant in status {current.value}",
            status=current.value,
            event=event.value,
        ) from None


def transition_round(state: Union[RoundStatus, str], event: RoundEvent) -> RoundStatus:
    """Next round status for event, or InvalidStateError"""
    current = RoundStatus(state)
    try:
        return ROUND_TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidStateError(
            f"Cannot {event.value} a round in status {current.value}",
            status=current.value,
            event=event.value,
        ) from None
