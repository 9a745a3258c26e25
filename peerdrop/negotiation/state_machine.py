"""
Negotiation state machine.

Pure bookkeeping: no I/O happens here, callers perform the side effects and
record the resulting state.
"""

from enum import Enum
import logging

from .exceptions import (
    InvalidTransitionError,
)

logger = logging.getLogger(__name__)


class NegotiationState(Enum):
    IDLE = "idle"
    OFFER_CREATED = "offer_created"
    OFFER_RECEIVED = "offer_received"
    ANSWER_EXCHANGED = "answer_exchanged"
    CHANNEL_OPEN = "channel_open"
    FAILED = "failed"
    DECLINED = "declined"


TERMINAL_STATES = frozenset(
    {
        NegotiationState.CHANNEL_OPEN,
        NegotiationState.FAILED,
        NegotiationState.DECLINED,
    }
)

_ABORT_STATES = frozenset({NegotiationState.FAILED, NegotiationState.DECLINED})

TRANSITIONS: dict[NegotiationState, frozenset[NegotiationState]] = {
    NegotiationState.IDLE: frozenset(
        {NegotiationState.OFFER_CREATED, NegotiationState.OFFER_RECEIVED}
    )
    | _ABORT_STATES,
    NegotiationState.OFFER_CREATED: frozenset({NegotiationState.ANSWER_EXCHANGED})
    | _ABORT_STATES,
    NegotiationState.OFFER_RECEIVED: frozenset({NegotiationState.ANSWER_EXCHANGED})
    | _ABORT_STATES,
    NegotiationState.ANSWER_EXCHANGED: frozenset({NegotiationState.CHANNEL_OPEN})
    | _ABORT_STATES,
    NegotiationState.CHANNEL_OPEN: frozenset(),
    NegotiationState.FAILED: frozenset(),
    NegotiationState.DECLINED: frozenset(),
}


class NegotiationStateMachine:
    def __init__(self, name: str = "") -> None:
        self.name = name
        self._state = NegotiationState.IDLE
        self._history: list[NegotiationState] = [NegotiationState.IDLE]

    @property
    def state(self) -> NegotiationState:
        return self._state

    @property
    def history(self) -> tuple[NegotiationState, ...]:
        return tuple(self._history)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def can_transition(self, new_state: NegotiationState) -> bool:
        return new_state in TRANSITIONS[self._state]

    def transition(self, new_state: NegotiationState) -> None:
        """
        Move to ``new_state``.

        :raises InvalidTransitionError: if the move is not allowed from the
            current state
        """
        if not self.can_transition(new_state):
            raise InvalidTransitionError(
                f"Negotiation {self.name or '<unnamed>'}: cannot go from "
                f"{self._state.name} to {new_state.name}"
            )
        logger.debug(
            "Negotiation %s: %s -> %s", self.name, self._state.name, new_state.name
        )
        self._state = new_state
        self._history.append(new_state)

    def __repr__(self) -> str:
        return f"<NegotiationStateMachine {self.name} state={self._state.name}>"
