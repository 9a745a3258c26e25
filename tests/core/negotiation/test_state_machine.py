import pytest

from peerdrop.negotiation.exceptions import (
    InvalidTransitionError,
)
from peerdrop.negotiation.state_machine import (
    TERMINAL_STATES,
    NegotiationState,
    NegotiationStateMachine,
)

S = NegotiationState


def _machine_in(*path):
    machine = NegotiationStateMachine("peer")
    for state in path:
        machine.transition(state)
    return machine


def test_initiator_path():
    machine = _machine_in(S.OFFER_CREATED, S.ANSWER_EXCHANGED, S.CHANNEL_OPEN)
    assert machine.state is S.CHANNEL_OPEN
    assert machine.is_terminal
    assert machine.history == (
        S.IDLE,
        S.OFFER_CREATED,
        S.ANSWER_EXCHANGED,
        S.CHANNEL_OPEN,
    )


def test_responder_path():
    machine = _machine_in(S.OFFER_RECEIVED, S.ANSWER_EXCHANGED, S.CHANNEL_OPEN)
    assert machine.state is S.CHANNEL_OPEN


@pytest.mark.parametrize(
    "path",
    [
        (),
        (S.OFFER_CREATED,),
        (S.OFFER_RECEIVED,),
        (S.OFFER_RECEIVED, S.ANSWER_EXCHANGED),
    ],
)
@pytest.mark.parametrize("abort", [S.FAILED, S.DECLINED])
def test_abort_from_any_non_terminal_state(path, abort):
    machine = _machine_in(*path)
    machine.transition(abort)
    assert machine.state is abort
    assert machine.is_terminal


@pytest.mark.parametrize(
    "path, target",
    [
        ((), S.ANSWER_EXCHANGED),
        ((), S.CHANNEL_OPEN),
        ((S.OFFER_CREATED,), S.OFFER_RECEIVED),
        ((S.OFFER_CREATED,), S.CHANNEL_OPEN),
        ((S.OFFER_RECEIVED,), S.OFFER_CREATED),
        ((S.OFFER_CREATED, S.ANSWER_EXCHANGED), S.OFFER_CREATED),
        ((S.OFFER_CREATED, S.ANSWER_EXCHANGED, S.CHANNEL_OPEN), S.FAILED),
        ((S.FAILED,), S.DECLINED),
        ((S.DECLINED,), S.IDLE),
    ],
)
def test_illegal_transitions(path, target):
    machine = _machine_in(*path)
    before = machine.state
    with pytest.raises(InvalidTransitionError):
        machine.transition(target)
    assert machine.state is before


def test_terminal_states_have_no_exits():
    for state in TERMINAL_STATES:
        machine = NegotiationStateMachine()
        machine._state = state
        assert not any(machine.can_transition(s) for s in NegotiationState)
