from enum import Enum


class SessionState(str, Enum):
    INIT = "INIT"
    AWAITING_UNIT = "AWAITING_UNIT"
    AWAITING_OPTION = "AWAITING_OPTION"
    AWAITING_PEDIDO_METHOD = "AWAITING_PEDIDO_METHOD"
    AWAITING_OUTROS = "AWAITING_OUTROS"
    AWAITING_CONFIRM_ISSUE = "AWAITING_CONFIRM_ISSUE"
    AWAITING_MODIFY = "AWAITING_MODIFY"
    AWAITING_CANCEL = "AWAITING_CANCEL"
    AWAITING_NAME_CPF = "AWAITING_NAME_CPF"
    AWAITING_OPTION_AFTER_CONSULT = "AWAITING_OPTION_AFTER_CONSULT"
    AWAITING_HUMAN = "AWAITING_HUMAN"


S = SessionState

VALID_TRANSITIONS = {
    S.INIT: [S.AWAITING_UNIT],
    S.AWAITING_UNIT: [S.AWAITING_OPTION, S.AWAITING_UNIT],
    S.AWAITING_OPTION: [
        S.AWAITING_PEDIDO_METHOD,
        S.AWAITING_NAME_CPF,
        S.AWAITING_OUTROS,
        S.AWAITING_UNIT,
        S.AWAITING_OPTION,
    ],
    S.AWAITING_PEDIDO_METHOD: [S.AWAITING_OPTION],
    S.AWAITING_OUTROS: [
        S.AWAITING_CONFIRM_ISSUE,
        S.AWAITING_MODIFY,
        S.AWAITING_CANCEL,
        S.AWAITING_OPTION,
    ],
    S.AWAITING_CONFIRM_ISSUE: [S.AWAITING_OPTION],
    S.AWAITING_MODIFY: [],
    S.AWAITING_CANCEL: [],
    S.AWAITING_NAME_CPF: [S.AWAITING_OPTION_AFTER_CONSULT, S.AWAITING_NAME_CPF],
    S.AWAITING_OPTION_AFTER_CONSULT: [],
    S.AWAITING_HUMAN: [],
}

# States whose last prompt was an option list; numbered replies resolve against it.
LIST_STATES = frozenset({S.AWAITING_UNIT, S.AWAITING_OPTION, S.AWAITING_PEDIDO_METHOD, S.AWAITING_OUTROS})


class InvalidTransitionError(Exception):
    def __init__(self, from_state: SessionState, to_state: SessionState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: SessionState, to_state: SessionState) -> bool:
    """Escalation to a human is reachable from every state."""
    if to_state == S.AWAITING_HUMAN:
        return True
    return to_state in VALID_TRANSITIONS.get(from_state, [])


def transition(from_state: SessionState, to_state: SessionState) -> SessionState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def escalate(current_state: SessionState) -> SessionState:
    return transition(current_state, S.AWAITING_HUMAN)
