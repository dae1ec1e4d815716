from enum import Enum


class SessionState(str, Enum):
    BOT_ACTIVE = "bot_active"
    ESCALATED = "escalated"
    CLOSED = "closed"


VALID_TRANSITIONS = {
    SessionState.BOT_ACTIVE: [SessionState.ESCALATED, SessionState.CLOSED],
    SessionState.ESCALATED: [SessionState.CLOSED],
    SessionState.CLOSED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: SessionState, to_state: SessionState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: SessionState, to_state: SessionState) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: SessionState, to_state: SessionState) -> SessionState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def escalate(current_state: SessionState) -> SessionState:
    """Hand the session over to a human agent."""
    return transition(current_state, SessionState.ESCALATED)


def close(current_state: SessionState) -> SessionState:
    """Close the session. Closed sessions are immutable."""
    return transition(current_state, SessionState.CLOSED)


def accepts_bot_transitions(state: str) -> bool:
    """Only bot-active sessions are advanced by the flow engine."""
    return state == SessionState.BOT_ACTIVE.value
