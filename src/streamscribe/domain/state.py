from enum import Enum


class SessionState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED)


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    # Idle -> Failed covers a missing credential: the session never starts.
    SessionState.IDLE: {SessionState.RECORDING, SessionState.FAILED},
    SessionState.RECORDING: {SessionState.PROCESSING, SessionState.FAILED},
    SessionState.PROCESSING: {SessionState.DELIVERING, SessionState.FAILED},
    SessionState.DELIVERING: {SessionState.COMPLETED},
    SessionState.COMPLETED: {SessionState.IDLE},
    SessionState.FAILED: {SessionState.IDLE},
}


class InvalidTransitionError(Exception):
    pass


def validate_transition(current: SessionState, target: SessionState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")
