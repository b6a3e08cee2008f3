"""Caller-facing session failures.

Each exception carries the SessionErrorCode reported to the originating
connection. Raising one never leaves a partially created room or a
half-seated player behind.
"""

from relay.messaging.types import SessionErrorCode


class SessionError(Exception):
    code: SessionErrorCode = SessionErrorCode.INVALID_MESSAGE

    def __init__(self, session_code: str, message: str) -> None:
        self.session_code = session_code
        super().__init__(message)


class SessionNotFoundError(SessionError):
    code = SessionErrorCode.SESSION_NOT_FOUND

    def __init__(self, session_code: str) -> None:
        super().__init__(session_code, f"Session {session_code} does not exist")


class SessionFullError(SessionError):
    code = SessionErrorCode.SESSION_FULL

    def __init__(self, session_code: str) -> None:
        super().__init__(session_code, f"Session {session_code} is full")


class SessionAlreadyExistsError(SessionError):
    code = SessionErrorCode.SESSION_ALREADY_EXISTS

    def __init__(self, session_code: str) -> None:
        super().__init__(session_code, f"Session {session_code} already exists")


class InvalidPhaseForJoinError(SessionError):
    """The room has left WAITING and the joiner is not reclaiming a seat."""

    code = SessionErrorCode.INVALID_PHASE_FOR_JOIN

    def __init__(self, session_code: str, phase: str) -> None:
        self.phase = phase
        super().__init__(session_code, f"Session {session_code} is already in phase {phase}")


class UnknownSessionError(SessionError):
    """A game-data frame referenced a code with no live room."""

    code = SessionErrorCode.UNKNOWN_SESSION

    def __init__(self, session_code: str) -> None:
        super().__init__(session_code, f"Unknown session {session_code}")


class PlayerIdTakenError(SessionError):
    code = SessionErrorCode.PLAYER_ID_TAKEN

    def __init__(self, session_code: str, player_id: str) -> None:
        self.player_id = player_id
        super().__init__(session_code, f"Player {player_id} is already connected to {session_code}")


class NotInSessionError(SessionError):
    code = SessionErrorCode.NOT_IN_SESSION

    def __init__(self, session_code: str) -> None:
        super().__init__(session_code, f"You are not seated in session {session_code}")
