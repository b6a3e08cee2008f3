from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from relay.session.models import Phase, PlayerRole
from relay.session.types import PlayerInfo

_CODE_FIELD = Field(min_length=1, max_length=32, pattern=r"^[a-zA-Z0-9_-]+$")
_PLAYER_ID_FIELD = Field(default=None, min_length=1, max_length=64, pattern=r"^[a-zA-Z0-9_.-]+$")


class ClientEvent(StrEnum):
    CREATE_SESSION = "create-session"
    JOIN_SESSION = "join-session"
    LEAVE_SESSION = "leave-session"
    GAME_DATA = "game-data"
    HEARTBEAT = "heartbeat"


class ServerEvent(StrEnum):
    SESSION_CREATED = "session-created"
    SESSION_JOINED = "session-joined"
    SESSION_CLOSED = "session-closed"
    PEER_JOINED = "peer-joined"
    PEER_RECONNECTED = "peer-reconnected"
    PEER_LEFT = "peer-left"
    OPPONENT_DISCONNECTED = "opponent-disconnected"
    PHASE_CHANGED = "phase-changed"
    PHASE_SYNC = "phase-sync"
    GAME_DATA = "game-data"
    ERROR = "error"
    HEARTBEAT_ACK = "heartbeat-ack"


class GameDataType(StrEnum):
    """Payload types the relay inspects. Any other type is broadcast as-is."""

    PEER_INFO = "peer-info"
    READY = "ready"
    PHASE_CHANGE = "phase-change"
    ATTACK = "attack"
    ATTACK_RESULT = "attack-result"
    ADVANCE_TURN = "advance-turn"
    GAME_OVER = "game-over"


class SessionErrorCode(StrEnum):
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_FULL = "session_full"
    SESSION_ALREADY_EXISTS = "session_already_exists"
    INVALID_PHASE_FOR_JOIN = "invalid_phase_for_join"
    UNKNOWN_SESSION = "unknown_session"
    PLAYER_ID_TAKEN = "player_id_taken"
    NOT_IN_SESSION = "not_in_session"
    SERVER_AT_CAPACITY = "server_at_capacity"
    INVALID_MESSAGE = "invalid_message"
    RATE_LIMITED = "rate_limited"


# --- Client -> server ---


class CreateSessionMessage(BaseModel):
    event: Literal[ClientEvent.CREATE_SESSION] = ClientEvent.CREATE_SESSION
    code: str = _CODE_FIELD
    capacity: int | None = Field(default=None, ge=2)
    player_id: str | None = _PLAYER_ID_FIELD


class JoinSessionMessage(BaseModel):
    event: Literal[ClientEvent.JOIN_SESSION] = ClientEvent.JOIN_SESSION
    code: str = _CODE_FIELD
    player_id: str | None = _PLAYER_ID_FIELD


class LeaveSessionMessage(BaseModel):
    event: Literal[ClientEvent.LEAVE_SESSION] = ClientEvent.LEAVE_SESSION
    code: str = _CODE_FIELD


class GameDataMessage(BaseModel):
    """Envelope of a relayed payload. Fields beyond code and type are opaque."""

    model_config = ConfigDict(extra="allow")

    event: Literal[ClientEvent.GAME_DATA] = ClientEvent.GAME_DATA
    code: str = _CODE_FIELD
    type: str = Field(min_length=1, max_length=64)


class HeartbeatMessage(BaseModel):
    event: Literal[ClientEvent.HEARTBEAT] = ClientEvent.HEARTBEAT


ClientMessage = Annotated[
    CreateSessionMessage | JoinSessionMessage | LeaveSessionMessage | GameDataMessage | HeartbeatMessage,
    Field(discriminator="event"),
]

_client_message_adapter = TypeAdapter(ClientMessage)


def parse_client_message(data: dict[str, Any]) -> ClientMessage:
    return _client_message_adapter.validate_python(data)


# --- Fields the relay reads from game-data payloads ---


class PeerInfoFields(BaseModel):
    """``peer-info``: optional role claim; every other field is stored as metadata.

    Variants with more than two seats send an ordinal position as the role.
    """

    model_config = ConfigDict(extra="allow")

    role: PlayerRole | int | None = None

    @property
    def metadata(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class PhaseChangeFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    phase: Phase | None = None
    turn_order: list[str] | None = Field(default=None, max_length=64)
    current_turn_index: int | None = Field(default=None, ge=0)


class TargetFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    target: str | None = None


class GameOverFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    winner: str | None = None


# --- Server -> client ---


class SessionCreatedMessage(BaseModel):
    event: Literal[ServerEvent.SESSION_CREATED] = ServerEvent.SESSION_CREATED
    code: str
    player_id: str
    role: PlayerRole
    capacity: int


class SessionJoinedMessage(BaseModel):
    event: Literal[ServerEvent.SESSION_JOINED] = ServerEvent.SESSION_JOINED
    code: str
    player_id: str
    role: PlayerRole
    phase: Phase
    capacity: int
    reconnected: bool
    players: list[PlayerInfo]


class SessionClosedMessage(BaseModel):
    event: Literal[ServerEvent.SESSION_CLOSED] = ServerEvent.SESSION_CLOSED
    code: str
    reason: str


class PeerJoinedMessage(BaseModel):
    event: Literal[ServerEvent.PEER_JOINED] = ServerEvent.PEER_JOINED
    player_id: str
    role: PlayerRole


class PeerReconnectedMessage(BaseModel):
    event: Literal[ServerEvent.PEER_RECONNECTED] = ServerEvent.PEER_RECONNECTED
    player_id: str


class PeerLeftMessage(BaseModel):
    event: Literal[ServerEvent.PEER_LEFT] = ServerEvent.PEER_LEFT
    player_id: str


class OpponentDisconnectedMessage(BaseModel):
    event: Literal[ServerEvent.OPPONENT_DISCONNECTED] = ServerEvent.OPPONENT_DISCONNECTED
    player_id: str


class PhaseChangedMessage(BaseModel):
    """Broadcast to the whole room when the server moves a room to a new phase."""

    event: Literal[ServerEvent.PHASE_CHANGED, ServerEvent.PHASE_SYNC] = ServerEvent.PHASE_CHANGED
    code: str
    phase: Phase
    turn_order: list[str]
    current_turn_index: int
    winner: str | None = None


class ErrorMessage(BaseModel):
    event: Literal[ServerEvent.ERROR] = ServerEvent.ERROR
    code: SessionErrorCode
    message: str


class HeartbeatAckMessage(BaseModel):
    event: Literal[ServerEvent.HEARTBEAT_ACK] = ServerEvent.HEARTBEAT_ACK
