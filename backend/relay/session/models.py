from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol


class Phase(StrEnum):
    """Coarse room phase. Declaration order is the only allowed direction of travel."""

    WAITING = "waiting"
    SETUP_PLACEMENT = "setup_placement"
    BATTLE = "battle"
    FINISHED = "finished"

    @property
    def rank(self) -> int:
        return _PHASE_RANK[self]


_PHASE_RANK = {phase: rank for rank, phase in enumerate(Phase)}


class PlayerRole(StrEnum):
    HOST = "host"
    GUEST = "guest"


@dataclass
class LogicalPlayer:
    """Stable participant identity inside one room.

    The connection is swapped on reconnect; everything else (role, seat,
    readiness) survives a dropped socket until the grace window runs out.
    """

    player_id: str
    role: PlayerRole
    seat: int
    connection: ConnectionProtocol | None = None
    disconnected_at: float | None = None  # time.monotonic() timestamp, None while connected
    ready: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_connected(self) -> bool:
        return self.connection is not None

    @property
    def connection_id(self) -> str | None:
        return self.connection.connection_id if self.connection is not None else None
