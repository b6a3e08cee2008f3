"""Registry of live transport connections and the rooms they are seated in."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol
    from relay.session.models import LogicalPlayer
    from relay.session.room import SessionRoom
    from relay.session.store import SessionStore

logger = structlog.get_logger()


class ConnectionRegistry:
    """Track live connections and a reverse index connection_id -> session codes.

    The reverse index only narrows the search on disconnect; each candidate
    room is re-checked through its players' ``connection`` field, so a stale
    index entry can never detach the wrong player.
    """

    def __init__(self) -> None:
        self._connections: dict[str, ConnectionProtocol] = {}
        self._codes: dict[str, set[str]] = {}  # connection_id -> session codes

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def connections(self) -> list[ConnectionProtocol]:
        return list(self._connections.values())

    def get(self, connection_id: str) -> ConnectionProtocol | None:
        return self._connections.get(connection_id)

    def on_connect(self, connection: ConnectionProtocol) -> str:
        """Record a new connection. Touches no room."""
        self._connections[connection.connection_id] = connection
        self._codes.setdefault(connection.connection_id, set())
        return connection.connection_id

    def bind(self, connection_id: str, code: str) -> None:
        self._codes.setdefault(connection_id, set()).add(code)

    def unbind(self, connection_id: str, code: str) -> None:
        codes = self._codes.get(connection_id)
        if codes is not None:
            codes.discard(code)

    def codes_for(self, connection_id: str) -> set[str]:
        return set(self._codes.get(connection_id, ()))

    def on_disconnect(
        self,
        connection: ConnectionProtocol,
        store: SessionStore,
        now: float,
    ) -> list[tuple[SessionRoom, LogicalPlayer]]:
        """Forget the connection and mark every player it held as disconnected.

        Returns the (room, player) pairs that were affected, one per room.
        """
        connection_id = connection.connection_id
        self._connections.pop(connection_id, None)
        codes = self._codes.pop(connection_id, set())

        affected: list[tuple[SessionRoom, LogicalPlayer]] = []
        for code in sorted(codes):
            room = store.get(code)
            if room is None:
                continue
            player = room.player_for_connection(connection_id)
            if player is None:
                continue
            if room.mark_disconnected(player.player_id, now):
                logger.info("player disconnected", session_code=code, player_id=player.player_id)
                affected.append((room, player))
        return affected
