from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from relay.messaging.types import (
    CreateSessionMessage,
    ErrorMessage,
    GameDataMessage,
    HeartbeatMessage,
    JoinSessionMessage,
    LeaveSessionMessage,
    SessionErrorCode,
    parse_client_message,
)

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol
    from relay.session.manager import SessionManager

logger = structlog.get_logger()


class MessageRouter:
    """
    Routes decoded client frames to the session manager.

    This class contains no transport code and can be tested
    without real WebSocket connections.
    """

    def __init__(self, session_manager: SessionManager) -> None:
        self._session_manager = session_manager

    async def handle_message(
        self,
        connection: ConnectionProtocol,
        raw_message: dict[str, Any],
    ) -> None:
        try:
            message = parse_client_message(raw_message)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning("invalid message", connection_id=connection.connection_id, error=str(e))
            await connection.send_message(
                ErrorMessage(code=SessionErrorCode.INVALID_MESSAGE, message=str(e)).model_dump(),
            )
            return

        if isinstance(message, CreateSessionMessage):
            await self._session_manager.create_session(
                connection,
                message.code,
                capacity=message.capacity,
                player_id=message.player_id,
            )
        elif isinstance(message, JoinSessionMessage):
            await self._session_manager.join_session(connection, message.code, player_id=message.player_id)
        elif isinstance(message, LeaveSessionMessage):
            await self._session_manager.leave_session(connection, message.code)
        elif isinstance(message, GameDataMessage):
            await self._handle_game_data(connection, message, raw_message)
        elif isinstance(message, HeartbeatMessage):
            await self._session_manager.handle_heartbeat(connection)

    async def _handle_game_data(
        self,
        connection: ConnectionProtocol,
        message: GameDataMessage,
        raw_message: dict[str, Any],
    ) -> None:
        """Relay the frame as received; the parsed envelope is only used for its code."""
        try:
            await self._session_manager.handle_game_data(connection, message.code, raw_message)
        except Exception:
            logger.exception("error relaying game data", connection_id=connection.connection_id)

    async def handle_connect(self, connection: ConnectionProtocol) -> None:
        self._session_manager.register_connection(connection)

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        await self._session_manager.handle_disconnect(connection)
