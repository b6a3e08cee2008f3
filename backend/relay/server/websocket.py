from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect

from relay.messaging.encoder import DecodeError, decode
from relay.messaging.protocol import ConnectionProtocol
from relay.messaging.types import ErrorMessage, SessionErrorCode
from relay.server.rate_limit import FrameGate, InboundLimits

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from relay.messaging.router import MessageRouter

CLOSE_TOO_MANY_DECODE_ERRORS = 4004


class WebSocketConnection(ConnectionProtocol):
    """Starlette WebSocket seen through the relay's ConnectionProtocol."""

    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self._websocket = websocket
        self._connection_id = connection_id or str(uuid4())

    @property
    def connection_id(self) -> str:
        return self._connection_id

    async def send_bytes(self, data: bytes) -> None:
        try:
            await self._websocket.send_bytes(data)
        except WebSocketDisconnect:
            raise ConnectionError("WebSocket already disconnected") from None

    async def receive_bytes(self) -> bytes:
        try:
            return await self._websocket.receive_bytes()
        except WebSocketDisconnect:
            raise ConnectionError("WebSocket already disconnected") from None

    async def close(self, code: int = 1000, reason: str = "") -> None:
        # The heartbeat monitor may close a socket the client already dropped.
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await self._websocket.close(code=code, reason=reason)


async def _frames(connection: WebSocketConnection) -> AsyncIterator[bytes]:
    """Raw frames until the peer goes away."""
    while True:
        try:
            yield await connection.receive_bytes()
        except (ConnectionError, RuntimeError):
            return


async def _send_error(connection: ConnectionProtocol, code: SessionErrorCode, message: str) -> None:
    await connection.send_message(ErrorMessage(code=code, message=message).model_dump())


async def websocket_endpoint(
    websocket: WebSocket,
    router: MessageRouter,
    limits: InboundLimits | None = None,
) -> None:
    """Serve one relay socket: decode, admit and route each frame, then release its seats."""
    await websocket.accept()

    connection = WebSocketConnection(websocket)
    log = logger.bind(connection_id=connection.connection_id)
    log.info("websocket connected")
    await router.handle_connect(connection)
    gate = FrameGate(limits or InboundLimits())

    try:
        async for raw in _frames(connection):
            try:
                data = decode(raw)
            except DecodeError as e:
                limit_reached = gate.strike()
                log.warning("undecodable frame", error=str(e), strikes=gate.decode_errors)
                await _send_error(connection, SessionErrorCode.INVALID_MESSAGE, str(e))
                if limit_reached:
                    log.info("too many undecodable frames, closing")
                    await connection.close(code=CLOSE_TOO_MANY_DECODE_ERRORS, reason="too_many_decode_errors")
                    return
                continue

            if not gate.admit():
                await _send_error(connection, SessionErrorCode.RATE_LIMITED, "Too many messages")
                continue
            await router.handle_message(connection, data)
    except (ConnectionError, RuntimeError):
        # A send to a socket that closed mid-frame.
        pass
    finally:
        log.info("websocket disconnected")
        await router.handle_disconnect(connection)
        structlog.contextvars.clear_contextvars()
