"""Builders shared by the session and router tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from relay.messaging.encoder import decode, encode
from relay.session.room import SessionRoom
from relay.tests.mocks import MockConnection

if TYPE_CHECKING:
    from relay.session.manager import SessionManager


def make_room(code: str = "ABC1", capacity: int = 2, player_ids: tuple[str, ...] = ("h", "g")) -> SessionRoom:
    """A room with one connected MockConnection per player id, in seat order."""
    room = SessionRoom(code=code, capacity=capacity)
    for player_id in player_ids:
        room.seat(player_id, MockConnection(f"conn-{player_id}"))
    return room


def game_data(code: str, data_type: str, **fields: Any) -> dict[str, Any]:
    return {"event": "game-data", "code": code, "type": data_type, **fields}


def connect(manager: SessionManager, connection_id: str | None = None) -> MockConnection:
    connection = MockConnection(connection_id)
    manager.register_connection(connection)
    return connection


async def start_two_player_session(
    manager: SessionManager,
    code: str = "ABC1",
) -> tuple[MockConnection, MockConnection]:
    """Create ``code`` as host ``h`` and join as guest ``g``. Both outboxes are cleared."""
    host = connect(manager, "conn-h")
    guest = connect(manager, "conn-g")
    await manager.create_session(host, code, player_id="h")
    await manager.join_session(guest, code, player_id="g")
    host.clear()
    guest.clear()
    return host, guest


async def start_battle(manager: SessionManager, code: str = "ABC1") -> tuple[MockConnection, MockConnection]:
    host, guest = await start_two_player_session(manager, code)
    await manager.handle_game_data(host, code, game_data(code, "ready"))
    await manager.handle_game_data(guest, code, game_data(code, "ready"))
    host.clear()
    guest.clear()
    return host, guest


def send_ws(ws, data: dict) -> None:
    """Send a MessagePack-encoded frame over a test WebSocket."""
    ws.send_bytes(encode(data))


def recv_ws(ws) -> dict:
    """Receive and decode a MessagePack frame from a test WebSocket."""
    return decode(ws.receive_bytes())
