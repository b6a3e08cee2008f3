from unittest.mock import AsyncMock

from relay.messaging.router import MessageRouter
from relay.tests.helpers import connect, start_two_player_session


class TestMessageRouter:
    async def test_invalid_frame_returns_error(self, message_router, session_manager):
        conn = connect(session_manager)

        await message_router.handle_message(conn, {"event": "create-session"})

        assert conn.last()["event"] == "error"
        assert conn.last()["code"] == "invalid_message"
        assert session_manager.session_count == 0

    async def test_create_then_join(self, message_router, session_manager):
        host = connect(session_manager)
        guest = connect(session_manager)

        await message_router.handle_message(host, {"event": "create-session", "code": "ABC1", "player_id": "h"})
        await message_router.handle_message(guest, {"event": "join-session", "code": "ABC1"})

        assert host.sent_messages[0]["event"] == "session-created"
        assert guest.sent_messages[0]["event"] == "session-joined"
        assert session_manager.get_session("ABC1").player_count == 2

    async def test_game_data_is_relayed_verbatim(self, message_router, session_manager):
        host, guest = await start_two_player_session(session_manager)
        frame = {"event": "game-data", "code": "ABC1", "type": "taunt", "text": "You sank nothing", "extra": [1, 2]}

        await message_router.handle_message(host, frame)

        assert guest.sent_messages == [frame]

    async def test_leave_session(self, message_router, session_manager):
        host, guest = await start_two_player_session(session_manager)

        await message_router.handle_message(guest, {"event": "leave-session", "code": "ABC1"})

        assert guest.last()["event"] == "session-closed"

    async def test_heartbeat(self, message_router, session_manager):
        conn = connect(session_manager)
        await message_router.handle_message(conn, {"event": "heartbeat"})
        assert conn.last() == {"event": "heartbeat-ack"}

    async def test_unexpected_error_in_game_data_is_contained(self, session_manager):
        session_manager.handle_game_data = AsyncMock(side_effect=KeyError("boom"))
        router = MessageRouter(session_manager)
        conn = connect(session_manager)

        await router.handle_message(conn, {"event": "game-data", "code": "ABC1", "type": "attack"})

        session_manager.handle_game_data.assert_awaited_once()

    async def test_connect_and_disconnect_hooks(self, message_router, session_manager, mock_connection):
        await message_router.handle_connect(mock_connection)
        assert session_manager.connection_count == 1

        await message_router.handle_disconnect(mock_connection)
        assert session_manager.connection_count == 0
