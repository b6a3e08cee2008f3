"""Delivery of outbound effects to the connections currently holding each seat."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterable

    from relay.messaging.protocol import ConnectionProtocol
    from relay.session.dispatch import Outbound
    from relay.session.room import SessionRoom

logger = structlog.get_logger()


def resolve_deliveries(
    room: SessionRoom,
    effects: Iterable[Outbound],
) -> list[tuple[ConnectionProtocol, dict[str, Any]]]:
    """Map each effect's logical recipients to their current connections.

    Runs synchronously right after the room mutation, so the recipient set
    reflects the committed state even if the room changes while sending.
    Recipients without a live connection are dropped.
    """
    deliveries = []
    for effect in effects:
        for player_id in effect.recipients:
            player = room.players.get(player_id)
            if player is None or player.connection is None:
                logger.debug("recipient not connected, dropping", session_code=room.code, player_id=player_id)
                continue
            deliveries.append((player.connection, effect.message))
    return deliveries


async def send_all(deliveries: Iterable[tuple[ConnectionProtocol, dict[str, Any]]]) -> None:
    for connection, message in deliveries:
        with contextlib.suppress(RuntimeError, OSError, ConnectionError):
            await connection.send_message(message)


async def deliver(room: SessionRoom, effects: Iterable[Outbound]) -> None:
    await send_all(resolve_deliveries(room, effects))
