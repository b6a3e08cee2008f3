"""Routing policy for relayed game-data payloads.

Each entry of the dispatch table is a plain function
``(room, sender_id, payload) -> list[Outbound]``: it applies the payload's
side effect to the room (if any) and returns who should receive what. Nothing
here performs I/O, so the policy is unit-testable without a transport. The
payload dict is forwarded as received and never modified.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from relay.messaging.types import (
    GameDataType,
    GameOverFields,
    PeerInfoFields,
    PhaseChangedMessage,
    PhaseChangeFields,
    ServerEvent,
    TargetFields,
)

if TYPE_CHECKING:
    from relay.session.room import SessionRoom

logger = structlog.get_logger()

# Envelope keys that are never stored as peer metadata.
_ENVELOPE_KEYS = frozenset({"event", "code", "type", "role"})


@dataclass(frozen=True)
class Outbound:
    """A message addressed to logical players (resolved to connections at send time)."""

    message: dict[str, Any]
    recipients: tuple[str, ...]


GameDataHandler = Callable[["SessionRoom", str, dict[str, Any]], list[Outbound]]


def to_others(room: SessionRoom, sender_id: str, message: dict[str, Any]) -> Outbound:
    return Outbound(message=message, recipients=tuple(room.other_player_ids(sender_id)))


def to_all(room: SessionRoom, message: dict[str, Any]) -> Outbound:
    return Outbound(message=message, recipients=tuple(pid for pid in room.seat_order if pid in room.players))


def to_one(player_id: str, message: dict[str, Any]) -> Outbound:
    return Outbound(message=message, recipients=(player_id,))


def phase_message(room: SessionRoom, event: ServerEvent = ServerEvent.PHASE_CHANGED) -> dict[str, Any]:
    return PhaseChangedMessage(
        event=event,
        code=room.code,
        phase=room.phase,
        turn_order=list(room.turn_order),
        current_turn_index=room.current_turn_index,
        winner=room.winner,
    ).model_dump()


def seating_effects(room: SessionRoom) -> list[Outbound]:
    """Announce WAITING -> SETUP_PLACEMENT if the room just filled up.

    Players who readied up while waiting may complete the readiness set at the
    same moment, in which case BATTLE is announced too.
    """
    effects = []
    if room.begin_setup_if_full():
        effects.append(to_all(room, phase_message(room)))
        if room.begin_battle_if_ready():
            effects.append(to_all(room, phase_message(room)))
    return effects


def _handle_peer_info(room: SessionRoom, sender_id: str, payload: dict[str, Any]) -> list[Outbound]:
    fields = PeerInfoFields.model_validate(payload)
    metadata = {k: v for k, v in fields.metadata.items() if k not in _ENVELOPE_KEYS}
    role = fields.role
    if isinstance(role, int):
        # An ordinal seat position is kept as metadata; host and guest stay server-assigned.
        metadata["role"] = role
        role = None
    room.update_metadata(sender_id, metadata, role)
    return [to_others(room, sender_id, payload), *seating_effects(room)]


def _handle_ready(room: SessionRoom, sender_id: str, payload: dict[str, Any]) -> list[Outbound]:
    if not room.set_ready(sender_id):
        return []
    effects = [to_others(room, sender_id, payload)]
    if room.begin_battle_if_ready():
        effects.append(to_all(room, phase_message(room)))
    return effects


def _handle_phase_change(room: SessionRoom, sender_id: str, payload: dict[str, Any]) -> list[Outbound]:
    fields = PhaseChangeFields.model_validate(payload)
    room.apply_phase_override(
        phase=fields.phase,
        turn_order=fields.turn_order,
        current_turn_index=fields.current_turn_index,
    )
    return [to_others(room, sender_id, payload)]


def _resolve_opponent(room: SessionRoom, sender_id: str) -> str | None:
    others = room.other_player_ids(sender_id)
    return others[0] if len(others) == 1 else None


def _handle_attack(room: SessionRoom, sender_id: str, payload: dict[str, Any]) -> list[Outbound]:
    target = TargetFields.model_validate(payload).target or _resolve_opponent(room, sender_id)
    if target is None or target == sender_id or target not in room.players:
        logger.info("dropping targeted action with no valid target", session_code=room.code, target=target)
        return []
    room.record_action(sender_id, target)
    return [to_one(target, payload)]


def _handle_attack_result(room: SessionRoom, sender_id: str, payload: dict[str, Any]) -> list[Outbound]:
    explicit = TargetFields.model_validate(payload).target
    actor = room.take_pending_actor(sender_id)
    target = explicit or actor or _resolve_opponent(room, sender_id)
    if target is None or target == sender_id or target not in room.players:
        logger.info("dropping targeted result with no valid target", session_code=room.code, target=target)
        return []
    return [to_one(target, payload)]


def _handle_advance_turn(room: SessionRoom, sender_id: str, payload: dict[str, Any]) -> list[Outbound]:
    room.advance_turn()
    return [to_others(room, sender_id, payload)]


def _handle_game_over(room: SessionRoom, sender_id: str, payload: dict[str, Any]) -> list[Outbound]:
    room.finish(GameOverFields.model_validate(payload).winner)
    return [to_others(room, sender_id, payload)]


def _relay_to_others(room: SessionRoom, sender_id: str, payload: dict[str, Any]) -> list[Outbound]:
    return [to_others(room, sender_id, payload)]


GAME_DATA_HANDLERS: dict[GameDataType, GameDataHandler] = {
    GameDataType.PEER_INFO: _handle_peer_info,
    GameDataType.READY: _handle_ready,
    GameDataType.PHASE_CHANGE: _handle_phase_change,
    GameDataType.ATTACK: _handle_attack,
    GameDataType.ATTACK_RESULT: _handle_attack_result,
    GameDataType.ADVANCE_TURN: _handle_advance_turn,
    GameDataType.GAME_OVER: _handle_game_over,
}


def dispatch_game_data(room: SessionRoom, sender_id: str, payload: dict[str, Any]) -> list[Outbound]:
    """Apply a game-data payload from ``sender_id`` and return the deliveries it causes.

    Raises pydantic.ValidationError (before touching the room) when a field the
    relay reads has the wrong shape.
    """
    try:
        data_type = GameDataType(payload.get("type"))
    except ValueError:
        return _relay_to_others(room, sender_id, payload)
    return GAME_DATA_HANDLERS[data_type](room, sender_id, payload)
