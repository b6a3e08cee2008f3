"""Session room aggregate and its phase state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from relay.session.models import LogicalPlayer, Phase, PlayerRole
from relay.session.types import PlayerInfo

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol

logger = structlog.get_logger()


@dataclass
class SessionRoom:
    """One game instance, keyed by its client-chosen code.

    Phase only moves forward: WAITING -> SETUP_PLACEMENT -> BATTLE -> FINISHED.
    Seating order and turn order are explicit lists; ``players`` is only a
    lookup table and its iteration order is never used for sequencing.
    """

    code: str
    capacity: int = 2
    created_at: float = 0.0
    phase: Phase = Phase.WAITING
    players: dict[str, LogicalPlayer] = field(default_factory=dict)  # player_id -> LogicalPlayer
    seat_order: list[str] = field(default_factory=list)
    turn_order: list[str] = field(default_factory=list)
    current_turn_index: int = 0
    winner: str | None = None
    # defender player_id -> actor player_id of the last targeted action, so the
    # result can be routed back without the client naming the actor.
    pending_actions: dict[str, str] = field(default_factory=dict)
    _next_seat: int = field(default=0, repr=False)

    def __post_init__(self) -> None:
        if self.capacity < 2:  # noqa: PLR2004
            raise ValueError(f"capacity must be at least 2, got {self.capacity}")

    # --- Queries ---

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def is_empty(self) -> bool:
        return not self.players

    @property
    def is_full(self) -> bool:
        return self.player_count >= self.capacity

    @property
    def all_ready(self) -> bool:
        return self.is_full and all(p.ready for p in self.players.values())

    @property
    def connected_players(self) -> list[LogicalPlayer]:
        return [p for p in self.ordered_players() if p.is_connected]

    @property
    def current_player_id(self) -> str | None:
        if not self.turn_order:
            return None
        return self.turn_order[self.current_turn_index]

    def ordered_players(self) -> list[LogicalPlayer]:
        return [self.players[pid] for pid in self.seat_order if pid in self.players]

    def get_player(self, player_id: str) -> LogicalPlayer | None:
        return self.players.get(player_id)

    def player_for_connection(self, connection_id: str) -> LogicalPlayer | None:
        for player in self.players.values():
            if player.connection_id == connection_id:
                return player
        return None

    def first_disconnected(self) -> LogicalPlayer | None:
        for player in self.ordered_players():
            if not player.is_connected:
                return player
        return None

    def other_player_ids(self, player_id: str) -> list[str]:
        return [pid for pid in self.seat_order if pid != player_id and pid in self.players]

    def get_player_info(self) -> list[PlayerInfo]:
        return [
            PlayerInfo(player_id=p.player_id, role=p.role, connected=p.is_connected, ready=p.ready)
            for p in self.ordered_players()
        ]

    # --- Membership ---

    def seat(self, player_id: str, connection: ConnectionProtocol) -> LogicalPlayer:
        """Create a new player bound to ``connection``.

        The first player seated (or the first after the host left) becomes the host.
        """
        if player_id in self.players:
            raise ValueError(f"player {player_id} is already seated in {self.code}")
        if self.is_full:
            raise ValueError(f"room {self.code} is at capacity {self.capacity}")

        has_host = any(p.role == PlayerRole.HOST for p in self.players.values())
        player = LogicalPlayer(
            player_id=player_id,
            role=PlayerRole.GUEST if has_host else PlayerRole.HOST,
            seat=self._next_seat,
            connection=connection,
        )
        self._next_seat += 1
        self.players[player_id] = player
        self.seat_order.append(player_id)
        return player

    def mark_disconnected(self, player_id: str, now: float) -> bool:
        """Drop the player's connection and start its grace window. Phase is untouched."""
        player = self.players.get(player_id)
        if player is None or not player.is_connected:
            return False
        player.connection = None
        player.disconnected_at = now
        return True

    def mark_reconnected(self, player_id: str, connection: ConnectionProtocol) -> LogicalPlayer:
        player = self.players[player_id]
        player.connection = connection
        player.disconnected_at = None
        return player

    def remove_player(self, player_id: str) -> LogicalPlayer | None:
        """Free a seat for good (grace window elapsed or explicit leave)."""
        player = self.players.pop(player_id, None)
        if player is None:
            return None

        if player_id in self.seat_order:
            self.seat_order.remove(player_id)

        if player_id in self.turn_order:
            position = self.turn_order.index(player_id)
            self.turn_order.remove(player_id)
            if position < self.current_turn_index:
                self.current_turn_index -= 1
        if self.current_turn_index >= len(self.turn_order):
            self.current_turn_index = 0

        self.pending_actions.pop(player_id, None)
        for defender, actor in list(self.pending_actions.items()):
            if actor == player_id:
                del self.pending_actions[defender]

        if player.role == PlayerRole.HOST:
            successor = next(iter(self.ordered_players()), None)
            if successor is not None:
                successor.role = PlayerRole.HOST
        return player

    def update_metadata(self, player_id: str, metadata: dict[str, Any], role: PlayerRole | None = None) -> None:
        player = self.players.get(player_id)
        if player is None:
            return
        player.metadata.update(metadata)
        if role is not None:
            player.role = role

    # --- Phase transitions ---

    def begin_setup_if_full(self) -> bool:
        """WAITING -> SETUP_PLACEMENT once the last seat is taken. Fires at most once."""
        if self.phase != Phase.WAITING or not self.is_full:
            return False
        self.phase = Phase.SETUP_PLACEMENT
        logger.info("room entered setup", session_code=self.code, players=list(self.seat_order))
        return True

    def set_ready(self, player_id: str) -> bool:
        """Mark a player ready. Returns False when nothing changed."""
        player = self.players.get(player_id)
        if player is None or player.ready:
            return False
        if self.phase not in (Phase.WAITING, Phase.SETUP_PLACEMENT):
            return False
        player.ready = True
        return True

    def begin_battle_if_ready(self) -> bool:
        """SETUP_PLACEMENT -> BATTLE when the readiness set is complete. Fires at most once."""
        if self.phase != Phase.SETUP_PLACEMENT or not self.all_ready:
            return False
        self.phase = Phase.BATTLE
        if not self.turn_order:
            self.turn_order = list(self.seat_order)
            self.current_turn_index = 0
        logger.info("room entered battle", session_code=self.code, turn_order=list(self.turn_order))
        return True

    def advance_turn(self) -> str | None:
        """Move to the next seat in turn order. Returns the new current player id."""
        if not self.turn_order:
            return None
        self.current_turn_index = (self.current_turn_index + 1) % len(self.turn_order)
        return self.current_player_id

    def apply_phase_override(
        self,
        phase: Phase | None = None,
        turn_order: list[str] | None = None,
        current_turn_index: int | None = None,
    ) -> bool:
        """Apply a client-authoritative phase/turn update.

        Backward phase moves and turn orders naming unseated players are ignored;
        an out-of-range index is reset to 0. Returns True if anything changed.
        """
        changed = False
        if phase is not None and phase != self.phase:
            if phase.rank < self.phase.rank:
                logger.warning("ignoring phase regression", session_code=self.code, current=self.phase, requested=phase)
            else:
                self.phase = phase
                changed = True

        if turn_order is not None:
            unknown = [pid for pid in turn_order if pid not in self.players]
            if unknown or len(set(turn_order)) != len(turn_order):
                logger.warning("ignoring turn order with unknown or repeated players", session_code=self.code)
            else:
                self.turn_order = list(turn_order)
                changed = True
        if self.phase == Phase.BATTLE and not self.turn_order:
            self.turn_order = list(self.seat_order)

        if current_turn_index is not None and current_turn_index != self.current_turn_index:
            self.current_turn_index = current_turn_index
            changed = True
        if self.current_turn_index >= max(len(self.turn_order), 1):
            self.current_turn_index = 0
        return changed

    def finish(self, winner: str | None = None) -> bool:
        """Move to the terminal phase. Returns False if already finished."""
        if self.phase == Phase.FINISHED:
            return False
        self.phase = Phase.FINISHED
        self.winner = winner if winner in self.players else None
        logger.info("room finished", session_code=self.code, winner=self.winner)
        return True

    def last_player_standing(self) -> str | None:
        """Return the sole remaining connected player during BATTLE, if that is the case."""
        if self.phase != Phase.BATTLE or self.player_count != 1:
            return None
        (player,) = self.players.values()
        return player.player_id if player.is_connected else None

    # --- Targeted routing bookkeeping ---

    def record_action(self, actor_id: str, target_id: str) -> None:
        self.pending_actions[target_id] = actor_id

    def take_pending_actor(self, defender_id: str) -> str | None:
        return self.pending_actions.pop(defender_id, None)
