from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog

from relay.session.errors import (
    InvalidPhaseForJoinError,
    PlayerIdTakenError,
    SessionAlreadyExistsError,
    SessionFullError,
    SessionNotFoundError,
)
from relay.session.expiry import expired_player_ids, is_expired, ttl_exceeded
from relay.session.models import LogicalPlayer, Phase
from relay.session.room import SessionRoom

if TYPE_CHECKING:
    from relay.messaging.protocol import ConnectionProtocol

logger = structlog.get_logger()

DEFAULT_GRACE_SECONDS = 300.0
DEFAULT_TTL_SECONDS = 3600.0


@dataclass
class JoinResult:
    room: SessionRoom
    player: LogicalPlayer
    reconnected: bool = False


@dataclass
class SweepReport:
    """What a sweep changed, so the caller can notify the affected connections."""

    removed_players: list[tuple[SessionRoom, LogicalPlayer]] = field(default_factory=list)
    finished_rooms: list[SessionRoom] = field(default_factory=list)
    deleted_rooms: list[tuple[SessionRoom, str]] = field(default_factory=list)  # (room, reason)

    @property
    def is_empty(self) -> bool:
        return not (self.removed_players or self.finished_rooms or self.deleted_rooms)


class SessionStore:
    """In-memory map of session code -> SessionRoom.

    The store is the only structure shared across rooms. Every operation works
    on a single room and applies its changes without awaiting, so a failed
    create or join never leaves partial state behind.
    """

    def __init__(
        self,
        *,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rooms: dict[str, SessionRoom] = {}
        self._grace_seconds = grace_seconds
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    @property
    def session_count(self) -> int:
        return len(self._rooms)

    def get(self, code: str) -> SessionRoom | None:
        return self._rooms.get(code)

    def rooms(self) -> Iterator[SessionRoom]:
        """Iterate over a snapshot of live rooms. No ordering guarantee."""
        return iter(list(self._rooms.values()))

    def for_each_room(self, fn: Callable[[SessionRoom], None]) -> None:
        for room in self.rooms():
            fn(room)

    def create_session(self, code: str, capacity: int = 2) -> SessionRoom:
        """Create an empty WAITING room. The caller seats itself as host right after."""
        if code in self._rooms:
            raise SessionAlreadyExistsError(code)
        room = SessionRoom(code=code, capacity=capacity, created_at=self.now())
        self._rooms[code] = room
        logger.info("session created", session_code=code, capacity=capacity)
        return room

    def delete_session(self, code: str) -> SessionRoom | None:
        room = self._rooms.pop(code, None)
        if room is not None:
            logger.info("session deleted", session_code=code)
        return room

    def join_session(
        self,
        code: str,
        connection: ConnectionProtocol,
        requested_player_id: str | None = None,
        *,
        lazy_sweep: bool = True,
    ) -> JoinResult:
        """Seat ``connection`` in room ``code``, reclaiming a reserved seat when possible.

        Resolution order:
        1. a requested id naming a disconnected player reconnects that player;
        2. without a requested id, the first disconnected seat is reclaimed;
        3. a WAITING room below capacity seats a new player;
        4. otherwise the join fails with SessionFullError at capacity, or
           InvalidPhaseForJoinError when the room has moved past WAITING.

        Expired seats are released first. Callers that already swept the room
        and announced the result pass ``lazy_sweep=False``.
        """
        room = self._rooms.get(code)
        if room is None:
            raise SessionNotFoundError(code)

        if lazy_sweep:
            report = self.sweep_room(room, self.now())
            if any(deleted is room for deleted, _ in report.deleted_rooms):
                raise SessionNotFoundError(code)

        existing = room.player_for_connection(connection.connection_id)
        if existing is not None:
            raise PlayerIdTakenError(code, existing.player_id)

        if requested_player_id is not None:
            requested = room.get_player(requested_player_id)
            if requested is not None:
                if requested.is_connected:
                    raise PlayerIdTakenError(code, requested_player_id)
                room.mark_reconnected(requested_player_id, connection)
                return JoinResult(room=room, player=requested, reconnected=True)
        else:
            vacant = room.first_disconnected()
            if vacant is not None:
                room.mark_reconnected(vacant.player_id, connection)
                return JoinResult(room=room, player=vacant, reconnected=True)

        if room.phase == Phase.WAITING and not room.is_full:
            player_id = requested_player_id or uuid4().hex[:12]
            player = room.seat(player_id, connection)
            return JoinResult(room=room, player=player)

        if room.is_full:
            raise SessionFullError(code)
        raise InvalidPhaseForJoinError(code, room.phase)

    def sweep_room(self, room: SessionRoom, now: float) -> SweepReport:
        """Apply expiry rules to one room.

        Deletes the room when it is expired; otherwise removes players whose
        grace window elapsed and finishes a BATTLE left with one connected player.
        """
        report = SweepReport()
        if self._rooms.get(room.code) is not room:
            return report

        if is_expired(room, now, grace_seconds=self._grace_seconds, ttl_seconds=self._ttl_seconds):
            reason = "expired" if ttl_exceeded(room, now, self._ttl_seconds) else "abandoned"
            self.delete_session(room.code)
            report.deleted_rooms.append((room, reason))
            return report

        for player_id in expired_player_ids(room, now, self._grace_seconds):
            player = room.remove_player(player_id)
            if player is not None:
                logger.info("reconnect window elapsed, seat released", session_code=room.code, player_id=player_id)
                report.removed_players.append((room, player))
        if report.removed_players and room.is_empty:
            self.delete_session(room.code)
            report.deleted_rooms.append((room, "abandoned"))
            return report

        winner = room.last_player_standing()
        if winner is not None and room.finish(winner):
            report.finished_rooms.append(room)
        return report

    def sweep(self, now: float | None = None) -> SweepReport:
        """Single sweep entry point over every room."""
        if now is None:
            now = self.now()
        report = SweepReport()
        for room in self.rooms():
            room_report = self.sweep_room(room, now)
            report.removed_players.extend(room_report.removed_players)
            report.finished_rooms.extend(room_report.finished_rooms)
            report.deleted_rooms.extend(room_report.deleted_rooms)
        return report
