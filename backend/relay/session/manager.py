from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from relay.messaging.types import (
    ErrorMessage,
    HeartbeatAckMessage,
    OpponentDisconnectedMessage,
    PeerJoinedMessage,
    PeerLeftMessage,
    PeerReconnectedMessage,
    ServerEvent,
    SessionClosedMessage,
    SessionCreatedMessage,
    SessionErrorCode,
    SessionJoinedMessage,
)
from relay.session.broadcast import deliver, resolve_deliveries, send_all
from relay.session.connections import ConnectionRegistry
from relay.session.dispatch import dispatch_game_data, phase_message, seating_effects, to_all, to_others
from relay.session.errors import NotInSessionError, SessionError, UnknownSessionError
from relay.session.heartbeat import DEFAULT_HEARTBEAT_TIMEOUT, HeartbeatMonitor
from relay.session.models import Phase
from relay.session.store import DEFAULT_GRACE_SECONDS, DEFAULT_TTL_SECONDS, SessionStore
from relay.session.types import SessionInfo

if TYPE_CHECKING:
    from collections.abc import Callable

    from relay.messaging.protocol import ConnectionProtocol
    from relay.session.dispatch import Outbound
    from relay.session.room import SessionRoom
    from relay.session.store import JoinResult, SweepReport

logger = structlog.get_logger()

DEFAULT_SWEEP_INTERVAL = 30.0  # seconds between expiry sweeps


class SessionManager:
    """Process-scoped owner of every session.

    Translates transport events into store/room operations and sends the
    resulting messages. Room mutations are synchronous and complete before the
    first send, so each inbound event is applied atomically on the event loop
    and broadcasts always reflect committed state.
    """

    def __init__(
        self,
        *,
        default_capacity: int = 2,
        max_room_capacity: int = 8,
        max_sessions: int = 100,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        heartbeat_timeout: float = DEFAULT_HEARTBEAT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_capacity = default_capacity
        self._max_room_capacity = max_room_capacity
        self._max_sessions = max_sessions
        self._sweep_interval = sweep_interval
        self._store = SessionStore(grace_seconds=grace_seconds, ttl_seconds=ttl_seconds, clock=clock)
        self._registry = ConnectionRegistry()
        self._heartbeat = HeartbeatMonitor(timeout=heartbeat_timeout, clock=clock)
        self._sweeper_task: asyncio.Task[None] | None = None

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def heartbeat(self) -> HeartbeatMonitor:
        return self._heartbeat

    @property
    def session_count(self) -> int:
        return self._store.session_count

    @property
    def connection_count(self) -> int:
        return self._registry.connection_count

    def get_session(self, code: str) -> SessionRoom | None:
        return self._store.get(code)

    def get_sessions_info(self) -> list[SessionInfo]:
        return [
            SessionInfo(
                code=room.code,
                phase=room.phase,
                capacity=room.capacity,
                player_count=room.player_count,
                connected_count=len(room.connected_players),
            )
            for room in self._store.rooms()
        ]

    # --- Connection lifecycle ---

    def register_connection(self, connection: ConnectionProtocol) -> None:
        self._registry.on_connect(connection)
        self._heartbeat.record_connect(connection.connection_id)

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        """Reserve the seats held by a dropped connection and tell the other players."""
        self._heartbeat.record_disconnect(connection.connection_id)
        affected = self._registry.on_disconnect(connection, self._store, self._store.now())
        for room, player in affected:
            message = OpponentDisconnectedMessage(player_id=player.player_id).model_dump()
            await deliver(room, [to_others(room, player.player_id, message)])

    async def handle_heartbeat(self, connection: ConnectionProtocol) -> None:
        self._heartbeat.record_heartbeat(connection.connection_id)
        await connection.send_message(HeartbeatAckMessage().model_dump())

    # --- Session operations ---

    async def create_session(
        self,
        connection: ConnectionProtocol,
        code: str,
        capacity: int | None = None,
        player_id: str | None = None,
    ) -> None:
        """Create a room and seat the caller as its host."""
        structlog.contextvars.bind_contextvars(session_code=code)
        capacity = capacity or self._default_capacity
        if capacity > self._max_room_capacity:
            await self._send_error(
                connection,
                SessionErrorCode.INVALID_MESSAGE,
                f"capacity must be at most {self._max_room_capacity}",
            )
            return

        # A stale room holding this code may be reclaimable.
        await self._sweep_code(code)
        if self._store.get(code) is None and self._store.session_count >= self._max_sessions:
            await self._send_error(connection, SessionErrorCode.SERVER_AT_CAPACITY, "Server at capacity")
            return

        try:
            room = self._store.create_session(code, capacity)
        except SessionError as e:
            await self._send_session_error(connection, e)
            return

        try:
            result = self._store.join_session(code, connection, player_id, lazy_sweep=False)
        except SessionError as e:
            self._store.delete_session(code)
            await self._send_session_error(connection, e)
            return

        self._registry.bind(connection.connection_id, code)
        structlog.contextvars.bind_contextvars(player_id=result.player.player_id)
        logger.info("host seated", capacity=room.capacity)
        await connection.send_message(
            SessionCreatedMessage(
                code=code,
                player_id=result.player.player_id,
                role=result.player.role,
                capacity=room.capacity,
            ).model_dump(),
        )

    async def join_session(
        self,
        connection: ConnectionProtocol,
        code: str,
        player_id: str | None = None,
    ) -> None:
        """Seat the caller in an existing room, or hand it back a reserved seat."""
        structlog.contextvars.bind_contextvars(session_code=code)
        # Expired seats are released and announced here, so the store does not sweep again.
        await self._sweep_code(code)
        try:
            result = self._store.join_session(code, connection, player_id, lazy_sweep=False)
        except SessionError as e:
            await self._send_session_error(connection, e)
            return

        self._registry.bind(connection.connection_id, code)
        structlog.contextvars.bind_contextvars(player_id=result.player.player_id)
        if result.reconnected:
            await self._announce_reconnect(connection, result)
        else:
            await self._announce_join(connection, result)

    async def _announce_join(self, connection: ConnectionProtocol, result: JoinResult) -> None:
        room, player = result.room, result.player
        logger.info("player joined", role=player.role, player_count=room.player_count)
        peer_joined = PeerJoinedMessage(player_id=player.player_id, role=player.role).model_dump()
        effects: list[Outbound] = [to_others(room, player.player_id, peer_joined), *seating_effects(room)]
        joined = self._joined_message(room, result)
        deliveries = resolve_deliveries(room, effects)
        await connection.send_message(joined)
        await send_all(deliveries)

    async def _announce_reconnect(self, connection: ConnectionProtocol, result: JoinResult) -> None:
        room, player = result.room, result.player
        logger.info("player reconnected", phase=room.phase)
        joined = self._joined_message(room, result)
        deliveries = resolve_deliveries(
            room,
            [to_others(room, player.player_id, PeerReconnectedMessage(player_id=player.player_id).model_dump())],
        )
        await connection.send_message(joined)
        # The only case where a past transition is replayed to a single connection.
        if room.phase != Phase.WAITING:
            await connection.send_message(phase_message(room, ServerEvent.PHASE_SYNC))
        await send_all(deliveries)

    @staticmethod
    def _joined_message(room: SessionRoom, result: JoinResult) -> dict[str, Any]:
        return SessionJoinedMessage(
            code=room.code,
            player_id=result.player.player_id,
            role=result.player.role,
            phase=room.phase,
            capacity=room.capacity,
            reconnected=result.reconnected,
            players=room.get_player_info(),
        ).model_dump()

    async def leave_session(self, connection: ConnectionProtocol, code: str) -> None:
        """Give up a seat explicitly. Unlike a disconnect, the seat is freed at once."""
        structlog.contextvars.bind_contextvars(session_code=code)
        room = self._store.get(code)
        if room is None:
            await self._send_session_error(connection, UnknownSessionError(code))
            return
        player = room.player_for_connection(connection.connection_id)
        if player is None:
            await self._send_session_error(connection, NotInSessionError(code))
            return

        room.remove_player(player.player_id)
        self._registry.unbind(connection.connection_id, code)
        logger.info("player left", player_id=player.player_id)

        effects: list[Outbound] = []
        if room.is_empty:
            self._store.delete_session(code)
        else:
            effects.append(to_all(room, PeerLeftMessage(player_id=player.player_id).model_dump()))
            winner = room.last_player_standing()
            if winner is not None and room.finish(winner):
                effects.append(to_all(room, phase_message(room)))
        deliveries = resolve_deliveries(room, effects)
        with contextlib.suppress(RuntimeError, OSError, ConnectionError):
            await connection.send_message(SessionClosedMessage(code=code, reason="left").model_dump())
        await send_all(deliveries)

    async def handle_game_data(self, connection: ConnectionProtocol, code: str, payload: dict[str, Any]) -> None:
        """Route a game-data frame within room ``code``."""
        structlog.contextvars.bind_contextvars(session_code=code)
        room = self._store.get(code)
        if room is None:
            await self._send_session_error(connection, UnknownSessionError(code))
            return
        sender = room.player_for_connection(connection.connection_id)
        if sender is None:
            await self._send_session_error(connection, NotInSessionError(code))
            return

        structlog.contextvars.bind_contextvars(player_id=sender.player_id)
        try:
            effects = dispatch_game_data(room, sender.player_id, payload)
        except ValidationError as e:
            logger.warning("invalid game-data fields", data_type=payload.get("type"), error=str(e))
            await self._send_error(connection, SessionErrorCode.INVALID_MESSAGE, str(e))
            return
        await deliver(room, effects)

    # --- Expiry sweeps ---

    async def sweep(self) -> SweepReport:
        """Run one expiry pass over every room and notify whoever is affected."""
        report = self._store.sweep()
        await self._notify_sweep(report)
        return report

    async def _sweep_code(self, code: str) -> None:
        room = self._store.get(code)
        if room is not None:
            await self._notify_sweep(self._store.sweep_room(room, self._store.now()))

    async def _notify_sweep(self, report: SweepReport) -> None:
        if report.is_empty:
            return
        deliveries = []
        for room, player in report.removed_players:
            peer_left = PeerLeftMessage(player_id=player.player_id).model_dump()
            deliveries.extend(resolve_deliveries(room, [to_all(room, peer_left)]))
        for room in report.finished_rooms:
            deliveries.extend(resolve_deliveries(room, [to_all(room, phase_message(room))]))
        for room, reason in report.deleted_rooms:
            closed = SessionClosedMessage(code=room.code, reason=reason).model_dump()
            for player in room.connected_players:
                self._registry.unbind(player.connection_id, room.code)
            deliveries.extend(resolve_deliveries(room, [to_all(room, closed)]))
        await send_all(deliveries)

    def start(self) -> None:
        """Start the sweeper and heartbeat tasks. Idempotent."""
        self._heartbeat.start(self._registry.connections)
        if self._sweeper_task is not None and not self._sweeper_task.done():
            return
        self._sweeper_task = asyncio.create_task(self._sweeper_loop())

    async def stop(self) -> None:
        if self._sweeper_task is not None:
            self._sweeper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper_task
            self._sweeper_task = None
        await self._heartbeat.stop()

    async def _sweeper_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("session sweeper encountered an error")

    # --- Errors ---

    async def _send_session_error(self, connection: ConnectionProtocol, error: SessionError) -> None:
        await self._send_error(connection, error.code, str(error))

    async def _send_error(self, connection: ConnectionProtocol, code: SessionErrorCode, message: str) -> None:
        logger.warning("session error sent to client", error_code=code, error_message=message)
        await connection.send_message(ErrorMessage(code=code, message=message).model_dump())
