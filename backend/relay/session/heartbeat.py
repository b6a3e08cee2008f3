"""Detect dead clients through the application-level heartbeat."""

import asyncio
import contextlib
import time
from collections.abc import Callable

import structlog

from relay.messaging.protocol import ConnectionProtocol

HEARTBEAT_CHECK_INTERVAL = 5.0  # seconds between liveness checks
DEFAULT_HEARTBEAT_TIMEOUT = 60.0

logger = structlog.get_logger()

ConnectionSource = Callable[[], list[ConnectionProtocol]]


class HeartbeatMonitor:
    """Close connections that stopped sending heartbeats.

    Never touches room state: closing the socket makes the transport report a
    disconnect, which then flows through the normal disconnect path.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_HEARTBEAT_TIMEOUT,
        check_interval: float = HEARTBEAT_CHECK_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout
        self._check_interval = check_interval
        self._clock = clock
        self._last_seen: dict[str, float] = {}  # connection_id -> monotonic timestamp
        self._task: asyncio.Task[None] | None = None

    def record_connect(self, connection_id: str) -> None:
        self._last_seen[connection_id] = self._clock()

    def record_disconnect(self, connection_id: str) -> None:
        self._last_seen.pop(connection_id, None)

    def record_heartbeat(self, connection_id: str) -> None:
        if connection_id in self._last_seen:
            self._last_seen[connection_id] = self._clock()

    def stale_connection_ids(self, now: float) -> list[str]:
        return [cid for cid, seen in self._last_seen.items() if now - seen > self._timeout]

    def start(self, get_connections: ConnectionSource) -> None:
        """Start the background check loop. Idempotent."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._check_loop(get_connections))

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def check_once(self, get_connections: ConnectionSource) -> list[str]:
        """Close every stale connection. Returns the ids that were closed."""
        stale = set(self.stale_connection_ids(self._clock()))
        closed = []
        for connection in get_connections():
            if connection.connection_id not in stale:
                continue
            logger.info("heartbeat timeout, disconnecting", connection_id=connection.connection_id)
            self._last_seen.pop(connection.connection_id, None)
            with contextlib.suppress(RuntimeError, OSError, ConnectionError):
                await connection.close(code=1000, reason="heartbeat_timeout")
            closed.append(connection.connection_id)
        return closed

    async def _check_loop(self, get_connections: ConnectionSource) -> None:
        while True:
            await asyncio.sleep(self._check_interval)
            try:
                await self.check_once(get_connections)
            except Exception:
                logger.exception("heartbeat monitor encountered an error")
