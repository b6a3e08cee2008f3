"""Transport-neutral connection interface used by the session layer."""

from abc import ABC, abstractmethod
from typing import Any

from relay.messaging.encoder import decode, encode


class ConnectionProtocol(ABC):
    """
    One physical client connection.

    A connection id is unique per socket and changes on every reconnect; the
    session layer maps it to a stable logical player. Message handling can be
    exercised without a real WebSocket by implementing this interface.
    """

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Unique identifier for this connection."""
        ...

    @abstractmethod
    async def send_bytes(self, data: bytes) -> None: ...

    @abstractmethod
    async def receive_bytes(self) -> bytes: ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    async def send_message(self, data: dict[str, Any]) -> None:
        await self.send_bytes(encode(data))

    async def receive_message(self) -> dict[str, Any]:
        raw = await self.receive_bytes()
        return decode(raw)
