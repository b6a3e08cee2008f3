"""Admission control for inbound WebSocket frames."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from relay.server.settings import RelayServerSettings


class TokenBucket:
    """Allows ``rate`` frames per second on average and up to ``burst`` at once.

    The bucket starts full and refills continuously.
    """

    def __init__(self, rate: float, burst: int, clock: Callable[[], float] = time.monotonic) -> None:
        if rate <= 0 or burst < 1:
            raise ValueError(f"rate must be positive and burst at least 1, got rate={rate} burst={burst}")
        self._rate = rate
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._refilled_at = clock()

    @property
    def tokens(self) -> float:
        return self._tokens

    def consume(self) -> bool:
        now = self._clock()
        self._tokens = min(self._burst, self._tokens + (now - self._refilled_at) * self._rate)
        self._refilled_at = now
        if self._tokens < 1.0:
            return False
        self._tokens -= 1.0
        return True


@dataclass(frozen=True)
class InboundLimits:
    rate: float = 20.0
    burst: int = 40
    max_decode_errors: int = 5

    @classmethod
    def from_settings(cls, settings: RelayServerSettings) -> InboundLimits:
        return cls(
            rate=settings.ws_rate_limit,
            burst=settings.ws_rate_burst,
            max_decode_errors=settings.max_decode_errors,
        )


class FrameGate:
    """Per-socket admission state.

    Undecodable frames count as strikes and are never charged to the bucket;
    a decodable frame clears the strikes and then needs a token.
    """

    def __init__(self, limits: InboundLimits, clock: Callable[[], float] = time.monotonic) -> None:
        self._bucket = TokenBucket(limits.rate, limits.burst, clock)
        self._max_decode_errors = limits.max_decode_errors
        self.decode_errors = 0

    def strike(self) -> bool:
        """Record an undecodable frame. True once the socket should be closed."""
        self.decode_errors += 1
        return self.decode_errors >= self._max_decode_errors

    def admit(self) -> bool:
        self.decode_errors = 0
        return self._bucket.consume()
