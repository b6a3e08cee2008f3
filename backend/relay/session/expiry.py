"""Expiry predicates for rooms and reserved seats.

Both functions are pure: callers pass ``now`` from the same monotonic clock
that stamped ``created_at`` and ``disconnected_at``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from relay.session.room import SessionRoom


def expired_player_ids(room: SessionRoom, now: float, grace_seconds: float) -> list[str]:
    """Players, in seat order, whose reconnection grace window has elapsed."""
    expired = []
    for player in room.ordered_players():
        if player.disconnected_at is not None and now - player.disconnected_at > grace_seconds:
            expired.append(player.player_id)
    return expired


def ttl_exceeded(room: SessionRoom, now: float, ttl_seconds: float) -> bool:
    return now - room.created_at > ttl_seconds


def is_expired(room: SessionRoom, now: float, *, grace_seconds: float, ttl_seconds: float) -> bool:
    """True if the room has outlived its TTL or every player is gone past the grace window.

    A room with no players yet (its host is being seated) only expires by TTL.
    """
    if ttl_exceeded(room, now, ttl_seconds):
        return True
    if room.is_empty:
        return False
    return len(expired_player_ids(room, now, grace_seconds)) == room.player_count
