"""
Pydantic views of session state for wire messages and the status endpoint.
"""

from pydantic import BaseModel

from relay.session.models import Phase, PlayerRole


class PlayerInfo(BaseModel):
    player_id: str
    role: PlayerRole
    connected: bool
    ready: bool


class SessionInfo(BaseModel):
    code: str
    phase: Phase
    capacity: int
    player_count: int
    connected_count: int
