"""
Game error hierarchy.

GameError and its subclasses are rule/validation failures detected before any
write: the caller gets a message string and nothing is mutated. They subclass
ValueError so the router layer can keep treating them like the other
"bad input" errors it maps to 4xx responses.

UnknownPlayerError is different in kind: acting on a player id that is not in
the roster is a caller bug and is fatal at the point of use.
"""
from typing import Optional


class GameError(ValueError):
    """A rejected action. `code` is a stable identifier for clients."""

    default_code = "INVALID_ACTION"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class HostOnlyError(GameError):
    """A full-state write or host action attempted from a non-host replica."""

    default_code = "HOST_ONLY"


class InvalidPhaseError(GameError):
    """The action is not allowed in the session's current phase."""

    default_code = "WRONG_PHASE"


class UnknownPlayerError(LookupError):
    def __init__(self, player_id: str):
        self.player_id = player_id
        super().__init__(f"Player {player_id} is not in this room")


class RoomNotFoundError(LookupError):
    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(f"Room {room_id} not found")
