from pydantic import BaseModel, ConfigDict, Field, field_serializer
from typing import Optional, List, Dict, Any, FrozenSet, Iterable
from enum import Enum
from datetime import datetime, timezone
import time

from models.errors import UnknownPlayerError


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


class Phase(str, Enum):
    LOBBY = "LOBBY"
    SETTING = "SETTING"            # turn player is choosing the theme
    GAME = "GAME"                  # theme fixed, players placing guesses
    DISCUSSION = "DISCUSSION"      # one-shot re-adjustment after everyone placed
    RESULT = "RESULT"
    FINAL_RESULT = "FINAL_RESULT"


class Genre(str, Enum):
    NORMAL = "NORMAL"
    ABNORMAL = "ABNORMAL"


class GameMode(str, Enum):
    AUTO = "AUTO"          # two candidates drawn from the theme catalog
    ORIGINAL = "ORIGINAL"  # turn player types a custom theme


SECRET_MIN = 1
SECRET_MAX = 100

ROOKIE_TITLE = "Rookie"

# Colours are unique within a room, so the palette size also caps the roster.
COLOR_PALETTE: List[str] = [
    "#FF5252",  # red
    "#448AFF",  # blue
    "#66BB6A",  # green
    "#FFD740",  # yellow
    "#E040FB",  # purple
    "#8D6E63",  # brown
    "#FFFFFF",  # white
    "#9E9E9E",  # grey
    "#C6FF00",  # lime
    "#FF4081",  # pink
    "#18FFFF",  # cyan
]
MAX_PLAYERS = len(COLOR_PALETTE)

# guesser_id → {target_id → guessed value}
GuessTable = Dict[str, Dict[str, int]]


class Theme(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    min_label: str   # label of 1
    max_label: str   # label of 100
    genre: Genre = Genre.NORMAL


class SpecialAward(BaseModel):
    name: str
    description: str
    bonus: int


class Player(BaseModel):
    id: str
    name: str
    color: str
    secret_number: int = 0
    score: int = 0                  # latest displayed score (round score or final sum)
    score_history: List[int] = []   # raw round gains, one per completed round
    cumulative_score: int = 0       # round gains + every award/rank bonus
    title: str = ROOKIE_TITLE
    is_host: bool = False
    is_npc: bool = False
    is_ready: bool = False
    awards: List[SpecialAward] = []  # latest scoring pass only
    joined_at: datetime = Field(default_factory=_utcnow)

    def to_public(self, reveal_secret: bool = False) -> Dict[str, Any]:
        """Representation for other players — secret number hidden until results."""
        data = self.model_dump(mode="json")
        if not reveal_secret:
            data["secret_number"] = None
        return data


class GameSettings(BaseModel):
    game_mode: GameMode = GameMode.AUTO
    is_discussion_enabled: bool = False
    timer_seconds: int = Field(default=180, ge=10, le=600)
    include_normal_themes: bool = True
    include_abnormal_themes: bool = False


class RoundResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    player_id: str
    secret_number: int
    guesses: Dict[str, int]   # guesser_id → guess received
    incoming_score: int
    outgoing_score: int
    score_gain: int


class RoundRecord(BaseModel):
    """One completed round in game_history.

    Wraps the result list because Firestore rejects arrays nested directly
    inside arrays.
    """
    model_config = ConfigDict(frozen=True)

    round_index: int
    results: List[RoundResult]


class ThemeChoice(BaseModel):
    player_id: str
    theme: Theme


class SessionState(BaseModel):
    """The shared room document. Local mode keeps exactly the same shape in memory."""

    room_id: Optional[str] = None
    host_id: Optional[str] = None
    phase: Phase = Phase.LOBBY
    players: Dict[str, Player] = {}
    settings: GameSettings = Field(default_factory=GameSettings)
    game_number: int = 0            # bumped on every start; distinguishes rounds across games
    round_count: int = 0
    current_theme: Optional[Theme] = None
    theme_candidates: List[Theme] = []
    used_theme_texts: FrozenSet[str] = frozenset()
    current_turn_player_id: Optional[str] = None
    past_turn_player_ids: FrozenSet[str] = frozenset()
    pending_theme: Optional[ThemeChoice] = None
    shared_memos: Dict[str, str] = {}
    all_guesses: GuessTable = {}
    discussion_voted: Dict[str, bool] = {}
    round_results: List[RoundResult] = []
    game_history: List[RoundRecord] = []
    last_updated: float = 0.0

    @field_serializer("used_theme_texts", "past_turn_player_ids")
    def _serialize_id_set(self, value: FrozenSet[str]) -> List[str]:
        return sorted(value)

    # ── Lookups ───────────────────────────────────────────────────────────────

    def ordered_players(self) -> List[Player]:
        """Roster in join order (document maps carry no order of their own)."""
        return sorted(self.players.values(), key=lambda p: (p.joined_at, p.id))

    def player(self, player_id: str) -> Player:
        try:
            return self.players[player_id]
        except KeyError:
            raise UnknownPlayerError(player_id) from None

    def is_host(self, player_id: Optional[str]) -> bool:
        return player_id is not None and player_id == self.host_id

    # ── Updates ───────────────────────────────────────────────────────────────

    def apply(self, updates: Dict[str, Any]) -> "SessionState":
        """Return a copy with top-level fields replaced. Values must already be typed."""
        return self.model_copy(update={**updates, "last_updated": time.time()})

    # ── Replication boundary ──────────────────────────────────────────────────

    def to_document(self, fields: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        include = set(fields) if fields is not None else None
        data = self.model_dump(mode="json", include=include)
        data.pop("room_id", None)
        return data

    def serialize_updates(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Document-shaped payload for just the given top-level fields."""
        return self.apply(updates).to_document(set(updates) | {"last_updated"})

    @classmethod
    def from_document(cls, room_id: str, data: Dict[str, Any]) -> "SessionState":
        return cls.model_validate({**data, "room_id": room_id})


# ── WebSocket message shapes ──────────────────────────────────────────────────

class WSMessage(BaseModel):
    type: str
    data: Dict[str, Any] = {}


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateRoomRequest(BaseModel):
    host_name: str
    room_id: Optional[str] = None   # 4-digit code chosen by the host; generated if omitted


class CreateLocalRequest(BaseModel):
    player_name: str


class JoinRoomRequest(BaseModel):
    player_name: str


class RoomResponse(BaseModel):
    room_id: str
    player_id: str


class StartGameRequest(BaseModel):
    settings: GameSettings = Field(default_factory=GameSettings)


class SelectThemeRequest(BaseModel):
    theme: Theme


class SubmitVotesRequest(BaseModel):
    guesses: Dict[str, int]
    memo: str = ""


class MemoRequest(BaseModel):
    text: str


class ColorRequest(BaseModel):
    color: str


class AddNpcRequest(BaseModel):
    count: int = Field(default=2, ge=1, le=MAX_PLAYERS - 1)
