from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

GameMode = Literal["full", "horizontal", "vertical", "diagonal", "corners", "square"]


class Card(BaseModel):
    id: int
    name: str
    image_ref: str = Field(alias="imageRef")
    description: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Player(BaseModel):
    name: str
    is_online: bool = Field(default=True, alias="isOnline")
    last_seen: int = Field(default=0, alias="lastSeen")  # epoch ms
    board: List[Card] = Field(default_factory=list)
    marked_indices: List[int] = Field(default_factory=list, alias="markedIndices")
    first_marked: Optional[int] = Field(default=None, alias="firstMarked")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("marked_indices")
    @classmethod
    def unique_indices(cls, value: List[int]) -> List[int]:
        seen: List[int] = []
        for idx in value:
            if not 0 <= idx < 16:
                raise ValueError("marked index out of range")
            if idx not in seen:
                seen.append(idx)
        return seen

    def clear_marks(self) -> None:
        self.marked_indices = []
        self.first_marked = None


class RankingEntry(BaseModel):
    name: str
    marked_count: int = Field(alias="markedCount")

    model_config = ConfigDict(populate_by_name=True)


class GameState(BaseModel):
    host: str = ""
    is_game_active: bool = Field(default=False, alias="isGameActive")
    winner: Optional[str] = None
    game_mode: Optional[GameMode] = Field(default=None, alias="gameMode")
    deck: List[int] = Field(default_factory=list)
    called_card_ids: List[int] = Field(default_factory=list, alias="calledCardIds")
    timestamp: int = 0  # epoch ms
    final_ranking: Optional[List[RankingEntry]] = Field(default=None, alias="finalRanking")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("game_mode", mode="before")
    @classmethod
    def empty_mode_is_none(cls, value):
        return value or None

    @field_validator("host", mode="before")
    @classmethod
    def none_host_is_empty(cls, value):
        return value or ""

    @model_validator(mode="after")
    def call_history_is_deck_prefix(self) -> "GameState":
        called = self.called_card_ids
        if len(set(called)) != len(called):
            raise ValueError("calledCardIds contains duplicates")
        if called != self.deck[: len(called)]:
            raise ValueError("calledCardIds must be a prefix of deck")
        return self

    def remaining_card_ids(self) -> List[int]:
        return self.deck[len(self.called_card_ids):]

    @property
    def phase(self) -> Literal["idle", "active", "finished"]:
        if self.is_game_active:
            return "active"
        if self.winner is not None or self.final_ranking is not None:
            return "finished"
        return "idle"


class Room(BaseModel):
    players: Dict[str, Player] = Field(default_factory=dict)
    game_state: GameState = Field(default_factory=GameState, alias="gameState")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def player_key(self, name: str) -> Optional[str]:
        """Stored key matching ``name`` case-insensitively."""
        wanted = name.casefold()
        for key in self.players:
            if key.casefold() == wanted:
                return key
        return None

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------- results ----------
class JoinFailure(str, Enum):
    NAME_IN_USE = "name_in_use"
    ROOM_FULL = "full"


class ClaimFailure(str, Enum):
    INVALID_PATTERN = "invalid_pattern"
    ALREADY_WINNER = "already_winner"
    ROOM_NOT_FOUND = "room_not_found"
    PLAYER_NOT_FOUND = "player_not_found"
    GAME_NOT_ACTIVE = "game_not_active"
    INVALID_PAYLOAD = "invalid_payload"


class JoinResult(BaseModel):
    added: bool
    reason: Optional[JoinFailure] = None
    player_name: Optional[str] = None
    reconnected: bool = False
    room: Optional[Room] = None


class ClaimResult(BaseModel):
    success: bool
    error: Optional[ClaimFailure] = None
    room: Optional[Room] = None


class PatchResult(BaseModel):
    room: Room
    marks_cleared: bool = False


# ---------- requests ----------
class RoomPatch(BaseModel):
    players: Optional[Dict[str, Dict[str, Any]]] = None
    game_state: Optional[Dict[str, Any]] = Field(default=None, alias="gameState")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ClaimPayload(BaseModel):
    board: List[Any] = Field(default_factory=list)
    marked_indices: List[int] = Field(default_factory=list, alias="markedIndices")
    game_mode: Optional[str] = Field(default=None, alias="gameMode")
    pivot_cell: Optional[int] = Field(default=None, alias="pivotCell")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class JoinRoomRequest(BaseModel):
    room_id: str = Field(alias="roomId", min_length=1, max_length=64)
    player_name: str = Field(alias="playerName", min_length=1, max_length=40)
    player_data: Dict[str, Any] = Field(default_factory=dict, alias="playerData")

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


class RoomRequest(BaseModel):
    room_id: str = Field(alias="roomId", min_length=1, max_length=64)
    player_name: Optional[str] = Field(default=None, alias="playerName")

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


class UpdateRoomRequest(RoomRequest):
    payload: RoomPatch


class StartGameLoopRequest(RoomRequest):
    game_mode: Optional[GameMode] = Field(default=None, alias="gameMode")

    @field_validator("game_mode", mode="before")
    @classmethod
    def empty_mode_is_none(cls, value):
        return value or None


class ClaimWinRequest(RoomRequest):
    payload: ClaimPayload
    request_id: Optional[str] = Field(default=None, alias="requestId")


# ---------- typed commands ----------
class StartGame(BaseModel):
    type: Literal["startGame"] = "startGame"
    game_mode: Optional[GameMode] = Field(default=None, alias="gameMode")

    model_config = ConfigDict(populate_by_name=True)


class StopGame(BaseModel):
    type: Literal["stopGame"] = "stopGame"


class MarkCell(BaseModel):
    type: Literal["markCell"] = "markCell"
    index: int = Field(ge=0, lt=16)


class UnmarkCell(BaseModel):
    type: Literal["unmarkCell"] = "unmarkCell"
    index: int = Field(ge=0, lt=16)


class RegenerateBoard(BaseModel):
    type: Literal["regenerateBoard"] = "regenerateBoard"


class SetMode(BaseModel):
    type: Literal["setMode"] = "setMode"
    game_mode: GameMode = Field(alias="gameMode")

    model_config = ConfigDict(populate_by_name=True)


class ResetGame(BaseModel):
    type: Literal["resetGame"] = "resetGame"


Command = Annotated[
    Union[StartGame, StopGame, MarkCell, UnmarkCell, RegenerateBoard, SetMode, ResetGame],
    Field(discriminator="type"),
]


class CommandRequest(RoomRequest):
    command: Command
