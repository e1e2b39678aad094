from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field

from models import Room


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RoomSummary(BaseModel):
    room_id: str = Field(alias="roomId")
    host: str
    players: int
    online: int
    is_game_active: bool = Field(alias="isGameActive")
    game_mode: str | None = Field(default=None, alias="gameMode")
    called: int

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_room(cls, room_id: str, room: Room) -> "RoomSummary":
        state = room.game_state
        return cls(
            room_id=room_id,
            host=state.host,
            players=len(room.players),
            online=sum(1 for p in room.players.values() if p.is_online),
            is_game_active=state.is_game_active,
            game_mode=state.game_mode,
            called=len(state.called_card_ids),
        )


class ActionResult(BaseModel):
    ok: bool = True
    rooms: List[str] = Field(default_factory=list)
