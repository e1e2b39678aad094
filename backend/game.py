from __future__ import annotations

import asyncio
import logging
import random
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from pydantic import ValidationError

from catalog import board_from_payload, generate_board, shuffled_deck
from database import RoomStore
from models import (
    ClaimFailure,
    ClaimPayload,
    ClaimResult,
    GameState,
    JoinFailure,
    JoinResult,
    MarkCell,
    PatchResult,
    Player,
    RankingEntry,
    RegenerateBoard,
    ResetGame,
    Room,
    RoomPatch,
    SetMode,
    StartGame,
    StopGame,
    UnmarkCell,
)
from patterns import check_win

logger = logging.getLogger(__name__)

MAX_PLAYERS = 100


class RoomError(ValueError):
    """Validation, conflict or precondition failure for a room operation."""

    def __init__(self, code: str, message: Optional[str] = None):
        super().__init__(message or code)
        self.code = code


def now_ms() -> int:
    return int(time.time() * 1000)


class RoomLocks:
    """Per-room FIFO queue: one room-scoped operation at a time, in arrival order."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, room_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(room_id, asyncio.Lock())
        self._users[room_id] = self._users.get(room_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[room_id] -= 1
            if self._users[room_id] == 0:
                self._users.pop(room_id, None)
                self._locks.pop(room_id, None)

    def __len__(self) -> int:
        return len(self._locks)


# ----------------------------------------------------------------------
# Pure helpers on a loaded room
# ----------------------------------------------------------------------
def compute_ranking(room: Room) -> List[RankingEntry]:
    """Players by mark count, descending; ties keep join order."""
    entries = [
        RankingEntry(name=name, markedCount=len(player.marked_indices))
        for name, player in room.players.items()
    ]
    return sorted(entries, key=lambda entry: -entry.marked_count)


def repair_host(room: Room) -> None:
    state = room.game_state
    if state.host and state.host in room.players:
        return
    state.host = next(iter(room.players), "")


def clear_marks(room: Room) -> None:
    for player in room.players.values():
        player.clear_marks()


def _validate_player(data: Dict[str, Any]) -> Player:
    try:
        return Player.model_validate(data)
    except ValidationError as exc:
        raise RoomError("invalid_payload", str(exc)) from exc


def finish_game(room: Room, winner: Optional[str], timestamp: int) -> None:
    """Freeze the ranking from the current marks, then wipe them."""
    state = room.game_state
    state.final_ranking = compute_ranking(room)
    state.winner = winner
    state.is_game_active = False
    state.timestamp = timestamp
    clear_marks(room)


class RoomSessionManager:
    def __init__(
        self,
        store: RoomStore,
        scheduler=None,
        *,
        max_players: int = MAX_PLAYERS,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.scheduler = scheduler
        self.locks = RoomLocks()
        self.max_players = max_players
        self.rng = rng
        self.clock = clock

    def room_lock(self, room_id: str):
        return self.locks.hold(room_id)

    def _cancel_calling(self, room_id: str) -> None:
        if self.scheduler is not None:
            self.scheduler.cancel(room_id)

    async def _load(self, room_id: str) -> Room:
        room = await self.store.get(room_id)
        if room is None:
            raise RoomError("room_not_found")
        return room

    async def _save_or_delete(self, room_id: str, room: Room) -> Optional[Room]:
        if room.players:
            await self.store.put(room_id, room)
            return room
        await self.store.delete(room_id)
        self._cancel_calling(room_id)
        logger.info("[Rooms] Room %s is empty, deleted", room_id)
        return None

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------
    async def get_room(self, room_id: str) -> Optional[Room]:
        return await self.store.get(room_id)

    async def list_rooms(self):
        return await self.store.list_all()

    async def join(self, room_id: str, player_name: str, player_data: Optional[Dict[str, Any]] = None) -> JoinResult:
        payload = dict(player_data or {})
        async with self.room_lock(room_id):
            now = self.clock()
            room = await self.store.get(room_id)
            created = room is None
            if room is None:
                room = Room(gameState=GameState(timestamp=now))

            key = room.player_key(player_name)
            reconnected = False
            if key is not None:
                existing = room.players[key]
                if existing.is_online:
                    return JoinResult(added=False, reason=JoinFailure.NAME_IN_USE)
                merged = {**existing.model_dump(by_alias=True), **payload}
                # The server-issued board survives a reconnection
                merged.update(name=key, isOnline=True, lastSeen=now, board=existing.model_dump(by_alias=True)["board"])
                room.players[key] = _validate_player(merged)
                reconnected = True
            else:
                if len(room.players) >= self.max_players:
                    return JoinResult(added=False, reason=JoinFailure.ROOM_FULL)
                key = player_name
                board = board_from_payload(payload.pop("board", None)) or generate_board(self.rng)
                payload.pop("markedIndices", None)
                payload.pop("firstMarked", None)
                room.players[key] = _validate_player(
                    {**payload, "name": key, "isOnline": True, "lastSeen": now, "board": board}
                )

            if not room.game_state.host:
                room.game_state.host = key
            await self.store.put(room_id, room)

        if created:
            logger.info("[Rooms] Room %s created by %s", room_id, key)
        logger.info("[Rooms] %s %s room %s", key, "rejoined" if reconnected else "joined", room_id)
        return JoinResult(added=True, player_name=key, reconnected=reconnected, room=room)

    async def leave(self, room_id: str, player_name: str) -> Optional[Room]:
        async with self.room_lock(room_id):
            room = await self.store.get(room_id)
            if room is None:
                return None
            key = room.player_key(player_name)
            if key is None:
                return room
            del room.players[key]
            repair_host(room)
            logger.info("[Rooms] %s left room %s (host=%s)", key, room_id, room.game_state.host or "-")
            return await self._save_or_delete(room_id, room)

    async def _set_presence(self, room_id: str, player_name: str, online: bool) -> Optional[Room]:
        async with self.room_lock(room_id):
            room = await self.store.get(room_id)
            if room is None:
                return None
            key = room.player_key(player_name)
            if key is None:
                return None
            player = room.players[key]
            player.is_online = online
            player.last_seen = self.clock()
            await self.store.put(room_id, room)
            return room

    async def mark_active(self, room_id: str, player_name: str) -> Optional[Room]:
        return await self._set_presence(room_id, player_name, True)

    async def mark_offline(self, room_id: str, player_name: str) -> Optional[Room]:
        return await self._set_presence(room_id, player_name, False)

    async def mark_idle_offline(self, offline_after_ms: int) -> Dict[str, Room]:
        """Flag online players whose heartbeat is older than ``offline_after_ms``."""
        changed: Dict[str, Room] = {}
        for room_id, snapshot in await self.store.list_all():
            now = self.clock()
            if not any(p.is_online and now - p.last_seen >= offline_after_ms for p in snapshot.players.values()):
                continue
            async with self.room_lock(room_id):
                room = await self.store.get(room_id)
                if room is None:
                    continue
                now = self.clock()
                idle = [p for p in room.players.values() if p.is_online and now - p.last_seen >= offline_after_ms]
                if not idle:
                    continue
                for player in idle:
                    player.is_online = False
                await self.store.put(room_id, room)
                changed[room_id] = room
                logger.info("[Presence] Room %s: %s went idle", room_id, ", ".join(p.name for p in idle))
        return changed

    async def cleanup_stale(self, timeout_ms: int) -> Dict[str, Optional[Room]]:
        """Reap offline players not seen for ``timeout_ms``.

        Returns the changed rooms; a deleted room maps to ``None``.
        """
        changed: Dict[str, Optional[Room]] = {}
        for room_id, snapshot in await self.store.list_all():
            now = self.clock()
            if not any(not p.is_online and now - p.last_seen >= timeout_ms for p in snapshot.players.values()):
                continue
            async with self.room_lock(room_id):
                room = await self.store.get(room_id)
                if room is None:
                    continue
                now = self.clock()
                stale = [
                    key for key, p in room.players.items()
                    if not p.is_online and now - p.last_seen >= timeout_ms
                ]
                if not stale:
                    continue
                for key in stale:
                    del room.players[key]
                repair_host(room)
                logger.info("[Presence] Room %s: removed stale players %s", room_id, ", ".join(stale))
                changed[room_id] = await self._save_or_delete(room_id, room)
        return changed

    async def delete_room(self, room_id: str) -> bool:
        async with self.room_lock(room_id):
            room = await self.store.get(room_id)
            self._cancel_calling(room_id)
            if room is None:
                return False
            await self.store.delete(room_id)
        logger.info("[Rooms] Room %s deleted", room_id)
        return True

    async def clear_all_players(self) -> List[str]:
        """Drop every player from every room; emptied rooms are deleted."""
        cleared: List[str] = []
        for room_id, _ in await self.store.list_all():
            async with self.room_lock(room_id):
                if await self.store.get(room_id) is None:
                    continue
                await self.store.delete(room_id)
                self._cancel_calling(room_id)
                cleared.append(room_id)
        logger.info("[Rooms] Cleared players from %d rooms", len(cleared))
        return cleared

    # ------------------------------------------------------------------
    # Patches
    # ------------------------------------------------------------------
    async def apply_patch(self, room_id: str, patch: RoomPatch) -> PatchResult:
        async with self.room_lock(room_id):
            room = await self._load(room_id)
            was_active = room.game_state.is_game_active
            had_winner = room.game_state.winner is not None
            current = room.dump()

            players = current["players"]
            for name, fields in (patch.players or {}).items():
                if not isinstance(fields, dict):
                    raise RoomError("invalid_payload", f"player {name} must be an object")
                # Patches only touch joined players; new names go through join
                key = room.player_key(name)
                if key is None:
                    raise RoomError("player_not_found", f"{name} is not in room {room_id}")
                players[key] = {**players[key], **fields, "name": key}

            game_state = {**current["gameState"], **(patch.game_state or {})}
            try:
                updated = Room.model_validate({"players": players, "gameState": game_state})
            except ValidationError as exc:
                raise RoomError("invalid_payload", str(exc)) from exc

            state = updated.game_state
            if state.is_game_active and not was_active:
                raise RoomError("start_game_required", "Games start through startGameLoop or the startGame command")
            if state.winner is not None and state.is_game_active:
                state.is_game_active = False
            ended = (was_active and not state.is_game_active) or (state.winner is not None and not had_winner)
            if ended:
                finish_game(updated, state.winner, self.clock())
            else:
                state.timestamp = self.clock()
            repair_host(updated)
            await self.store.put(room_id, updated)

        if ended:
            self._cancel_calling(room_id)
            logger.info("[Game] Room %s ended by patch (winner=%s)", room_id, updated.game_state.winner)
        return PatchResult(room=updated, marks_cleared=ended)

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------
    async def claim_win(self, room_id: str, player_name: str, claim: ClaimPayload) -> ClaimResult:
        async with self.room_lock(room_id):
            room = await self.store.get(room_id)
            if room is None:
                return ClaimResult(success=False, error=ClaimFailure.ROOM_NOT_FOUND)
            key = room.player_key(player_name)
            if key is None:
                return ClaimResult(success=False, error=ClaimFailure.PLAYER_NOT_FOUND)
            state = room.game_state
            if state.winner is not None:
                return ClaimResult(success=False, error=ClaimFailure.ALREADY_WINNER)
            if not state.is_game_active:
                return ClaimResult(success=False, error=ClaimFailure.GAME_NOT_ACTIVE)

            player = room.players[key]
            if not self._claim_is_valid(player, state, claim):
                logger.info("[Game] Room %s: rejected claim by %s (%s)", room_id, key, state.game_mode)
                return ClaimResult(success=False, error=ClaimFailure.INVALID_PATTERN)

            player.marked_indices = sorted(set(claim.marked_indices))
            finish_game(room, key, self.clock())
            await self.store.put(room_id, room)

        self._cancel_calling(room_id)
        logger.info("[Game] Room %s: %s wins (%s)", room_id, key, room.game_state.game_mode)
        return ClaimResult(success=True, room=room)

    @staticmethod
    def _claim_is_valid(player: Player, state: GameState, claim: ClaimPayload) -> bool:
        if claim.game_mode and claim.game_mode != state.game_mode:
            return False
        claimed_ids = [getattr(card, "id", None) for card in board_from_payload(claim.board) or []]
        if claimed_ids != [card.id for card in player.board]:
            return False
        # The recorded first mark wins over whatever pivot the client sends
        pivot = player.first_marked if player.first_marked is not None else claim.pivot_cell
        return check_win(player.board, claim.marked_indices, state.game_mode, pivot, state.called_card_ids)

    # ------------------------------------------------------------------
    # Typed commands
    # ------------------------------------------------------------------
    async def execute(self, room_id: str, actor: str, command) -> Room:
        if isinstance(command, StartGame):
            room, _ = await self.start_game(room_id, actor, command.game_mode)
            return room
        if isinstance(command, StopGame):
            return await self.stop_game(room_id, actor)
        if isinstance(command, ResetGame):
            return await self.reset_game(room_id, actor)
        if isinstance(command, SetMode):
            return await self.set_mode(room_id, actor, command.game_mode)
        if isinstance(command, MarkCell):
            return await self.mark_cell(room_id, actor, command.index)
        if isinstance(command, UnmarkCell):
            return await self.unmark_cell(room_id, actor, command.index)
        if isinstance(command, RegenerateBoard):
            return await self.regenerate_board(room_id, actor)
        raise RoomError("unknown_command")

    @staticmethod
    def require_host(room: Room, actor: Optional[str]) -> None:
        if actor is None:
            return
        if room.player_key(actor) != room.game_state.host:
            raise RoomError("not_host")

    @staticmethod
    def _require_player(room: Room, actor: str) -> Player:
        key = room.player_key(actor)
        if key is None:
            raise RoomError("player_not_found")
        return room.players[key]

    async def start_game(self, room_id: str, actor: Optional[str], game_mode: Optional[str] = None):
        """Idle -> Active. Returns ``(room, started)``; already active is a no-op."""
        async with self.room_lock(room_id):
            room = await self._load(room_id)
            self.require_host(room, actor)
            state = room.game_state
            if state.is_game_active:
                return room, False
            if state.winner is not None:
                raise RoomError("game_finished", "Reset the game before starting a new one")
            mode = game_mode or state.game_mode
            if not mode:
                raise RoomError("mode_required", "Choose a game mode before starting")

            state.game_mode = mode
            state.deck = shuffled_deck(self.rng)
            state.called_card_ids = []
            state.winner = None
            state.final_ranking = None
            state.is_game_active = True
            state.timestamp = self.clock()
            clear_marks(room)
            await self.store.put(room_id, room)
        logger.info("[Game] Room %s started (mode=%s)", room_id, mode)
        return room, True

    async def stop_game(self, room_id: str, actor: Optional[str]) -> Room:
        async with self.room_lock(room_id):
            room = await self._load(room_id)
            self.require_host(room, actor)
            if not room.game_state.is_game_active:
                return room
            finish_game(room, None, self.clock())
            await self.store.put(room_id, room)
        self._cancel_calling(room_id)
        logger.info("[Game] Room %s stopped by host", room_id)
        return room

    async def reset_game(self, room_id: str, actor: Optional[str]) -> Room:
        async with self.room_lock(room_id):
            room = await self._load(room_id)
            self.require_host(room, actor)
            state = room.game_state
            if state.is_game_active:
                raise RoomError("game_active")
            for player in room.players.values():
                player.board = generate_board(self.rng)
                player.clear_marks()
            room.game_state = GameState(host=state.host, timestamp=self.clock())
            await self.store.put(room_id, room)
        logger.info("[Game] Room %s reset", room_id)
        return room

    async def set_mode(self, room_id: str, actor: Optional[str], game_mode: str) -> Room:
        async with self.room_lock(room_id):
            room = await self._load(room_id)
            self.require_host(room, actor)
            if room.game_state.is_game_active:
                raise RoomError("game_active")
            room.game_state.game_mode = game_mode
            room.game_state.timestamp = self.clock()
            await self.store.put(room_id, room)
        return room

    async def mark_cell(self, room_id: str, actor: str, index: int) -> Room:
        async with self.room_lock(room_id):
            room = await self._load(room_id)
            player = self._require_player(room, actor)
            if not room.game_state.is_game_active:
                raise RoomError("game_not_active")
            if not 0 <= index < len(player.board):
                raise RoomError("invalid_index")
            if index not in player.marked_indices:
                player.marked_indices.append(index)
                if player.first_marked is None and room.game_state.game_mode != "full":
                    player.first_marked = index
            await self.store.put(room_id, room)
        return room

    async def unmark_cell(self, room_id: str, actor: str, index: int) -> Room:
        async with self.room_lock(room_id):
            room = await self._load(room_id)
            player = self._require_player(room, actor)
            if not room.game_state.is_game_active:
                raise RoomError("game_not_active")
            if index in player.marked_indices:
                player.marked_indices.remove(index)
                if player.first_marked == index:
                    player.first_marked = None
            await self.store.put(room_id, room)
        return room

    async def regenerate_board(self, room_id: str, actor: str) -> Room:
        async with self.room_lock(room_id):
            room = await self._load(room_id)
            player = self._require_player(room, actor)
            if room.game_state.is_game_active:
                raise RoomError("game_active")
            player.board = generate_board(self.rng)
            player.clear_marks()
            await self.store.put(room_id, room)
        return room
