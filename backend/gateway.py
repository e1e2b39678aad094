from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.database import AsyncSessionMaker
from app.settings import settings
from database import RoomStore, StoreError
from game import RoomError, RoomSessionManager
from models import (
    ClaimFailure,
    ClaimResult,
    ClaimWinRequest,
    CommandRequest,
    JoinFailure,
    JoinRoomRequest,
    Room,
    RoomRequest,
    StartGameLoopRequest,
    UpdateRoomRequest,
)
from sequencer import CallScheduler, CardCaller

logger = logging.getLogger(__name__)

JOIN_ERROR_MESSAGES = {
    JoinFailure.NAME_IN_USE: "That name is already taken in this room",
    JoinFailure.ROOM_FULL: "The room is full",
}


# ---------- WebSockets hub ----------
class Hub:
    def __init__(self):
        self.rooms: Dict[str, List[WebSocket]] = {}
        self.ws_player: Dict[WebSocket, str] = {}
        self.ws_room: Dict[WebSocket, str] = {}

    async def connect(self, ws: WebSocket):
        await ws.accept()

    def bind(self, ws: WebSocket, room_id: str, player_name: str):
        self.unbind(ws)
        self.rooms.setdefault(room_id, []).append(ws)
        self.ws_player[ws] = player_name
        self.ws_room[ws] = room_id

    def unbind(self, ws: WebSocket):
        self.ws_player.pop(ws, None)
        rid = self.ws_room.pop(ws, None)
        if rid and ws in self.rooms.get(rid, []):
            self.rooms[rid].remove(ws)
            if not self.rooms[rid]:
                self.rooms.pop(rid, None)
        return rid

    def player_of(self, ws: WebSocket) -> Optional[str]:
        return self.ws_player.get(ws)

    def room_of(self, ws: WebSocket) -> Optional[str]:
        return self.ws_room.get(ws)

    async def send(self, ws: WebSocket, event: str, payload: Any = None):
        try:
            await ws.send_json({"type": event, "payload": payload})
        except (RuntimeError, WebSocketDisconnect):
            pass

    async def send_error(self, ws: WebSocket, code: str, message: Optional[str] = None):
        try:
            await ws.send_json({"type": "error", "error": code, "message": message or code})
        except (RuntimeError, WebSocketDisconnect):
            pass

    async def send_room_event(self, room_id: str, event: str, payload: Any = None, exclude: Optional[WebSocket] = None):
        for ws in list(self.rooms.get(room_id, [])):
            if ws is exclude:
                continue
            await self.send(ws, event, payload)

    def drop_room(self, room_id: str):
        for ws in self.rooms.pop(room_id, []):
            self.ws_player.pop(ws, None)
            self.ws_room.pop(ws, None)


hub = Hub()
store = RoomStore(AsyncSessionMaker)
scheduler = CallScheduler()
sessions = RoomSessionManager(store, scheduler, max_players=settings.max_players)


# ---------- broadcasters ----------
async def broadcast_room(room_id: str, room: Optional[Room]):
    if room is None:
        await hub.send_room_event(room_id, "roomDeleted", {"roomId": room_id})
        hub.drop_room(room_id)
        return
    payload = room.dump()
    await hub.send_room_event(room_id, "roomUpdated", payload)
    await hub.send_room_event(room_id, "gameUpdated", payload["gameState"])


async def broadcast_game(room_id: str, room: Room):
    await hub.send_room_event(room_id, "gameUpdated", room.dump()["gameState"])


async def broadcast_player_marks(room_id: str, room: Room):
    for name, player in room.players.items():
        await hub.send_room_event(
            room_id, "playerJoined", {"playerName": name, "playerData": player.model_dump(by_alias=True, mode="json")}
        )


caller = CardCaller(sessions, store, scheduler, interval=settings.call_interval_sec, on_update=broadcast_game)


# ---------- event handlers ----------
async def handle_join(ws: WebSocket, data: dict):
    req = JoinRoomRequest.model_validate(data)
    try:
        result = await sessions.join(req.room_id, req.player_name, req.player_data)
    except StoreError as exc:
        logger.error("[Gateway] joinRoom failed for %s: %s", req.room_id, exc)
        await hub.send(ws, "joinError", {"code": "server_error", "message": "Could not join the room"})
        return
    if not result.added:
        logger.info("[Gateway] joinRoom rejected for %s in %s: %s", req.player_name, req.room_id, result.reason.value)
        await hub.send(
            ws, "joinError", {"code": result.reason.value, "message": JOIN_ERROR_MESSAGES[result.reason]}
        )
        return

    room = result.room
    hub.bind(ws, req.room_id, result.player_name)
    await hub.send(ws, "roomJoined", room.dump())
    await broadcast_room(req.room_id, room)
    player = room.players[result.player_name]
    await hub.send_room_event(
        req.room_id,
        "playerJoined",
        {"playerName": result.player_name, "playerData": player.model_dump(by_alias=True, mode="json")},
        exclude=ws,
    )


async def handle_leave(ws: WebSocket, data: dict):
    req = RoomRequest.model_validate(data)
    name = req.player_name or hub.player_of(ws)
    if not name:
        raise RoomError("player_not_found")
    room = await sessions.leave(req.room_id, name)
    if hub.room_of(ws) == req.room_id:
        hub.unbind(ws)
    await hub.send_room_event(req.room_id, "playerLeft", {"playerName": name})
    await broadcast_room(req.room_id, room)


async def handle_update_room(ws: WebSocket, data: dict):
    req = UpdateRoomRequest.model_validate(data)
    result = await sessions.apply_patch(req.room_id, req.payload)
    await broadcast_room(req.room_id, result.room)
    if result.marks_cleared:
        await broadcast_player_marks(req.room_id, result.room)


async def handle_command(ws: WebSocket, data: dict):
    req = CommandRequest.model_validate(data)
    actor = hub.player_of(ws) or req.player_name
    if not actor:
        raise RoomError("player_not_found")
    room = await sessions.execute(req.room_id, actor, req.command)
    if req.command.type == "startGame":
        await caller.start(req.room_id)
    await broadcast_room(req.room_id, room)


async def handle_start_loop(ws: WebSocket, data: dict):
    req = StartGameLoopRequest.model_validate(data)
    room, started = await sessions.start_game(req.room_id, hub.player_of(ws), req.game_mode)
    if started:
        await broadcast_room(req.room_id, room)
    await caller.start(req.room_id)


async def handle_stop_loop(ws: WebSocket, data: dict):
    req = RoomRequest.model_validate(data)
    room = await sessions.get_room(req.room_id)
    if room is None:
        raise RoomError("room_not_found")
    sessions.require_host(room, hub.player_of(ws))
    caller.stop(req.room_id)
    await broadcast_room(req.room_id, room)


async def handle_claim(ws: WebSocket, data: dict):
    request_id = data.get("requestId")
    try:
        req = ClaimWinRequest.model_validate(data)
    except ValidationError as exc:
        # Malformed claims are still acked with their requestId
        logger.info("[Gateway] Malformed claim %s: %s", request_id, exc)
        await hub.send(
            ws,
            "claimWinResult",
            {
                "success": False,
                "requestId": request_id if isinstance(request_id, str) else None,
                "error": ClaimFailure.INVALID_PAYLOAD.value,
            },
        )
        return
    name = hub.player_of(ws) or req.player_name
    if name:
        result = await sessions.claim_win(req.room_id, name, req.payload)
    else:
        result = ClaimResult(success=False, error=ClaimFailure.PLAYER_NOT_FOUND)
    ack = {"success": result.success, "requestId": req.request_id}
    if result.error is not None:
        ack["error"] = result.error.value
    await hub.send(ws, "claimWinResult", ack)
    if result.success:
        await broadcast_room(req.room_id, result.room)


async def handle_presence(ws: WebSocket, data: dict):
    req = RoomRequest.model_validate(data)
    name = req.player_name or hub.player_of(ws)
    if name:
        await sessions.mark_active(req.room_id, name)


HANDLERS = {
    "joinRoom": handle_join,
    "leaveRoom": handle_leave,
    "updateRoom": handle_update_room,
    "command": handle_command,
    "startGameLoop": handle_start_loop,
    "stopGameLoop": handle_stop_loop,
    "claimWin": handle_claim,
    "presence": handle_presence,
}


async def dispatch(ws: WebSocket, data: Any):
    t = data.get("type") if isinstance(data, dict) else None
    handler = HANDLERS.get(t)
    if handler is None:
        await hub.send_error(ws, "unknown_event", f"Unknown event {t!r}")
        return
    try:
        await handler(ws, data)
    except ValidationError as exc:
        await hub.send_error(ws, "invalid_payload", str(exc))
    except RoomError as exc:
        await hub.send_error(ws, exc.code, str(exc))
    except StoreError as exc:
        logger.error("[Gateway] %s failed: %s", t, exc)
        await hub.send_error(ws, "server_error", "Storage is unavailable, try again")


async def handle_disconnect(ws: WebSocket):
    name = hub.player_of(ws)
    room_id = hub.unbind(ws)
    if not room_id or not name:
        return
    try:
        room = await sessions.get_room(room_id)
        if room is not None and room.game_state.is_game_active:
            room = await sessions.leave(room_id, name)
            await hub.send_room_event(room_id, "playerLeft", {"playerName": name})
            await broadcast_room(room_id, room)
        else:
            room = await sessions.mark_offline(room_id, name)
            if room is not None:
                await broadcast_room(room_id, room)
    except StoreError as exc:
        logger.error("[Gateway] Disconnect cleanup failed for %s in %s: %s", name, room_id, exc)


async def serve(ws: WebSocket):
    await hub.connect(ws)
    try:
        while True:
            try:
                data = await ws.receive_json()
            except ValueError:
                await hub.send_error(ws, "invalid_payload", "Messages must be JSON objects")
                continue
            await dispatch(ws, data)
    except WebSocketDisconnect:
        await handle_disconnect(ws)


# ---------- presence sweep ----------
async def sweep_presence_once():
    idle = await sessions.mark_idle_offline(settings.presence_offline_after_sec * 1000)
    stale = await sessions.cleanup_stale(settings.presence_timeout_sec * 1000)
    for room_id, room in {**idle, **stale}.items():
        await broadcast_room(room_id, room)
    return stale


async def presence_sweeper():
    """Background task: flag idle players offline, then reap stale ones."""
    while True:
        await asyncio.sleep(settings.presence_sweep_interval_sec)
        try:
            await sweep_presence_once()
        except StoreError as exc:
            logger.warning("[Presence] Sweep skipped: %s", exc)
