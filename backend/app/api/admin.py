from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.schemas import ActionResult, RoomSummary, TokenOut
from auth import check_admin_password, issue_admin_token, verify_admin_token
from gateway import broadcast_room, hub, sessions

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin")
http_bearer = HTTPBearer(auto_error=False)


async def require_admin(
    request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)
) -> Dict[str, str]:
    if credentials is None:
        logger.info("[Admin] %s %s without credentials", request.method, request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="credentials_not_provided")
    try:
        return verify_admin_token(credentials.credentials)
    except ValueError as exc:
        logger.warning("[Admin] Token rejected (%s): %s", _short_token(credentials.credentials), exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))


@router.post("/token", response_model=TokenOut)
async def admin_token(password: str = Form(...)):
    try:
        valid = check_admin_password(password)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if not valid:
        logger.warning("[Admin] Wrong admin password")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_password")
    return TokenOut(access_token=issue_admin_token())


@router.get("/rooms", dependencies=[Depends(require_admin)])
async def list_rooms() -> List[dict]:
    rooms = await sessions.list_rooms()
    return [RoomSummary.from_room(room_id, room).model_dump(by_alias=True) for room_id, room in rooms]


@router.get("/rooms/{room_id}", dependencies=[Depends(require_admin)])
async def get_room(room_id: str) -> dict:
    room = await sessions.get_room(room_id)
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="room_not_found")
    return room.dump()


@router.delete("/rooms/{room_id}/players/{player_name}", dependencies=[Depends(require_admin)])
async def remove_player(room_id: str, player_name: str) -> ActionResult:
    before = await sessions.get_room(room_id)
    if before is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="room_not_found")
    if before.player_key(player_name) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="player_not_found")
    room = await sessions.leave(room_id, player_name)
    await hub.send_room_event(room_id, "playerLeft", {"playerName": player_name})
    await broadcast_room(room_id, room)
    logger.info("[Admin] Removed %s from room %s", player_name, room_id)
    return ActionResult(rooms=[room_id])


@router.delete("/rooms/{room_id}", dependencies=[Depends(require_admin)])
async def delete_room(room_id: str) -> ActionResult:
    if not await sessions.delete_room(room_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="room_not_found")
    await broadcast_room(room_id, None)
    return ActionResult(rooms=[room_id])


@router.post("/players/clear", dependencies=[Depends(require_admin)])
async def clear_players() -> ActionResult:
    cleared = await sessions.clear_all_players()
    for room_id in cleared:
        await broadcast_room(room_id, None)
    return ActionResult(rooms=cleared)


def _short_token(token: str) -> str:
    if not token:
        return ""
    if len(token) <= 10:
        return token
    return f"{token[:5]}...{token[-5:]}"
