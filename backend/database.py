"""
Room store: one row per room id holding the serialized room.

Every write is a full-room replace; read-modify-write sequencing is the
session manager's job (see ``game.RoomLocks``).
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import DateTime, String, Text, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from models import Room

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Retryable I/O failure talking to the room table."""


class RoomRecord(Base):
    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    data: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


def _decode(room_id: str, raw: str) -> Optional[Room]:
    try:
        return Room.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as exc:
        logger.warning("[RoomStore] Skipping corrupt room %s: %s", room_id, exc)
        return None


class RoomStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, room_id: str) -> Optional[Room]:
        try:
            async with self._session_maker() as session:
                record = await session.get(RoomRecord, room_id)
                raw = record.data if record else None
        except (SQLAlchemyError, OSError) as exc:
            raise StoreError(f"failed to read room {room_id}") from exc
        if raw is None:
            return None
        return _decode(room_id, raw)

    async def put(self, room_id: str, room: Room) -> None:
        payload = json.dumps(room.dump(), ensure_ascii=False)
        try:
            async with self._session_maker() as session:
                record = await session.get(RoomRecord, room_id)
                if record is None:
                    session.add(RoomRecord(id=room_id, data=payload, updated_at=datetime.utcnow()))
                else:
                    record.data = payload
                    record.updated_at = datetime.utcnow()
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreError(f"failed to write room {room_id}") from exc

    async def delete(self, room_id: str) -> None:
        try:
            async with self._session_maker() as session:
                await session.execute(delete(RoomRecord).where(RoomRecord.id == room_id))
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreError(f"failed to delete room {room_id}") from exc

    async def list_all(self) -> List[Tuple[str, Room]]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(select(RoomRecord.id, RoomRecord.data).order_by(RoomRecord.id))
                rows = result.all()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreError("failed to scan rooms") from exc

        rooms: List[Tuple[str, Room]] = []
        for row in rows:
            room = _decode(row.id, row.data)
            if room is not None:
                rooms.append((row.id, room))
        return rooms
