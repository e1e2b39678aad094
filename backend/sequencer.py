"""Timed card calling.

``CallScheduler`` owns one repeating asyncio task per room; ``CardCaller``
draws the next card from the room's deck on every tick.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from database import RoomStore, StoreError
from game import RoomSessionManager, finish_game
from models import Room

logger = logging.getLogger(__name__)

CALL_INTERVAL_SEC = 3.5

TickCallback = Callable[[str], Awaitable[object]]
UpdateCallback = Callable[[str, Room], Awaitable[None]]


class CallScheduler:
    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}
        self._busy: set = set()

    def is_scheduled(self, room_id: str) -> bool:
        return room_id in self._tasks

    def schedule(self, room_id: str, interval: float, callback: TickCallback) -> bool:
        """Register a repeating timer; returns False if one already exists."""
        if room_id in self._tasks:
            return False
        task = asyncio.create_task(self._run(room_id, interval, callback), name=f"caller:{room_id}")
        self._tasks[room_id] = task
        return True

    def cancel(self, room_id: str) -> bool:
        task = self._tasks.pop(room_id, None)
        if task is None:
            return False
        # A tick already in flight runs to completion; the loop exits after it
        if task not in self._busy:
            task.cancel()
        return True

    async def _run(self, room_id: str, interval: float, callback: TickCallback) -> None:
        loop = asyncio.get_running_loop()
        me = asyncio.current_task()
        next_at = loop.time() + interval
        try:
            while True:
                await asyncio.sleep(max(0.0, next_at - loop.time()))
                next_at += interval
                if self._tasks.get(room_id) is not me:
                    return
                self._busy.add(me)
                try:
                    await callback(room_id)
                except Exception:
                    logger.exception("[Caller] Tick failed for room %s", room_id)
                finally:
                    self._busy.discard(me)
                if self._tasks.get(room_id) is not me:
                    return
        except asyncio.CancelledError:
            pass  # stopped between ticks
        finally:
            if self._tasks.get(room_id) is me:
                self._tasks.pop(room_id, None)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def __len__(self) -> int:
        return len(self._tasks)


class CardCaller:
    def __init__(
        self,
        sessions: RoomSessionManager,
        store: RoomStore,
        scheduler: CallScheduler,
        interval: float = CALL_INTERVAL_SEC,
        on_update: Optional[UpdateCallback] = None,
    ):
        self.sessions = sessions
        self.store = store
        self.scheduler = scheduler
        self.interval = interval
        self.on_update = on_update

    async def start(self, room_id: str) -> bool:
        """Start calling cards for a room; a no-op when already running."""
        if not self.scheduler.schedule(room_id, self.interval, self._tick):
            return False
        logger.info("[Caller] Calling started for room %s every %ss", room_id, self.interval)
        await self._tick(room_id)
        return True

    def stop(self, room_id: str) -> bool:
        stopped = self.scheduler.cancel(room_id)
        if stopped:
            logger.info("[Caller] Calling stopped for room %s", room_id)
        return stopped

    async def _tick(self, room_id: str) -> None:
        try:
            await self.call_next_card(room_id)
        except StoreError as exc:
            logger.warning("[Caller] Skipping tick for room %s: %s", room_id, exc)

    async def call_next_card(self, room_id: str) -> Optional[Room]:
        exhausted = False
        async with self.sessions.room_lock(room_id):
            room = await self.store.get(room_id)
            if room is None:
                self.stop(room_id)
                return None
            state = room.game_state
            if not state.is_game_active or state.winner is not None:
                self.stop(room_id)
                return None
            remaining = state.remaining_card_ids()
            if not remaining:
                return None

            now = self.sessions.clock()
            state.called_card_ids.append(remaining[0])
            state.timestamp = now
            if len(state.called_card_ids) == len(state.deck):
                finish_game(room, None, now)
                exhausted = True
            await self.store.put(room_id, room)

        if exhausted:
            self.stop(room_id)
            logger.info("[Caller] Deck exhausted in room %s, no winner", room_id)
        if self.on_update is not None:
            await self.on_update(room_id, room)
        return room
