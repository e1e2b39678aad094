import asyncio

import pytest
import pytest_asyncio

from database import StoreError
from game import RoomSessionManager
from models import GameState
from sequencer import CallScheduler, CardCaller


@pytest_asyncio.fixture()
async def scheduler():
    scheduler = CallScheduler()
    yield scheduler
    await scheduler.shutdown()


@pytest_asyncio.fixture()
async def sessions(store, scheduler, clock, rng):
    return RoomSessionManager(store, scheduler, rng=rng, clock=clock)


class UpdateLog:
    def __init__(self):
        self.calls = []

    async def __call__(self, room_id, room):
        self.calls.append((room_id, list(room.game_state.called_card_ids)))


async def _started_room(sessions, mode="full"):
    await sessions.join("R1", "Ana", {})
    await sessions.join("R1", "Beto", {})
    room, _ = await sessions.start_game("R1", "Ana", mode)
    return room


@pytest.mark.asyncio
async def test_start_calls_first_card_immediately(sessions, store, scheduler):
    room = await _started_room(sessions)
    updates = UpdateLog()
    caller = CardCaller(sessions, store, scheduler, interval=60, on_update=updates)

    assert await caller.start("R1")
    assert not await caller.start("R1")
    assert scheduler.is_scheduled("R1")
    assert updates.calls == [("R1", room.game_state.deck[:1])]

    assert caller.stop("R1")
    assert not caller.stop("R1")
    assert not scheduler.is_scheduled("R1")


@pytest.mark.asyncio
async def test_calls_follow_the_deck_in_order(sessions, store, scheduler):
    room = await _started_room(sessions)
    deck = room.game_state.deck
    caller = CardCaller(sessions, store, scheduler, interval=60)

    for count in range(1, 6):
        called = await caller.call_next_card("R1")
        assert called.game_state.called_card_ids == deck[:count]

    stored = await store.get("R1")
    assert stored.game_state.called_card_ids == deck[:5]
    assert stored.game_state.remaining_card_ids() == deck[5:]


@pytest.mark.asyncio
async def test_timer_keeps_calling_until_stopped(sessions, store, scheduler):
    room = await _started_room(sessions)
    updates = UpdateLog()
    caller = CardCaller(sessions, store, scheduler, interval=0.01, on_update=updates)

    await caller.start("R1")
    for _ in range(200):
        if len(updates.calls) >= 4:
            break
        await asyncio.sleep(0.01)
    caller.stop("R1")
    await asyncio.sleep(0.05)

    stored = await store.get("R1")
    count = len(stored.game_state.called_card_ids)
    assert count >= 4
    assert stored.game_state.called_card_ids == room.game_state.deck[:count]
    # Nothing is called after stopping
    await asyncio.sleep(0.05)
    assert len((await store.get("R1")).game_state.called_card_ids) == count


@pytest.mark.asyncio
async def test_deck_exhaustion_ends_without_winner(sessions, store, scheduler, clock):
    """Scenario D."""
    await _started_room(sessions)
    async with sessions.room_lock("R1"):
        room = await store.get("R1")
        deck = room.game_state.deck
        room.game_state.called_card_ids = deck[:-1]
        room.players["Ana"].marked_indices = [0, 1]
        room.players["Beto"].marked_indices = [0, 1, 2]
        await store.put("R1", room)

    caller = CardCaller(sessions, store, scheduler, interval=60)
    await caller.start("R1")

    stored = await store.get("R1")
    state = stored.game_state
    assert state.called_card_ids == deck
    assert not state.is_game_active
    assert state.winner is None
    assert [(e.name, e.marked_count) for e in state.final_ranking] == [("Beto", 3), ("Ana", 2)]
    assert all(p.marked_indices == [] for p in stored.players.values())
    assert not scheduler.is_scheduled("R1")


@pytest.mark.asyncio
async def test_inactive_or_missing_room_stops_the_timer(sessions, store, scheduler):
    await sessions.join("R1", "Ana", {})
    caller = CardCaller(sessions, store, scheduler, interval=60)

    await caller.start("R1")
    assert not scheduler.is_scheduled("R1")
    assert (await store.get("R1")).game_state.called_card_ids == []

    await caller.start("ghost")
    assert not scheduler.is_scheduled("ghost")


@pytest.mark.asyncio
async def test_winner_stops_calling(sessions, store, scheduler):
    await _started_room(sessions)
    async with sessions.room_lock("R1"):
        room = await store.get("R1")
        room.game_state = GameState(host="Ana", isGameActive=False, winner="Ana", deck=room.game_state.deck)
        await store.put("R1", room)

    caller = CardCaller(sessions, store, scheduler, interval=60)
    assert await caller.call_next_card("R1") is None
    assert (await store.get("R1")).game_state.called_card_ids == []


class FlakyStore:
    def __init__(self, store):
        self.store = store
        self.failures = 1

    async def get(self, room_id):
        if self.failures:
            self.failures -= 1
            raise StoreError("disk I/O error")
        return await self.store.get(room_id)

    async def put(self, room_id, room):
        await self.store.put(room_id, room)


@pytest.mark.asyncio
async def test_store_failure_skips_one_tick(sessions, store, scheduler):
    room = await _started_room(sessions)
    caller = CardCaller(sessions, FlakyStore(store), scheduler, interval=60)

    assert await caller.start("R1")
    assert scheduler.is_scheduled("R1")
    assert (await store.get("R1")).game_state.called_card_ids == []

    await caller._tick("R1")
    assert (await store.get("R1")).game_state.called_card_ids == room.game_state.deck[:1]


@pytest.mark.asyncio
async def test_scheduler_cancel_and_shutdown():
    scheduler = CallScheduler()
    ticks = []

    async def tick(room_id):
        ticks.append(room_id)

    assert scheduler.schedule("A", 0.01, tick)
    assert not scheduler.schedule("A", 0.01, tick)
    assert scheduler.schedule("B", 0.01, tick)
    assert len(scheduler) == 2

    await asyncio.sleep(0.05)
    assert scheduler.cancel("A")
    assert not scheduler.cancel("A")
    await scheduler.shutdown()
    assert len(scheduler) == 0
    assert "A" in ticks and "B" in ticks


@pytest.mark.asyncio
async def test_cancel_inside_a_tick_lets_it_finish():
    scheduler = CallScheduler()
    finished = asyncio.Event()

    async def tick(room_id):
        scheduler.cancel(room_id)
        await asyncio.sleep(0)
        finished.set()

    scheduler.schedule("A", 0.01, tick)
    await asyncio.wait_for(finished.wait(), timeout=1)
    assert not scheduler.is_scheduled("A")
    await scheduler.shutdown()
