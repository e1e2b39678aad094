import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from database import RoomRecord, RoomStore, StoreError
from models import GameState, Player, Room


def _room(*names: str) -> Room:
    room = Room(players={name: Player(name=name) for name in names})
    room.game_state.host = names[0] if names else ""
    return room


@pytest.mark.asyncio
async def test_put_get_roundtrip_and_replace(store):
    assert await store.get("R1") is None

    await store.put("R1", _room("Ana"))
    loaded = await store.get("R1")
    assert loaded is not None
    assert list(loaded.players) == ["Ana"]
    assert loaded.game_state.host == "Ana"

    await store.put("R1", _room("Beto", "Caro"))
    replaced = await store.get("R1")
    assert list(replaced.players) == ["Beto", "Caro"]


@pytest.mark.asyncio
async def test_delete_and_list_all(store):
    await store.put("A", _room("Ana"))
    await store.put("B", _room("Beto"))
    await store.delete("A")
    await store.delete("missing")

    rooms = await store.list_all()
    assert [room_id for room_id, _ in rooms] == ["B"]


@pytest.mark.asyncio
async def test_corrupt_record_is_skipped(store):
    await store.put("good", _room("Ana"))
    await store.put("bad", _room("Beto"))
    async with store._session_maker() as session:
        await session.execute(update(RoomRecord).where(RoomRecord.id == "bad").values(data="{not json"))
        await session.commit()

    rooms = await store.list_all()
    assert [room_id for room_id, _ in rooms] == ["good"]
    assert await store.get("bad") is None


@pytest.mark.asyncio
async def test_game_state_preserves_call_history(store):
    room = _room("Ana")
    room.game_state = GameState(host="Ana", isGameActive=True, deck=[5, 2, 9], calledCardIds=[5, 2])
    await store.put("R", room)
    loaded = await store.get("R")
    assert loaded.game_state.called_card_ids == [5, 2]
    assert loaded.game_state.remaining_card_ids() == [9]


class _BrokenSession:
    async def __aenter__(self):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    async def __aexit__(self, *exc):
        return False


@pytest.mark.asyncio
async def test_io_failures_surface_as_store_error():
    broken = RoomStore(lambda: _BrokenSession())
    with pytest.raises(StoreError):
        await broken.get("R")
    with pytest.raises(StoreError):
        await broken.put("R", _room("Ana"))
    with pytest.raises(StoreError):
        await broken.list_all()
