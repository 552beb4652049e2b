"""Unit tests for the room stores."""

import asyncio
import os

import pytest
import pytest_asyncio

from codeduel.core.exceptions import RoomFullError, RoomNotFoundError
from codeduel.game_engine.duel.challenges import ChallengeOrigin, Difficulty
from codeduel.game_engine.duel.room import Player, Room, Solution
from codeduel.services.room_store import InMemoryRoomStore, RedisRoomStore
from tests.fakes import FakeClock, make_challenge


def new_room(room_id: str = "room-1", *player_ids: str) -> Room:
    return Room(
        room_id=room_id,
        challenge=make_challenge(),
        challenge_source=ChallengeOrigin.FALLBACK,
        selected_difficulty=Difficulty.BEGINNER,
        players=[Player(id=pid) for pid in player_ids],
    )


class TestInMemoryRoomStore:
    @pytest.fixture
    def clock(self):
        return FakeClock(now=100.0)

    @pytest.fixture
    def store(self, clock):
        return InMemoryRoomStore(ttl_seconds=3600, clock=clock)

    @pytest.mark.asyncio
    async def test_save_and_load(self, store):
        await store.save(new_room("r", "alice"))
        room = await store.load("r")
        assert room.player_ids == ["alice"]
        assert room.challenge.title == "Sum of Numbers"
        assert not room.started

    @pytest.mark.asyncio
    async def test_load_returns_copies(self, store):
        original = new_room("r", "alice")
        await store.save(original)
        original.players.append(Player(id="mallory"))

        loaded = await store.load("r")
        loaded.players.append(Player(id="eve"))

        assert (await store.load("r")).player_ids == ["alice"]

    @pytest.mark.asyncio
    async def test_unknown_room(self, store):
        assert await store.load("missing") is None
        with pytest.raises(RoomNotFoundError):
            await store.append_player("missing", Player(id="a"))
        with pytest.raises(RoomNotFoundError):
            await store.set_started("missing", 1)

    @pytest.mark.asyncio
    async def test_append_is_idempotent(self, store):
        await store.save(new_room("r", "alice"))
        await store.append_player("r", Player(id="bob"))
        players = await store.append_player("r", Player(id="bob"))
        assert [p.id for p in players] == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_third_player_rejected(self, store):
        await store.save(new_room("r", "alice", "bob"))
        with pytest.raises(RoomFullError):
            await store.append_player("r", Player(id="carol"))
        # Existing players may still re-join a full room
        players = await store.append_player("r", Player(id="alice"))
        assert [p.id for p in players] == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_concurrent_joins_never_exceed_two(self, store):
        await store.save(new_room("r", "alice"))

        async def join(pid):
            try:
                return await store.append_player("r", Player(id=pid))
            except RoomFullError:
                return None

        results = await asyncio.gather(*(join(f"p{i}") for i in range(10)))

        assert sum(1 for r in results if r is not None) == 1
        assert len((await store.load("r")).players) == 2

    @pytest.mark.asyncio
    async def test_set_started_first_writer_wins(self, store):
        await store.save(new_room("r", "alice", "bob"))
        assert await store.set_started("r", 1000) == 1000
        assert await store.set_started("r", 2000) == 1000
        room = await store.load("r")
        assert room.started
        assert room.start_time == 1000

    @pytest.mark.asyncio
    async def test_save_solution(self, store):
        await store.save(new_room("r", "alice", "bob"))
        solution = Solution(code="print(1)", language="python", validation={"passed": False}, submitted_at=5)
        await store.save_solution("r", "alice", solution)
        room = await store.load("r")
        assert room.solutions["alice"] == solution

    @pytest.mark.asyncio
    async def test_rooms_expire(self, store, clock):
        await store.save(new_room("r", "alice"))
        clock.now += 3599
        assert await store.load("r") is not None
        clock.now += 3600
        assert await store.load("r") is None

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.save(new_room("r", "alice"))
        await store.delete("r")
        await store.delete("r")
        assert await store.load("r") is None


class TestRedisRoomEncoding:
    """Hash encoding used by the Redis store; no server required."""

    def test_round_trip(self):
        room = new_room("r", "alice", "bob")
        room.started = True
        room.start_time = 1_700_000_000_000
        solution = Solution(code="x", language="python", validation={"passed": True}, submitted_at=9)

        fields = RedisRoomStore.encode_room(room)
        decoded = RedisRoomStore.decode_room(
            fields,
            ['{"id": "alice", "ready": true}', '{"id": "bob", "ready": true}'],
            {"alice": '{"code": "x", "language": "python", "validation": {"passed": true}, "submittedAt": 9}'},
        )

        assert fields["started"] == "1"
        assert fields["start_time"] == "1700000000000"
        assert decoded.player_ids == ["alice", "bob"]
        assert decoded.start_time == room.start_time
        assert decoded.solutions["alice"] == solution
        assert decoded.challenge == room.challenge

    def test_unstarted_room(self):
        fields = RedisRoomStore.encode_room(new_room("r", "alice"))
        decoded = RedisRoomStore.decode_room(fields, [], {})
        assert fields["start_time"] == ""
        assert not decoded.started
        assert decoded.start_time is None


@pytest.mark.skipif(not os.environ.get("TEST_REDIS_URL"), reason="TEST_REDIS_URL not set")
class TestRedisRoomStore:
    """Runs against a real Redis when TEST_REDIS_URL is set."""

    @pytest_asyncio.fixture
    async def store(self):
        store = RedisRoomStore(redis_url=os.environ["TEST_REDIS_URL"], ttl_seconds=60)
        yield store
        await store.delete("redis-test")
        await store.close()

    @pytest.mark.asyncio
    async def test_atomic_operations(self, store):
        await store.save(new_room("redis-test", "alice"))

        players = await store.append_player("redis-test", Player(id="bob"))
        assert [p.id for p in players] == ["alice", "bob"]
        assert len(await store.append_player("redis-test", Player(id="bob"))) == 2
        with pytest.raises(RoomFullError):
            await store.append_player("redis-test", Player(id="carol"))

        assert await store.set_started("redis-test", 1234) == 1234
        assert await store.set_started("redis-test", 9999) == 1234

        room = await store.load("redis-test")
        assert room.started and room.start_time == 1234

    @pytest.mark.asyncio
    async def test_unknown_room(self, store):
        assert await store.load("redis-missing") is None
        with pytest.raises(RoomNotFoundError):
            await store.append_player("redis-missing", Player(id="a"))
