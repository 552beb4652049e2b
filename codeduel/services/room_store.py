"""Durable room storage.

The durable copy of a room is the source of truth for its player list and
start state; the duel engine reconciles its in-memory copy against it on
every join. Writes that can race between concurrent joins (adding a player,
starting the duel) are single atomic operations rather than
read-modify-write of the whole document.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import redis.asyncio as redis

from codeduel.config import settings
from codeduel.core.exceptions import RoomFullError, RoomNotFoundError, StorageError
from codeduel.game_engine.duel.room import MAX_PLAYERS, Player, Room, Solution

logger = logging.getLogger(__name__)


class RoomStore(ABC):
    """Persistence contract for duel rooms."""

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = ttl_seconds or settings.room_ttl_seconds

    @abstractmethod
    async def save(self, room: Room) -> None:
        """Write the whole room, replacing any previous copy."""

    @abstractmethod
    async def load(self, room_id: str) -> Optional[Room]:
        """Read a room, or None if it never existed or has expired."""

    @abstractmethod
    async def append_player(self, room_id: str, player: Player) -> list[Player]:
        """Atomically add a player if absent and return the resulting list.

        Raises RoomNotFoundError for unknown rooms and RoomFullError when
        the room already holds two other players.
        """

    @abstractmethod
    async def set_started(self, room_id: str, start_time: int) -> int:
        """Mark the room started. First writer wins; returns the stored start time."""

    @abstractmethod
    async def save_solution(self, room_id: str, connection_id: str, solution: Solution) -> None:
        """Record a player's latest solution."""

    @abstractmethod
    async def delete(self, room_id: str) -> None:
        """Remove a room. Deleting a missing room is not an error."""

    async def close(self) -> None:
        pass


class InMemoryRoomStore(RoomStore):
    """Process-local store for development and tests.

    Rooms are kept serialized so callers never share objects with the store.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._rooms: dict[str, tuple[dict[str, Any], float]] = {}
        self._lock = asyncio.Lock()

    def _get(self, room_id: str) -> Optional[dict[str, Any]]:
        entry = self._rooms.get(room_id)
        if entry is None:
            return None
        data, expires_at = entry
        if self._clock() >= expires_at:
            del self._rooms[room_id]
            return None
        return data

    def _put(self, data: dict[str, Any]) -> None:
        self._rooms[data["roomId"]] = (data, self._clock() + self.ttl_seconds)

    async def save(self, room: Room) -> None:
        async with self._lock:
            self._put(json.loads(json.dumps(room.to_dict())))

    async def load(self, room_id: str) -> Optional[Room]:
        async with self._lock:
            data = self._get(room_id)
            return Room.from_dict(json.loads(json.dumps(data))) if data else None

    async def append_player(self, room_id: str, player: Player) -> list[Player]:
        async with self._lock:
            data = self._get(room_id)
            if data is None:
                raise RoomNotFoundError()
            players = data["players"]
            if not any(p["id"] == player.id for p in players):
                if len(players) >= MAX_PLAYERS:
                    raise RoomFullError()
                players.append(player.to_dict())
                self._put(data)
            return [Player.from_dict(p) for p in players]

    async def set_started(self, room_id: str, start_time: int) -> int:
        async with self._lock:
            data = self._get(room_id)
            if data is None:
                raise RoomNotFoundError()
            if data["started"] and data["startTime"] is not None:
                return data["startTime"]
            data["started"] = True
            data["startTime"] = start_time
            self._put(data)
            return start_time

    async def save_solution(self, room_id: str, connection_id: str, solution: Solution) -> None:
        async with self._lock:
            data = self._get(room_id)
            if data is None:
                raise RoomNotFoundError()
            data["solutions"][connection_id] = json.loads(json.dumps(solution.to_dict()))
            self._put(data)

    async def delete(self, room_id: str) -> None:
        async with self._lock:
            self._rooms.pop(room_id, None)


class RedisRoomStore(RoomStore):
    """Redis-backed store.

    Layout per room:
    - room:{id}            hash: doc (JSON), started ("0"/"1"), start_time
    - room:{id}:players    list of player JSON, in join order
    - room:{id}:solutions  hash: connection id -> solution JSON

    Every key gets the retention TTL on each write.
    """

    # Returns -1 unknown room, -2 full, 0 already present, 1 appended
    APPEND_PLAYER_SCRIPT = """
    local room_key = KEYS[1]
    local players_key = KEYS[2]
    local player_id = ARGV[1]
    local player_json = ARGV[2]
    local max_players = tonumber(ARGV[3])
    local ttl = tonumber(ARGV[4])

    if redis.call('EXISTS', room_key) == 0 then
        return -1
    end

    local players = redis.call('LRANGE', players_key, 0, -1)
    for _, raw in ipairs(players) do
        if cjson.decode(raw)['id'] == player_id then
            return 0
        end
    end

    if #players >= max_players then
        return -2
    end

    redis.call('RPUSH', players_key, player_json)
    redis.call('EXPIRE', players_key, ttl)
    redis.call('EXPIRE', room_key, ttl)
    return 1
    """

    # Returns -1 unknown room, otherwise the effective start time
    SET_STARTED_SCRIPT = """
    local room_key = KEYS[1]
    local start_time = ARGV[1]
    local ttl = tonumber(ARGV[2])

    if redis.call('EXISTS', room_key) == 0 then
        return -1
    end

    local started = redis.call('HGET', room_key, 'started')
    local current = redis.call('HGET', room_key, 'start_time')
    if started == '1' and current and current ~= '' then
        return tonumber(current)
    end

    redis.call('HSET', room_key, 'started', '1', 'start_time', start_time)
    redis.call('EXPIRE', room_key, ttl)
    return tonumber(start_time)
    """

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: Optional[int] = None):
        super().__init__(ttl_seconds)
        self._redis_url = redis_url or settings.redis_url
        self._redis: Optional[redis.Redis] = None
        self._append_player = None
        self._set_started = None
        self._lock = asyncio.Lock()

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            async with self._lock:
                if self._redis is None:
                    client = redis.from_url(
                        self._redis_url,
                        encoding="utf-8",
                        decode_responses=True,
                    )
                    self._append_player = client.register_script(self.APPEND_PLAYER_SCRIPT)
                    self._set_started = client.register_script(self.SET_STARTED_SCRIPT)
                    self._redis = client
        return self._redis

    @staticmethod
    def _keys(room_id: str) -> tuple[str, str, str]:
        base = f"room:{room_id}"
        return base, f"{base}:players", f"{base}:solutions"

    @staticmethod
    def encode_room(room: Room) -> dict[str, str]:
        """Hash fields for the room key."""
        doc = room.to_dict()
        for key in ("players", "solutions", "started", "startTime"):
            doc.pop(key)
        return {
            "doc": json.dumps(doc),
            "started": "1" if room.started else "0",
            "start_time": "" if room.start_time is None else str(room.start_time),
        }

    @staticmethod
    def decode_room(
        fields: dict[str, str],
        players: list[str],
        solutions: dict[str, str],
    ) -> Room:
        doc = json.loads(fields["doc"])
        start_time = fields.get("start_time") or None
        doc.update({
            "players": [json.loads(p) for p in players],
            "solutions": {cid: json.loads(s) for cid, s in solutions.items()},
            "started": fields.get("started") == "1",
            "startTime": int(start_time) if start_time else None,
        })
        return Room.from_dict(doc)

    async def save(self, room: Room) -> None:
        room_key, players_key, solutions_key = self._keys(room.room_id)
        try:
            client = await self._get_redis()
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(room_key, players_key, solutions_key)
                pipe.hset(room_key, mapping=self.encode_room(room))
                pipe.expire(room_key, self.ttl_seconds)
                if room.players:
                    pipe.rpush(players_key, *[json.dumps(p.to_dict()) for p in room.players])
                    pipe.expire(players_key, self.ttl_seconds)
                if room.solutions:
                    pipe.hset(solutions_key, mapping={
                        cid: json.dumps(s.to_dict()) for cid, s in room.solutions.items()
                    })
                    pipe.expire(solutions_key, self.ttl_seconds)
                await pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Failed to save room {room.room_id}: {e}")
            raise StorageError() from e

    async def load(self, room_id: str) -> Optional[Room]:
        room_key, players_key, solutions_key = self._keys(room_id)
        try:
            client = await self._get_redis()
            async with client.pipeline(transaction=True) as pipe:
                pipe.hgetall(room_key)
                pipe.lrange(players_key, 0, -1)
                pipe.hgetall(solutions_key)
                fields, players, solutions = await pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Failed to load room {room_id}: {e}")
            raise StorageError() from e

        if not fields:
            return None
        return self.decode_room(fields, players, solutions)

    async def append_player(self, room_id: str, player: Player) -> list[Player]:
        room_key, players_key, _ = self._keys(room_id)
        try:
            client = await self._get_redis()
            outcome = await self._append_player(
                keys=[room_key, players_key],
                args=[player.id, json.dumps(player.to_dict()), MAX_PLAYERS, self.ttl_seconds],
            )
            raw_players = await client.lrange(players_key, 0, -1)
        except redis.RedisError as e:
            logger.error(f"Failed to add player {player.id} to room {room_id}: {e}")
            raise StorageError() from e

        if outcome == -1:
            raise RoomNotFoundError()
        if outcome == -2:
            raise RoomFullError()
        return [Player.from_dict(json.loads(p)) for p in raw_players]

    async def set_started(self, room_id: str, start_time: int) -> int:
        room_key, _, _ = self._keys(room_id)
        try:
            await self._get_redis()
            effective = await self._set_started(
                keys=[room_key],
                args=[start_time, self.ttl_seconds],
            )
        except redis.RedisError as e:
            logger.error(f"Failed to start room {room_id}: {e}")
            raise StorageError() from e

        if effective == -1:
            raise RoomNotFoundError()
        return int(effective)

    async def save_solution(self, room_id: str, connection_id: str, solution: Solution) -> None:
        room_key, _, solutions_key = self._keys(room_id)
        try:
            client = await self._get_redis()
            if not await client.exists(room_key):
                raise RoomNotFoundError()
            async with client.pipeline(transaction=True) as pipe:
                pipe.hset(solutions_key, connection_id, json.dumps(solution.to_dict()))
                pipe.expire(solutions_key, self.ttl_seconds)
                await pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Failed to save solution for room {room_id}: {e}")
            raise StorageError() from e

    async def delete(self, room_id: str) -> None:
        try:
            client = await self._get_redis()
            await client.delete(*self._keys(room_id))
        except redis.RedisError as e:
            logger.error(f"Failed to delete room {room_id}: {e}")
            raise StorageError() from e

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None


def create_room_store() -> RoomStore:
    """Build the store selected by settings.room_store_backend."""
    if settings.room_store_backend == "memory":
        logger.warning("Using in-memory room store; rooms will not survive a restart")
        return InMemoryRoomStore()
    return RedisRoomStore()
