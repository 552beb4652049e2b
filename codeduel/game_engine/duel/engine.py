"""
Duel orchestrator.

Drives two-player rooms through WAITING -> STARTED -> FINISHED ->
REMATCH_PENDING -> STARTED | CLOSED. Every transition of a room happens
under that room's lock; judging a submission does not, so a verdict is only
applied if the same game is still running when it comes back.
"""

import asyncio
import logging
import time
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol
from uuid import uuid4

from codeduel.api.websocket.manager import manager
from codeduel.config import settings
from codeduel.core.exceptions import (
    CodeDuelError,
    GameNotStartedError,
    NotInRoomError,
    RematchUnavailableError,
    RoomNotFoundError,
    StorageError,
)
from codeduel.core.metrics import DUELS_ACTIVE, record_duel_finished, record_rematch
from codeduel.db.models.duel import DuelOutcome
from codeduel.game_engine.duel.challenges import Difficulty
from codeduel.game_engine.duel.judge import SolutionJudge, ValidationResult, judge
from codeduel.game_engine.duel.room import MAX_PLAYERS, DuelStatus, Player, Room, Solution
from codeduel.services.challenge_source import ChallengeProvider, challenge_provider
from codeduel.services.duel_archive import DuelArchive
from codeduel.services.room_store import RoomStore, create_room_store

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Push channel to connected players (the WebSocket manager)."""

    async def send_personal(self, connection_id: str, message: dict[str, Any]) -> bool:
        ...

    async def broadcast_to_room(self, room_id: str, message: dict[str, Any], exclude: Optional[str] = None) -> int:
        ...

    async def join_room(self, connection_id: str, room_id: str) -> None:
        ...

    async def leave_room(self, connection_id: str, room_id: str) -> None:
        ...


@dataclass
class DuelGame:
    """In-memory state of a waiting or running room."""

    room: Room
    status: DuelStatus = DuelStatus.WAITING
    timer: Optional[asyncio.Task] = None


@dataclass
class RematchState:
    """Post-game negotiation for a finished room."""

    room_id: str
    players: list[Player]
    difficulty: Difficulty
    requests: set[str] = field(default_factory=set)
    expiry: Optional[asyncio.Task] = None

    @property
    def player_ids(self) -> list[str]:
        return [p.id for p in self.players]

    @property
    def accepted(self) -> bool:
        return set(self.player_ids) <= self.requests


def _message(msg_type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"type": msg_type, "data": data}


class DuelEngine:
    """Runs duel rooms on top of a room store, a judge and a challenge provider."""

    def __init__(
        self,
        store: Optional[RoomStore] = None,
        solution_judge: Optional[SolutionJudge] = None,
        challenges: Optional[ChallengeProvider] = None,
        events: Optional[EventSink] = None,
        archive: Optional[DuelArchive] = None,
        clock: Callable[[], float] = time.time,
        rematch_window: Optional[float] = None,
    ):
        if archive is None and settings.archive_enabled:
            archive = DuelArchive()

        self.store = store or create_room_store()
        self.judge = solution_judge or judge
        self.challenges = challenges or challenge_provider
        self.events = events or manager
        self.archive = archive
        self.clock = clock
        self.rematch_window = (
            settings.rematch_window_seconds if rematch_window is None else rematch_window
        )

        self._games: dict[str, DuelGame] = {}
        self._rematches: dict[str, RematchState] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._background: set[asyncio.Task] = set()

    def _lock(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[room_id] = lock
        return lock

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _broadcast(self, room_id: str, msg_type: str, data: dict[str, Any]) -> None:
        await self.events.broadcast_to_room(room_id, _message(msg_type, {"roomId": room_id, **data}))

    # Room lifecycle

    async def create_room(self, connection_id: str, difficulty: Any = None) -> dict[str, Any]:
        """Create a room with the caller as its first player."""
        selected = Difficulty.parse(difficulty or settings.default_difficulty)
        challenge, origin = await self.challenges.get_challenge(selected)

        room = Room(
            room_id=uuid4().hex,
            challenge=challenge,
            challenge_source=origin,
            selected_difficulty=selected,
            players=[Player(id=connection_id)],
        )
        async with self._lock(room.room_id):
            await self.store.save(room)
            self._games[room.room_id] = DuelGame(room=room)
            await self.events.join_room(connection_id, room.room_id)

        logger.info(f"Room {room.room_id} created by {connection_id} ({selected.value}, {origin.value})")
        return {
            "roomId": room.room_id,
            "challenge": challenge.public_dict(),
            "source": origin.value,
            "selectedDifficulty": selected.value,
        }

    async def join_room(self, connection_id: str, room_id: str) -> dict[str, Any]:
        """Join a room; the second distinct player starts the duel.

        Joining again with the same connection is a no-op apart from the
        room_update broadcast.
        """
        async with self._lock(room_id):
            game = await self._reconcile(room_id)

            game.room.players = await self.store.append_player(room_id, Player(id=connection_id))
            await self.events.join_room(connection_id, room_id)

            if len(game.room.players) == MAX_PLAYERS and game.status == DuelStatus.WAITING:
                await self._start(game, self._now_ms())
                logger.info(f"Room {room_id} started with {game.room.player_ids}")
                await self._broadcast(room_id, "game_start", self._game_start_payload(game.room))

            room = game.room
            await self._broadcast(room_id, "room_update", {
                "players": [p.to_dict() for p in room.players],
                "started": room.started,
                "startTime": room.start_time,
            })

            return {
                "roomId": room_id,
                "challenge": room.challenge.public_dict(),
                "challengeSource": room.challenge_source.value,
                "started": room.started,
                "startTime": room.start_time,
                "selectedDifficulty": room.selected_difficulty.value,
            }

    async def _reconcile(self, room_id: str) -> DuelGame:
        """Bring the in-memory game in line with the durable room. Caller holds the lock."""
        durable = await self.store.load(room_id)
        if durable is None:
            raise RoomNotFoundError()

        game = self._games.get(room_id)
        if game is None:
            game = DuelGame(room=durable)
            self._games[room_id] = game
            logger.info(f"Recovered room {room_id} from the room store")
        else:
            game.room.players = durable.players
            game.room.started = durable.started
            game.room.start_time = durable.start_time

        if durable.started and game.status == DuelStatus.WAITING:
            # Started elsewhere or before a restart; resume the countdown
            game.status = DuelStatus.STARTED
            DUELS_ACTIVE.inc()
            self._arm_countdown(game)
        return game

    async def _start(self, game: DuelGame, start_time: int) -> None:
        room = game.room
        room.start_time = await self.store.set_started(room.room_id, start_time)
        room.started = True
        game.status = DuelStatus.STARTED
        DUELS_ACTIVE.inc()
        self._arm_countdown(game)

    @staticmethod
    def _game_start_payload(room: Room) -> dict[str, Any]:
        return {
            "challenge": room.challenge.public_dict(),
            "challengeSource": room.challenge_source.value,
            "startTime": room.start_time,
        }

    # Submissions

    async def submit(
        self,
        connection_id: str,
        room_id: str,
        code: str,
        language: str,
    ) -> ValidationResult:
        """Judge a submission. A full pass wins the duel if it is still running."""
        async with self._lock(room_id):
            game = self._games.get(room_id)
            if game is None or game.status != DuelStatus.STARTED:
                raise GameNotStartedError()
            if not game.room.has_player(connection_id):
                raise NotInRoomError()
            test_cases = game.room.challenge.test_cases

        validation = await self.judge.validate(code, language, test_cases)

        async with self._lock(room_id):
            # Resolved (or replaced by a rematch) while we were judging
            if self._games.get(room_id) is not game or game.status != DuelStatus.STARTED:
                raise GameNotStartedError()

            solution = Solution(
                code=code,
                language=language,
                validation=validation.to_dict(),
                submitted_at=self._now_ms(),
            )
            game.room.solutions[connection_id] = solution
            try:
                await self.store.save_solution(room_id, connection_id, solution)
            except (RoomNotFoundError, StorageError) as e:
                logger.warning(f"Could not persist solution for room {room_id}: {e.message}")

            logger.info(
                f"Submission in room {room_id} by {connection_id}: "
                f"{validation.passed_tests}/{validation.total_tests} passed"
            )
            if validation.passed:
                await self._finish(game, connection_id, DuelOutcome.SOLVED)

        return validation

    # Countdown

    def _arm_countdown(self, game: DuelGame) -> None:
        deadline = game.room.deadline()
        if deadline is None:
            return
        if game.timer:
            game.timer.cancel()
        game.timer = asyncio.create_task(self._countdown(game, deadline - self.clock()))

    async def _countdown(self, game: DuelGame, delay: float) -> None:
        room_id = game.room.room_id
        try:
            await asyncio.sleep(max(0.0, delay))
            async with self._lock(room_id):
                if self._games.get(room_id) is not game or game.status != DuelStatus.STARTED:
                    return
                game.timer = None
                logger.info(f"Time is up in room {room_id}")
                await self._finish(game, None, DuelOutcome.TIME_UP)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Countdown failed for room {room_id}")

    async def _finish(self, game: DuelGame, winner_id: Optional[str], outcome: DuelOutcome) -> None:
        """Resolve a running game. Caller holds the room lock."""
        room = game.room
        game.status = DuelStatus.FINISHED
        if game.timer:
            game.timer.cancel()
            game.timer = None
        self._games.pop(room.room_id, None)
        DUELS_ACTIVE.dec()
        record_duel_finished(outcome.value)

        if outcome == DuelOutcome.TIME_UP:
            await self._broadcast(room.room_id, "time_up", {})
        await self._broadcast(room.room_id, "game_over", {
            "winnerId": winner_id,
            "solutions": [
                {
                    "playerId": player_id,
                    "code": solution.code,
                    "language": solution.language,
                    "passed": bool(solution.validation.get("passed")),
                    "results": solution.validation.get("results", []),
                }
                for player_id, solution in room.solutions.items()
            ],
        })

        try:
            await self.store.delete(room.room_id)
        except StorageError as e:
            logger.warning(f"Could not delete finished room {room.room_id}: {e.message}")

        self._open_rematch(room)
        if self.archive is not None:
            self._spawn(self._archive(room, winner_id, outcome))

    async def _archive(self, room: Room, winner_id: Optional[str], outcome: DuelOutcome) -> None:
        try:
            await self.archive.record(room, winner_id, outcome)
        except Exception:
            logger.exception(f"Failed to archive duel for room {room.room_id}")

    # Rematch negotiation

    def _open_rematch(self, room: Room) -> None:
        state = RematchState(
            room_id=room.room_id,
            players=[Player(id=p.id, ready=p.ready) for p in room.players],
            difficulty=room.selected_difficulty,
        )
        state.expiry = asyncio.create_task(self._rematch_expiry(state))
        self._rematches[room.room_id] = state

    def _close_rematch(self, state: RematchState) -> None:
        self._rematches.pop(state.room_id, None)
        if state.expiry and state.expiry is not asyncio.current_task():
            state.expiry.cancel()
        state.expiry = None

    async def _release_players(self, state: RematchState) -> None:
        for player_id in state.player_ids:
            await self.events.leave_room(player_id, state.room_id)

    def _rematch_for(self, connection_id: str, room_id: str) -> RematchState:
        state = self._rematches.get(room_id)
        if state is None:
            raise RematchUnavailableError()
        if connection_id not in state.player_ids:
            raise NotInRoomError()
        return state

    async def request_rematch(self, connection_id: str, room_id: str, difficulty: Any = None) -> None:
        """Record a rematch request; the second player's request starts a new round."""
        async with self._lock(room_id):
            state = self._rematch_for(connection_id, room_id)
            if difficulty:
                state.difficulty = Difficulty.parse(difficulty)
            state.requests.add(connection_id)

            await self._broadcast(room_id, "rematch_requested", {
                "requestingPlayer": connection_id,
                "totalRequests": len(state.requests),
            })
            if not state.accepted:
                return

            self._close_rematch(state)
            try:
                challenge, origin = await self.challenges.get_challenge(state.difficulty)
                room = Room(
                    room_id=room_id,
                    challenge=challenge,
                    challenge_source=origin,
                    selected_difficulty=state.difficulty,
                    players=[Player(id=p.id) for p in state.players],
                )
                await self.store.save(room)
                game = DuelGame(room=room)
                await self._start(game, self._now_ms())
            except CodeDuelError as e:
                logger.error(f"Failed to start rematch in room {room_id}: {e.message}")
                record_rematch("failed")
                await self._broadcast(room_id, "rematch_error", {
                    "error": "Failed to start rematch. Please try again.",
                })
                await self._release_players(state)
                return

            self._games[room_id] = game
            record_rematch("accepted")
            logger.info(f"Rematch started in room {room_id}")
            await self._broadcast(room_id, "rematch_starting", {
                "challenge": challenge.public_dict(),
                "challengeSource": origin.value,
                "selectedDifficulty": state.difficulty.value,
            })
            await self._broadcast(room_id, "game_start", self._game_start_payload(room))

    async def decline_rematch(self, connection_id: str, room_id: str) -> None:
        async with self._lock(room_id):
            state = self._rematch_for(connection_id, room_id)
            self._close_rematch(state)
            record_rematch("declined")
            await self._broadcast(room_id, "rematch_declined", {
                "decliningPlayer": connection_id,
                "reason": "declined",
            })
            await self._release_players(state)

    async def _rematch_expiry(self, state: RematchState) -> None:
        try:
            await asyncio.sleep(self.rematch_window)
            async with self._lock(state.room_id):
                if self._rematches.get(state.room_id) is not state:
                    return
                self._close_rematch(state)
                record_rematch("expired")
                await self._broadcast(state.room_id, "rematch_declined", {
                    "decliningPlayer": None,
                    "reason": "expired",
                })
                await self._release_players(state)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Rematch expiry failed for room {state.room_id}")

    # Connections

    async def disconnect(self, connection_id: str) -> list[str]:
        """Tell rooms a player left. Room state is kept so the player can come back."""
        room_ids = [rid for rid, game in self._games.items() if game.room.has_player(connection_id)]
        room_ids += [rid for rid, state in self._rematches.items() if connection_id in state.player_ids]

        for room_id in room_ids:
            await self._broadcast(room_id, "player_left", {"playerId": connection_id})
        return room_ids

    # Queries

    async def get_status(self, room_id: str) -> Optional[dict[str, Any]]:
        """Public view of a room, or None if it is unknown."""
        state = self._rematches.get(room_id)
        if state is not None:
            return {
                "roomId": room_id,
                "status": DuelStatus.REMATCH_PENDING.name.lower(),
                "players": state.player_ids,
                "rematchRequests": sorted(state.requests),
                "selectedDifficulty": state.difficulty.value,
            }

        game = self._games.get(room_id)
        if game is not None:
            room, status = game.room, game.status
        else:
            room = await self.store.load(room_id)
            if room is None:
                return None
            status = DuelStatus.STARTED if room.started else DuelStatus.WAITING

        return {
            "roomId": room_id,
            "status": status.name.lower(),
            "players": room.player_ids,
            "started": room.started,
            "startTime": room.start_time,
            "deadline": int(room.deadline() * 1000) if room.started and room.start_time else None,
            "challenge": room.challenge.public_dict(),
            "challengeSource": room.challenge_source.value,
            "selectedDifficulty": room.selected_difficulty.value,
        }

    def active_room_count(self) -> int:
        return sum(1 for g in self._games.values() if g.status == DuelStatus.STARTED)

    async def shutdown(self) -> None:
        """Cancel countdowns, rematch windows and pending archive writes."""
        tasks = [g.timer for g in self._games.values() if g.timer]
        tasks += [s.expiry for s in self._rematches.values() if s.expiry]
        tasks += list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._games.clear()
        self._rematches.clear()
        DUELS_ACTIVE.set(0)
        await self.store.close()


# Global engine instance
duel_engine = DuelEngine()
