"""Room document shared by the duel engine and the room store."""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Optional

from codeduel.game_engine.duel.challenges import Challenge, ChallengeOrigin, Difficulty

MAX_PLAYERS = 2


class DuelStatus(Enum):
    """Lifecycle of a duel room."""

    WAITING = auto()          # 0-1 players joined
    STARTED = auto()          # Both players in, countdown running
    FINISHED = auto()         # Solved or time ran out
    REMATCH_PENDING = auto()  # Waiting for both players to agree
    CLOSED = auto()           # Nothing left to do


@dataclass
class Player:
    """A connection taking part in a duel."""

    id: str
    ready: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "ready": self.ready}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Player":
        return cls(id=str(data["id"]), ready=bool(data.get("ready", True)))


@dataclass
class Solution:
    """A player's latest submission."""

    code: str
    language: str
    validation: dict[str, Any]
    submitted_at: int  # epoch milliseconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "language": self.language,
            "validation": self.validation,
            "submittedAt": self.submitted_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Solution":
        return cls(
            code=data.get("code", ""),
            language=data.get("language", ""),
            validation=data.get("validation") or {},
            submitted_at=int(data.get("submittedAt") or 0),
        )


@dataclass
class Room:
    """Durable state of one duel room."""

    room_id: str
    challenge: Challenge
    challenge_source: ChallengeOrigin
    selected_difficulty: Difficulty
    players: list[Player] = field(default_factory=list)
    solutions: dict[str, Solution] = field(default_factory=dict)
    started: bool = False
    start_time: Optional[int] = None  # epoch milliseconds

    @property
    def player_ids(self) -> list[str]:
        return [p.id for p in self.players]

    def has_player(self, connection_id: str) -> bool:
        return any(p.id == connection_id for p in self.players)

    @property
    def is_full(self) -> bool:
        return len(self.players) >= MAX_PLAYERS

    def deadline(self) -> Optional[float]:
        """Epoch seconds at which the countdown expires."""
        if self.start_time is None:
            return None
        return self.start_time / 1000 + self.challenge.time_limit

    def to_dict(self) -> dict[str, Any]:
        return {
            "roomId": self.room_id,
            "challenge": self.challenge.to_dict(),
            "challengeSource": self.challenge_source.value,
            "selectedDifficulty": self.selected_difficulty.value,
            "players": [p.to_dict() for p in self.players],
            "solutions": {cid: s.to_dict() for cid, s in self.solutions.items()},
            "started": self.started,
            "startTime": self.start_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Room":
        return cls(
            room_id=data["roomId"],
            challenge=Challenge.model_validate(data["challenge"]),
            challenge_source=ChallengeOrigin(data.get("challengeSource", ChallengeOrigin.FALLBACK.value)),
            selected_difficulty=Difficulty.parse(data.get("selectedDifficulty") or Difficulty.BEGINNER),
            players=[Player.from_dict(p) for p in data.get("players", [])],
            solutions={
                cid: Solution.from_dict(s) for cid, s in (data.get("solutions") or {}).items()
            },
            started=bool(data.get("started", False)),
            start_time=data.get("startTime"),
        )
