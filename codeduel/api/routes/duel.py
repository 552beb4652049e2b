"""API routes for duel rooms and challenges."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from codeduel.core.exceptions import not_found, bad_request
from codeduel.game_engine.duel.challenges import (
    Difficulty,
    get_all_challenges,
    get_challenge_by_id,
    get_challenges_by_difficulty,
)
from codeduel.game_engine.duel.engine import DuelEngine, duel_engine
from codeduel.services.duel_archive import DuelArchive

router = APIRouter()


def get_duel_engine() -> DuelEngine:
    return duel_engine


def get_duel_archive() -> DuelArchive:
    return DuelArchive()


class DuelRecordResponse(BaseModel):
    """Archived duel in list response."""
    room_id: str
    challenge_id: str
    challenge_title: str
    challenge_source: str
    difficulty: str
    players: list[str]
    winner_id: Optional[str]
    outcome: str
    submissions: dict[str, Any]
    started_at: Optional[str]
    finished_at: str


@router.get("/challenges")
async def list_challenges(difficulty: Optional[str] = Query(None)) -> list[dict[str, Any]]:
    """List built-in challenges (test cases hidden)."""
    if difficulty:
        try:
            challenges = get_challenges_by_difficulty(Difficulty.parse(difficulty))
        except ValueError as e:
            raise bad_request(str(e))
    else:
        challenges = get_all_challenges()
    return [c.public_dict() for c in challenges]


@router.get("/challenges/{challenge_id}")
async def get_challenge(challenge_id: str) -> dict[str, Any]:
    """Get a built-in challenge by id."""
    challenge = get_challenge_by_id(challenge_id)
    if challenge is None:
        raise not_found("Challenge not found")
    return challenge.public_dict()


@router.get("/rooms/{room_id}")
async def get_room(
    room_id: str,
    engine: DuelEngine = Depends(get_duel_engine),
) -> dict[str, Any]:
    """Current status of a duel room."""
    status = await engine.get_status(room_id)
    if status is None:
        raise not_found("Room not found")
    return status


@router.get("/duels/recent", response_model=list[DuelRecordResponse])
async def recent_duels(
    limit: int = Query(20, ge=1, le=100),
    archive: DuelArchive = Depends(get_duel_archive),
) -> list[DuelRecordResponse]:
    """Most recently finished duels."""
    records = await archive.recent(limit)
    return [
        DuelRecordResponse(
            room_id=r.room_id,
            challenge_id=r.challenge_id,
            challenge_title=r.challenge_title,
            challenge_source=r.challenge_source,
            difficulty=r.difficulty,
            players=list(r.players),
            winner_id=r.winner_id,
            outcome=r.outcome,
            submissions=dict(r.submissions),
            started_at=r.started_at.isoformat() if r.started_at else None,
            finished_at=r.finished_at.isoformat(),
        )
        for r in records
    ]
