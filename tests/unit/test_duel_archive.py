"""Tests for the finished-duel archive."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from codeduel.db.models.duel import DuelOutcome
from codeduel.game_engine.duel.challenges import ChallengeOrigin, Difficulty
from codeduel.game_engine.duel.room import Player, Room, Solution
from tests.fakes import PASSING_CODE, make_challenge


def finished_room(room_id: str = "room-1") -> Room:
    return Room(
        room_id=room_id,
        challenge=make_challenge(),
        challenge_source=ChallengeOrigin.FALLBACK,
        selected_difficulty=Difficulty.BEGINNER,
        players=[Player(id="alice"), Player(id="bob")],
        solutions={
            "alice": Solution(
                code=PASSING_CODE,
                language="python",
                validation={"passed": True, "passedTests": 2, "totalTests": 2, "results": []},
                submitted_at=1_700_000_030_000,
            ),
        },
        started=True,
        start_time=1_700_000_000_000,
    )


@pytest.mark.asyncio
async def test_record(archive):
    record = await archive.record(finished_room(), "alice", DuelOutcome.SOLVED)

    assert record.id is not None
    assert record.challenge_id == "sum-test"
    assert record.challenge_source == "fallback"
    assert record.players == ["alice", "bob"]
    assert record.outcome == "solved"
    assert record.submissions["alice"] == {
        "language": "python",
        "passed": True,
        "passedTests": 2,
        "totalTests": 2,
    }
    assert record.started_at == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


@pytest.mark.asyncio
async def test_recent_newest_first(archive):
    now = datetime.now(timezone.utc)
    await archive.record(finished_room("old"), None, DuelOutcome.TIME_UP, now - timedelta(minutes=5))
    await archive.record(finished_room("new"), "alice", DuelOutcome.SOLVED, now)

    records = await archive.recent()
    assert [r.room_id for r in records] == ["new", "old"]
    assert records[1].winner_id is None

    assert len(await archive.recent(limit=1)) == 1


@pytest.mark.asyncio
async def test_for_room_lists_every_round(archive):
    now = datetime.now(timezone.utc)
    await archive.record(finished_room("room-1"), "alice", DuelOutcome.SOLVED, now - timedelta(minutes=1))
    await archive.record(finished_room("room-1"), "bob", DuelOutcome.SOLVED, now)
    await archive.record(finished_room("room-2"), None, DuelOutcome.TIME_UP, now)

    rounds = await archive.for_room("room-1")
    assert [r.winner_id for r in rounds] == ["alice", "bob"]


@pytest.mark.asyncio
async def test_engine_archives_finished_duels(engine_factory, archive):
    engine = engine_factory(archive=archive)
    created = await engine.create_room("alice")
    await engine.join_room("bob", created["roomId"])
    await engine.submit("alice", created["roomId"], PASSING_CODE, "python")

    records = []
    for _ in range(100):
        records = await archive.for_room(created["roomId"])
        if records:
            break
        await asyncio.sleep(0.01)

    assert len(records) == 1
    assert records[0].winner_id == "alice"
    assert records[0].outcome == DuelOutcome.SOLVED.value
