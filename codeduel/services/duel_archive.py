from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from codeduel.db.database import async_session_factory
from codeduel.db.models.duel import DuelOutcome, DuelRecord
from codeduel.game_engine.duel.room import Room


class DuelArchive:
    """Service for storing and retrieving finished duels."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory or async_session_factory

    async def record(
        self,
        room: Room,
        winner_id: Optional[str],
        outcome: DuelOutcome,
        finished_at: Optional[datetime] = None,
    ) -> DuelRecord:
        """Store the outcome of a finished room."""
        started_at = None
        if room.start_time is not None:
            started_at = datetime.fromtimestamp(room.start_time / 1000, tz=timezone.utc)

        record = DuelRecord(
            room_id=room.room_id,
            challenge_id=room.challenge.id,
            challenge_title=room.challenge.title,
            challenge_source=room.challenge_source.value,
            difficulty=room.selected_difficulty.value,
            players=room.player_ids,
            winner_id=winner_id,
            outcome=outcome.value,
            submissions={
                cid: {
                    "language": s.language,
                    "passed": bool(s.validation.get("passed")),
                    "passedTests": s.validation.get("passedTests", 0),
                    "totalTests": s.validation.get("totalTests", 0),
                }
                for cid, s in room.solutions.items()
            },
            started_at=started_at,
            finished_at=finished_at or datetime.now(timezone.utc),
        )

        async with self.session_factory() as session:
            session.add(record)
            await session.commit()
        return record

    async def recent(self, limit: int = 20) -> list[DuelRecord]:
        """Most recently finished duels first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(DuelRecord)
                .order_by(DuelRecord.finished_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def for_room(self, room_id: str) -> list[DuelRecord]:
        """All archived rounds played in a room id."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(DuelRecord)
                .where(DuelRecord.room_id == room_id)
                .order_by(DuelRecord.finished_at)
            )
            return list(result.scalars().all())
