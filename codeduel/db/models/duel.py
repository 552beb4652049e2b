"""Database models for finished duels."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from codeduel.db.database import Base


class DuelOutcome(str, Enum):
    """How a duel ended."""
    SOLVED = "solved"
    TIME_UP = "time_up"


class DuelRecord(Base):
    """Archived result of one finished duel."""

    __tablename__ = "duel_records"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    room_id: Mapped[str] = mapped_column(String(64), nullable=False)
    challenge_id: Mapped[str] = mapped_column(String(128), nullable=False)
    challenge_title: Mapped[str] = mapped_column(String(300), nullable=False)
    challenge_source: Mapped[str] = mapped_column(String(20), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False)

    # Connection ids in join order
    players: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    winner_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)

    # {connection_id: {"language": ..., "passed": ..., "passedTests": ..., "totalTests": ...}}
    submissions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_duel_records_room_id", "room_id"),
        Index("ix_duel_records_finished_at", "finished_at"),
    )
