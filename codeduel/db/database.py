from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from codeduel.config import settings


class Base(DeclarativeBase):
    pass


def engine_options(database_url: str) -> dict[str, Any]:
    """Pool and driver options; the Postgres tuning only applies to asyncpg."""
    if not database_url.startswith("postgresql+asyncpg://"):
        return {"echo": settings.debug}
    return {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 1800,  # Recycle connections every 30 minutes
        "connect_args": {
            "server_settings": {
                "statement_timeout": "30000",  # 30 second query timeout
                "idle_in_transaction_session_timeout": "60000",
            }
        },
    }


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def init_db() -> None:
    """Initialize database connection and create tables if needed."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
