import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from codeduel.api.routes import duel, practice
from codeduel.api.websocket.handlers import websocket_endpoint
from codeduel.config import settings
from codeduel.core.metrics import MetricsMiddleware, get_metrics
from codeduel.db.database import init_db
from codeduel.game_engine.duel.engine import duel_engine
from codeduel.services.challenge_source import challenge_provider

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    configure_logging()
    if settings.archive_enabled:
        await init_db()
    logger.info(f"Code Duel starting ({settings.environment}, room store: {settings.room_store_backend})")
    yield
    await duel_engine.shutdown()
    await challenge_provider.close()


app = FastAPI(
    title="Code Duel",
    description="Head-to-head competitive programming with sandboxed judging",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.metrics_enabled:
    app.add_middleware(MetricsMiddleware)

# REST API routes
app.include_router(duel.router, prefix="/api", tags=["duel"])
app.include_router(practice.router, prefix="/api", tags=["practice"])

# WebSocket endpoint
app.add_api_websocket_route("/api/ws", websocket_endpoint)


@app.get("/health")
async def health_check() -> dict[str, Any]:
    return {
        "status": "healthy",
        "active_duels": duel_engine.active_room_count(),
    }


@app.get("/metrics")
async def metrics() -> Response:
    content, content_type = await get_metrics()
    return Response(content=content, media_type=content_type)


@app.get("/")
async def root() -> dict[str, Any]:
    return {
        "name": "Code Duel",
        "version": "0.1.0",
        "docs": "/docs",
        "websocket": "/api/ws",
        "modes": {
            "duel": "Two players race to solve the same challenge",
            "practice": "Run code and solve challenges on your own",
        },
    }
