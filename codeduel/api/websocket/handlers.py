import asyncio
import json
import logging
from typing import Any, Awaitable, Optional
from uuid import uuid4

from fastapi import Query, WebSocket, WebSocketDisconnect

from codeduel.api.websocket.manager import manager
from codeduel.core.exceptions import CodeDuelError
from codeduel.core.metrics import record_websocket_message, track_websocket_connection
from codeduel.game_engine.duel.engine import DuelEngine, duel_engine
from codeduel.game_engine.practice import PracticeService, practice_service

logger = logging.getLogger(__name__)


def error_message(
    message: str,
    code: str = "error",
    msg_type: str = "error",
    request_id: Any = None,
) -> dict[str, Any]:
    reply: dict[str, Any] = {"type": msg_type, "error": message, "code": code}
    if request_id is not None:
        reply["request_id"] = request_id
    return reply


def reply_message(msg_type: str, data: Any = None, request_id: Any = None) -> dict[str, Any]:
    reply: dict[str, Any] = {"type": msg_type}
    if data is not None:
        reply["data"] = data
    if request_id is not None:
        reply["request_id"] = request_id
    return reply


class WebSocketHandler:
    """Handles WebSocket messages for duels and practice mode.

    Quick requests are answered inline. Anything that runs code (duel
    submissions, practice runs and submissions) is spawned as a task and
    answered when it finishes, so one connection can keep talking while
    its code is being judged.
    """

    # Replies for errors raised by these message types keep their own type
    ERROR_TYPES = {
        "submit_solution": "submission_result",
        "request_rematch": "rematch_error",
        "decline_rematch": "rematch_error",
        "execute_code": "execution_result",
        "submit_practice_solution": "practice_submission_result",
    }

    MESSAGE_TYPES = frozenset({
        "ping",
        "create_room",
        "join_room",
        "submit_solution",
        "request_rematch",
        "decline_rematch",
        "create_session",
        "execute_code",
        "get_practice_challenges",
        "submit_practice_solution",
    })

    def __init__(
        self,
        engine: Optional[DuelEngine] = None,
        practice: Optional[PracticeService] = None,
    ):
        self.engine = engine or duel_engine
        self.practice = practice or practice_service
        self._tasks: set[asyncio.Task] = set()

    def _spawn(
        self,
        connection_id: str,
        msg_type: str,
        request_id: Any,
        reply_type: str,
        work: Awaitable[Any],
    ) -> None:
        async def run() -> None:
            try:
                result = await work
                reply = reply_message(reply_type, result.to_dict(), request_id)
            except CodeDuelError as e:
                reply = error_message(e.message, e.code, reply_type, request_id)
            except ValueError as e:
                reply = error_message(str(e), "invalid_message", reply_type, request_id)
            except Exception:
                logger.exception(f"Unhandled error processing {msg_type} for {connection_id}")
                reply = error_message("Failed to process request", "internal_error", reply_type, request_id)
            record_websocket_message("outbound", reply_type)
            await manager.send_personal(connection_id, reply)

        task = asyncio.create_task(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_message(
        self,
        connection_id: str,
        message: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Handle an incoming WebSocket message."""
        msg_type = message.get("type")
        request_id = message.get("request_id")
        known = isinstance(msg_type, str) and msg_type in self.MESSAGE_TYPES
        label = msg_type if known else "unknown"
        record_websocket_message("inbound", label)

        try:
            return await self._dispatch(connection_id, msg_type, message, request_id)
        except CodeDuelError as e:
            reply_type = self.ERROR_TYPES.get(label, "error")
            return error_message(e.message, e.code, reply_type, request_id)
        except ValueError as e:
            return error_message(str(e), "invalid_message", request_id=request_id)
        except (TypeError, AttributeError) as e:
            logger.info(f"Malformed {label} message from {connection_id}: {e}")
            reply_type = self.ERROR_TYPES.get(label, "error")
            return error_message(f"Malformed {label} message", "invalid_message", reply_type, request_id)

    async def _dispatch(
        self,
        connection_id: str,
        msg_type: Any,
        message: dict[str, Any],
        request_id: Any,
    ) -> dict[str, Any] | None:
        if msg_type == "ping":
            return reply_message("pong", request_id=request_id)

        elif msg_type == "create_room":
            data = await self.engine.create_room(connection_id, message.get("difficulty"))
            return reply_message("room_created", data, request_id)

        elif msg_type == "join_room":
            room_id = message.get("room_id")
            if not room_id:
                return error_message("Missing room_id", "invalid_message", request_id=request_id)
            data = await self.engine.join_room(connection_id, str(room_id))
            return reply_message("room_joined", data, request_id)

        elif msg_type == "submit_solution":
            room_id = message.get("room_id")
            language = message.get("language")
            if not room_id or not language:
                return error_message(
                    "Missing room_id or language", "invalid_message", "submission_result", request_id
                )
            self._spawn(
                connection_id, msg_type, request_id, "submission_result",
                self.engine.submit(connection_id, str(room_id), message.get("code") or "", language),
            )
            return None

        elif msg_type == "request_rematch":
            room_id = message.get("room_id")
            if not room_id:
                return error_message("Missing room_id", "invalid_message", "rematch_error", request_id)
            await self.engine.request_rematch(connection_id, str(room_id), message.get("difficulty"))
            return None

        elif msg_type == "decline_rematch":
            room_id = message.get("room_id")
            if not room_id:
                return error_message("Missing room_id", "invalid_message", "rematch_error", request_id)
            await self.engine.decline_rematch(connection_id, str(room_id))
            return None

        elif msg_type == "create_session":
            language = message.get("language")
            if not language:
                return error_message("Missing language", "invalid_message", request_id=request_id)
            data = self.practice.create_session(connection_id, language)
            return reply_message("session_created", data, request_id)

        elif msg_type == "execute_code":
            language = message.get("language")
            if not language:
                return error_message(
                    "Missing language", "invalid_message", "execution_result", request_id
                )
            self._spawn(
                connection_id, msg_type, request_id, "execution_result",
                self.practice.execute(message.get("code") or "", language, message.get("input") or ""),
            )
            return None

        elif msg_type == "get_practice_challenges":
            data = await self.practice.get_practice_challenges(connection_id, message.get("difficulty"))
            return reply_message("practice_challenges", data, request_id)

        elif msg_type == "submit_practice_solution":
            challenge_id = message.get("challenge_id")
            language = message.get("language")
            if not challenge_id or not language:
                return error_message(
                    "Missing challenge_id or language", "invalid_message",
                    "practice_submission_result", request_id,
                )
            self._spawn(
                connection_id, msg_type, request_id, "practice_submission_result",
                self.practice.submit(connection_id, str(challenge_id), message.get("code") or "", language),
            )
            return None

        return error_message(f"Unknown message type: {msg_type}", "unknown_message", request_id=request_id)

    async def handle_disconnect(self, connection_id: str) -> None:
        await manager.disconnect(connection_id)
        self.practice.forget(connection_id)
        await self.engine.disconnect(connection_id)


ws_handler = WebSocketHandler()


@track_websocket_connection("duel")
async def websocket_endpoint(
    websocket: WebSocket,
    player_id: str | None = Query(None, max_length=64),
) -> None:
    """WebSocket endpoint for duels and practice mode.

    A client that reconnects may pass its previous player_id to resume
    its place in a room.
    """
    connection_id = player_id or uuid4().hex
    if manager.is_connected(connection_id):
        await websocket.close(code=4009, reason="player_id already connected")
        return

    await manager.connect(websocket, connection_id)

    try:
        await websocket.send_json({"type": "connected", "player_id": connection_id})

        while True:
            try:
                data = await websocket.receive_text()
                message = json.loads(data)
                if not isinstance(message, dict):
                    raise json.JSONDecodeError("Expected an object", data, 0)

                response = await ws_handler.handle_message(connection_id, message)
                if response:
                    record_websocket_message("outbound", response["type"])
                    await websocket.send_json(response)

            except json.JSONDecodeError:
                await websocket.send_json(error_message("Invalid JSON", "invalid_message"))

    except WebSocketDisconnect:
        pass
    finally:
        await ws_handler.handle_disconnect(connection_id)
