from fastapi import HTTPException, status


class CodeDuelError(Exception):
    """Base exception for Code Duel."""

    code = "error"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class RoomNotFoundError(CodeDuelError):
    """Room does not exist (never created, expired or already finished)."""

    code = "room_not_found"

    def __init__(self, message: str = "Game not found"):
        super().__init__(message)


class GameNotStartedError(CodeDuelError):
    """Submission to a room that is not running."""

    code = "game_not_started"

    def __init__(self, message: str = "Game not found or not started"):
        super().__init__(message)


class RoomFullError(CodeDuelError):
    """Room already has two players."""

    code = "room_full"

    def __init__(self, message: str = "Room is full"):
        super().__init__(message)


class NotInRoomError(CodeDuelError):
    """Connection is not one of the room's players."""

    code = "not_in_room"

    def __init__(self, message: str = "You are not a player in this room"):
        super().__init__(message)


class RematchUnavailableError(CodeDuelError):
    """No rematch negotiation is open for the room."""

    code = "rematch_unavailable"

    def __init__(self, message: str = "No rematch available for this room"):
        super().__init__(message)


class ChallengeSourceUnavailable(CodeDuelError):
    """External challenge generator failed."""

    code = "challenge_source_unavailable"


class ChallengeNotFoundError(CodeDuelError):
    """Practice challenge id is unknown."""

    code = "challenge_not_found"

    def __init__(self, message: str = "Challenge not found"):
        super().__init__(message)


class UnsupportedLanguageError(CodeDuelError):
    """Language is not in the runtime registry."""

    code = "unsupported_language"

    def __init__(self, language: str):
        super().__init__(f"Unsupported language: {language}")


class SandboxError(CodeDuelError):
    """Sandbox infrastructure failure (docker missing, image pull, spawn)."""

    code = "sandbox_error"


class StorageError(CodeDuelError):
    """Room store backend failure."""

    code = "storage_error"

    def __init__(self, message: str = "Room storage unavailable"):
        super().__init__(message)


# HTTP Exceptions
def not_found(detail: str = "Resource not found") -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def bad_request(detail: str = "Bad request") -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
