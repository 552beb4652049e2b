"""API routes for practice mode and the language registry."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from codeduel.config import settings
from codeduel.game_engine.duel.languages import list_languages
from codeduel.game_engine.practice import PracticeService, practice_service

router = APIRouter()


def get_practice_service() -> PracticeService:
    return practice_service


class ExecuteCodeRequest(BaseModel):
    """Request to run code once."""
    code: str = Field(..., max_length=settings.max_code_length)
    language: str = Field(..., min_length=1)
    input: str = ""


class ExecutionResponse(BaseModel):
    """Result of a single run."""
    status: str
    output: str
    stderr: str
    error: str | None
    time: int | None
    memory: int | None
    exitCode: int | None


@router.get("/languages")
async def get_languages() -> dict[str, Any]:
    """Supported languages with their images and starter code."""
    return list_languages()


@router.post("/practice/execute", response_model=ExecutionResponse)
async def execute_code(
    request: ExecuteCodeRequest,
    practice: PracticeService = Depends(get_practice_service),
) -> ExecutionResponse:
    """Run code in the sandbox with the given stdin."""
    result = await practice.execute(request.code, request.language, request.input)
    return ExecutionResponse(**result.to_dict())
