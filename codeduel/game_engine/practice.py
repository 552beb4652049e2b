"""
Single-player practice mode.

Runs code against the sandbox without any duel state. Practice challenge
sets are remembered per connection so a later submission can be judged
against the same hidden test cases.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import uuid4

from codeduel.config import settings
from codeduel.core.exceptions import ChallengeNotFoundError
from codeduel.game_engine.duel.challenges import Challenge, Difficulty, get_challenge_by_id
from codeduel.game_engine.duel.judge import SolutionJudge, ValidationResult, judge
from codeduel.game_engine.duel.languages import get_language_config
from codeduel.game_engine.duel.sandbox import ExecutionResult, SandboxExecutor, sandbox
from codeduel.services.challenge_source import ChallengeProvider, challenge_provider

logger = logging.getLogger(__name__)


@dataclass
class PracticeSession:
    """An editor session opened by one connection."""

    session_id: str
    connection_id: str


@dataclass
class PracticeState:
    """Everything practice mode remembers about a connection."""

    sessions: dict[str, PracticeSession] = field(default_factory=dict)
    challenges: dict[str, Challenge] = field(default_factory=dict)


class PracticeService:
    """Session executor for practice mode."""

    def __init__(
        self,
        executor: Optional[SandboxExecutor] = None,
        solution_judge: Optional[SolutionJudge] = None,
        challenges: Optional[ChallengeProvider] = None,
    ):
        self.executor = executor or sandbox
        self.judge = solution_judge or judge
        self.challenges = challenges or challenge_provider
        self._state: dict[str, PracticeState] = {}

    def _state_for(self, connection_id: str) -> PracticeState:
        return self._state.setdefault(connection_id, PracticeState())

    def create_session(self, connection_id: str, language: str) -> dict[str, Any]:
        """Open an editor session and hand back the language's starter code."""
        config = get_language_config(language)
        session = PracticeSession(
            session_id=str(uuid4()),
            connection_id=connection_id,
        )
        self._state_for(connection_id).sessions[session.session_id] = session
        return {"sessionId": session.session_id, "boilerplate": config.boilerplate}

    async def execute(self, code: str, language: str, stdin: str = "") -> ExecutionResult:
        """Run code once with the given stdin."""
        return await self.executor.execute(code, language, stdin or "")

    async def get_practice_challenges(
        self,
        connection_id: str,
        difficulty: Any = None,
        count: int = 5,
    ) -> dict[str, Any]:
        """Fetch a practice set and remember it for this connection."""
        selected = Difficulty.parse(difficulty or settings.default_difficulty)
        challenges = await self.challenges.get_practice_challenges(selected, count)
        if not challenges:
            raise ChallengeNotFoundError("No challenges available")

        state = self._state_for(connection_id)
        state.challenges = {c.id: c for c in challenges}
        return {
            "challenges": [c.public_dict() for c in challenges],
            "selectedDifficulty": selected.value,
        }

    def find_challenge(self, connection_id: str, challenge_id: str) -> Challenge:
        state = self._state.get(connection_id)
        challenge = state.challenges.get(challenge_id) if state else None
        if challenge is None:
            challenge = get_challenge_by_id(challenge_id)
        if challenge is None:
            raise ChallengeNotFoundError()
        return challenge

    async def submit(
        self,
        connection_id: str,
        challenge_id: str,
        code: str,
        language: str,
    ) -> ValidationResult:
        """Judge a practice solution against the challenge's hidden test cases."""
        challenge = self.find_challenge(connection_id, challenge_id)
        validation = await self.judge.validate(code, language, challenge.test_cases)
        logger.info(
            f"Practice submission for '{challenge.title}' by {connection_id}: "
            f"{validation.passed_tests}/{validation.total_tests} passed"
        )
        return validation

    def forget(self, connection_id: str) -> None:
        """Drop sessions and cached challenges of a closed connection."""
        self._state.pop(connection_id, None)

    def session_count(self) -> int:
        return sum(len(s.sessions) for s in self._state.values())


# Global practice service instance
practice_service = PracticeService()
