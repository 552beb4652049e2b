"""
Challenge generation service.

Asks a Gemini-style generateContent endpoint for fresh challenges and falls
back to the built-in catalogue whenever the generator is unavailable or
returns something unusable.
"""

import json
import logging
import re
from typing import Any, Optional
from uuid import uuid4

import httpx
from pydantic import ValidationError

from codeduel.config import settings
from codeduel.core.exceptions import ChallengeSourceUnavailable
from codeduel.core.metrics import record_challenge_served
from codeduel.game_engine.duel.challenges import (
    Challenge,
    ChallengeOrigin,
    Difficulty,
    get_challenges_by_difficulty,
    get_fallback_challenge,
)

logger = logging.getLogger(__name__)

# Example id from the schema below, often echoed back verbatim
PLACEHOLDER_ID = "unique-id"

CHALLENGE_SCHEMA = """{
  "id": "unique-id",
  "title": "Challenge title",
  "description": "Detailed problem description",
  "difficulty": "easy|medium|hard",
  "timeLimit": 300,
  "inputFormat": "Description of input format",
  "outputFormat": "Description of expected output format",
  "constraints": ["List of constraints"],
  "examples": [{"input": "Sample input", "output": "Expected output", "explanation": "Why"}],
  "testCases": [{"input": "Test input read from stdin", "output": "Expected stdout"}],
  "boilerplateCode": {"python": "...", "javascript": "...", "cpp": "...", "java": "..."}
}"""

_FENCED_JSON = re.compile(r"```(?:json)?([\s\S]*?)```")


def challenge_prompt(difficulty: Difficulty) -> str:
    return (
        f"Generate a unique, non-trivial {difficulty.value} coding challenge in JSON format. "
        "Do NOT generate a problem about reversing a string, palindromes, anagrams or other "
        "classic beginner problems. Programs read the test input from stdin and print the "
        f"answer to stdout. Use the following structure:\n{CHALLENGE_SCHEMA}\n"
        "Return only the JSON object."
    )


def practice_prompt(difficulty: Difficulty, count: int) -> str:
    return (
        f"Generate an array of {count} unique {difficulty.value} coding challenges in JSON "
        "format. Programs read the test input from stdin and print the answer to stdout. "
        f"Each challenge has the following structure:\n{CHALLENGE_SCHEMA}\n"
        "Return only the JSON array."
    )


def parse_generated_json(text: str) -> Any:
    """Parse model output, accepting a ```json fenced block as well as bare JSON."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        match = _FENCED_JSON.search(text)
        if not match:
            raise ChallengeSourceUnavailable("Failed to parse generated JSON") from None
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError as e:
            raise ChallengeSourceUnavailable("Failed to parse generated JSON") from e


class ChallengeSource:
    """Client for the external challenge generator."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.challenge_source_url
        self.api_key = settings.challenge_source_api_key if api_key is None else api_key
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.challenge_source_timeout,
            transport=transport,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def _generate(self, prompt: str, temperature: float, max_tokens: int) -> Any:
        if not self.enabled:
            raise ChallengeSourceUnavailable("Challenge generator is not configured")

        try:
            response = await self._client.post(
                self.url,
                params={"key": self.api_key},
                json={
                    "contents": [{"parts": [{"text": prompt}]}],
                    "generationConfig": {
                        "temperature": temperature,
                        "maxOutputTokens": max_tokens,
                    },
                },
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ChallengeSourceUnavailable(f"Challenge generator request failed: {e}") from e

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise ChallengeSourceUnavailable("No content from challenge generator") from None

        return parse_generated_json(text)

    async def generate_challenge(self, difficulty: Difficulty) -> Challenge:
        """Generate one challenge. Raises ChallengeSourceUnavailable on any failure."""
        raw = await self._generate(challenge_prompt(difficulty), temperature=0.95, max_tokens=2000)
        if not isinstance(raw, dict):
            raise ChallengeSourceUnavailable("Generated challenge is not an object")
        try:
            return Challenge.model_validate({**raw, "difficulty": difficulty})
        except ValidationError as e:
            raise ChallengeSourceUnavailable(f"Generated challenge is invalid: {e}") from e

    async def generate_practice_challenges(self, difficulty: Difficulty, count: int) -> list[Challenge]:
        """Generate a practice set. Invalid entries are skipped."""
        raw = await self._generate(practice_prompt(difficulty, count), temperature=0.7, max_tokens=3000)
        if not isinstance(raw, list):
            raise ChallengeSourceUnavailable("Generated practice set is not an array")

        challenges = []
        seen: set[str] = set()
        for item in raw[:count]:
            try:
                challenge = Challenge.model_validate(item)
            except ValidationError as e:
                logger.warning(f"Skipping invalid generated practice challenge: {e}")
                continue
            # Ids key practice submissions and must be unique within a set
            if challenge.id in seen or challenge.id == PLACEHOLDER_ID:
                challenge = challenge.model_copy(update={"id": uuid4().hex})
            seen.add(challenge.id)
            challenges.append(challenge)
        if not challenges:
            raise ChallengeSourceUnavailable("No valid practice challenges generated")
        return challenges


class ChallengeProvider:
    """Challenge source with a mandatory built-in fallback."""

    def __init__(self, source: Optional[ChallengeSource] = None):
        self.source = source or ChallengeSource()

    async def get_challenge(self, difficulty: Difficulty) -> tuple[Challenge, ChallengeOrigin]:
        try:
            challenge = await self.source.generate_challenge(difficulty)
            origin = ChallengeOrigin.PRIMARY
        except ChallengeSourceUnavailable as e:
            if self.source.enabled:
                logger.warning(f"Challenge generator failed, using fallback: {e.message}")
            challenge = get_fallback_challenge(difficulty)
            origin = ChallengeOrigin.FALLBACK

        record_challenge_served(origin.value)
        logger.info(f"Serving {origin.value} challenge '{challenge.title}' ({difficulty.value})")
        return challenge, origin

    async def get_practice_challenges(self, difficulty: Difficulty, count: int = 5) -> list[Challenge]:
        try:
            challenges = await self.source.generate_practice_challenges(difficulty, count)
            record_challenge_served(ChallengeOrigin.PRIMARY.value)
            return challenges
        except ChallengeSourceUnavailable as e:
            if self.source.enabled:
                logger.warning(f"Practice generator failed, using fallback: {e.message}")

        record_challenge_served(ChallengeOrigin.FALLBACK.value)
        return get_challenges_by_difficulty(difficulty)[:count]

    async def close(self) -> None:
        await self.source.close()


# Global instance
challenge_provider = ChallengeProvider()
