"""Unit tests for the challenge generator client and its fallback."""

import json

import httpx
import pytest

from codeduel.core.exceptions import ChallengeSourceUnavailable
from codeduel.game_engine.duel.challenges import ChallengeOrigin, Difficulty
from codeduel.game_engine.practice import PracticeService
from codeduel.services.challenge_source import (
    ChallengeProvider,
    ChallengeSource,
    parse_generated_json,
)
from tests.fakes import FakeExecutor

GENERATED = {
    "id": "gen-1",
    "title": "Count Vowels",
    "description": "Print how many vowels the input line contains.",
    "difficulty": "easy",
    "timeLimit": 120,
    "testCases": [
        {"input": "hello", "output": "2"},
        {"input": "sky", "output": 0},
    ],
}


def generator_reply(payload) -> dict:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def make_source(handler, api_key: str = "test-key") -> ChallengeSource:
    return ChallengeSource(
        url="https://generator.test/v1/generate",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


class TestParseGeneratedJson:
    def test_bare_json(self):
        assert parse_generated_json('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        text = 'Here you go:\n```json\n[{"a": 1}]\n```\nEnjoy!'
        assert parse_generated_json(text) == [{"a": 1}]

    def test_garbage(self):
        with pytest.raises(ChallengeSourceUnavailable):
            parse_generated_json("I cannot do that")

    def test_broken_fence(self):
        with pytest.raises(ChallengeSourceUnavailable):
            parse_generated_json("```json\n{not json}\n```")


class TestChallengeSource:
    @pytest.mark.asyncio
    async def test_generate_challenge(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=generator_reply(GENERATED))

        source = make_source(handler)
        challenge = await source.generate_challenge(Difficulty.ADVANCED)
        await source.close()

        assert challenge.title == "Count Vowels"
        # Always the difficulty that was asked for
        assert challenge.difficulty == Difficulty.ADVANCED
        assert challenge.test_cases[1].expected_output == "0"
        assert seen[0].url.params["key"] == "test-key"
        body = json.loads(seen[0].content)
        assert "Advanced" in body["contents"][0]["parts"][0]["text"]

    @pytest.mark.asyncio
    async def test_generate_from_fenced_reply(self):
        def handler(request):
            return httpx.Response(200, json=generator_reply(f"```json\n{json.dumps(GENERATED)}\n```"))

        source = make_source(handler)
        challenge = await source.generate_challenge(Difficulty.BEGINNER)
        await source.close()
        assert challenge.id == "gen-1"

    @pytest.mark.asyncio
    async def test_http_error(self):
        source = make_source(lambda request: httpx.Response(503, json={"error": "overloaded"}))
        with pytest.raises(ChallengeSourceUnavailable):
            await source.generate_challenge(Difficulty.BEGINNER)
        await source.close()

    @pytest.mark.asyncio
    async def test_missing_content(self):
        source = make_source(lambda request: httpx.Response(200, json={"candidates": []}))
        with pytest.raises(ChallengeSourceUnavailable):
            await source.generate_challenge(Difficulty.BEGINNER)
        await source.close()

    @pytest.mark.asyncio
    async def test_invalid_challenge(self):
        broken = {**GENERATED, "testCases": []}
        source = make_source(lambda request: httpx.Response(200, json=generator_reply(broken)))
        with pytest.raises(ChallengeSourceUnavailable):
            await source.generate_challenge(Difficulty.BEGINNER)
        await source.close()

    @pytest.mark.asyncio
    async def test_disabled_without_key(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=generator_reply(GENERATED))

        source = make_source(handler, api_key="")
        assert not source.enabled
        with pytest.raises(ChallengeSourceUnavailable):
            await source.generate_challenge(Difficulty.BEGINNER)
        await source.close()
        assert calls == []

    @pytest.mark.asyncio
    async def test_practice_set_skips_invalid_items(self):
        items = [GENERATED, {"title": "No tests"}, {**GENERATED, "id": "gen-2"}]
        source = make_source(lambda request: httpx.Response(200, json=generator_reply(items)))

        challenges = await source.generate_practice_challenges(Difficulty.BEGINNER, 5)
        await source.close()

        assert [c.id for c in challenges] == ["gen-1", "gen-2"]

    @pytest.mark.asyncio
    async def test_practice_set_ids_are_unique(self):
        items = [
            {**GENERATED, "id": "unique-id", "title": "First"},
            {**GENERATED, "id": "unique-id", "title": "Second"},
            {**GENERATED, "title": "Third"},
            {**GENERATED, "title": "Fourth"},
        ]
        source = make_source(lambda request: httpx.Response(200, json=generator_reply(items)))

        challenges = await source.generate_practice_challenges(Difficulty.BEGINNER, 5)
        await source.close()

        ids = [c.id for c in challenges]
        assert [c.title for c in challenges] == ["First", "Second", "Third", "Fourth"]
        assert len(set(ids)) == 4
        assert "unique-id" not in ids
        assert ids[2] == "gen-1"

    @pytest.mark.asyncio
    async def test_practice_set_must_be_array(self):
        source = make_source(lambda request: httpx.Response(200, json=generator_reply(GENERATED)))
        with pytest.raises(ChallengeSourceUnavailable):
            await source.generate_practice_challenges(Difficulty.BEGINNER, 3)
        await source.close()


class TestChallengeProvider:
    @pytest.mark.asyncio
    async def test_primary(self):
        provider = ChallengeProvider(
            make_source(lambda request: httpx.Response(200, json=generator_reply(GENERATED)))
        )
        challenge, origin = await provider.get_challenge(Difficulty.BEGINNER)
        await provider.close()

        assert origin == ChallengeOrigin.PRIMARY
        assert challenge.id == "gen-1"

    @pytest.mark.asyncio
    async def test_fallback_on_failure(self):
        provider = ChallengeProvider(make_source(lambda request: httpx.Response(500)))
        challenge, origin = await provider.get_challenge(Difficulty.INTERMEDIATE)
        await provider.close()

        assert origin == ChallengeOrigin.FALLBACK
        assert challenge.difficulty == Difficulty.INTERMEDIATE
        assert challenge.test_cases

    @pytest.mark.asyncio
    async def test_fallback_when_disabled(self):
        provider = ChallengeProvider(make_source(lambda request: httpx.Response(500), api_key=""))
        _, origin = await provider.get_challenge(Difficulty.ADVANCED)
        await provider.close()
        assert origin == ChallengeOrigin.FALLBACK

    @pytest.mark.asyncio
    async def test_practice_fallback(self):
        provider = ChallengeProvider(make_source(lambda request: httpx.Response(500)))
        challenges = await provider.get_practice_challenges(Difficulty.BEGINNER, count=1)
        await provider.close()

        assert len(challenges) == 1
        assert challenges[0].difficulty == Difficulty.BEGINNER

    @pytest.mark.asyncio
    async def test_practice_primary(self):
        provider = ChallengeProvider(
            make_source(lambda request: httpx.Response(200, json=generator_reply([GENERATED])))
        )
        challenges = await provider.get_practice_challenges(Difficulty.BEGINNER)
        await provider.close()
        assert [c.id for c in challenges] == ["gen-1"]

    @pytest.mark.asyncio
    async def test_practice_lookup_with_repeated_ids(self, fake_judge):
        items = [
            {**GENERATED, "id": "unique-id", "title": "First"},
            {**GENERATED, "id": "unique-id", "title": "Second"},
        ]
        provider = ChallengeProvider(
            make_source(lambda request: httpx.Response(200, json=generator_reply(items)))
        )
        practice = PracticeService(executor=FakeExecutor(), solution_judge=fake_judge, challenges=provider)

        data = await practice.get_practice_challenges("alice", "easy")
        await provider.close()

        listed = data["challenges"]
        assert [c["title"] for c in listed] == ["First", "Second"]
        for item in listed:
            assert practice.find_challenge("alice", item["id"]).title == item["title"]
