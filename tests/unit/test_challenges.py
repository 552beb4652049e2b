"""Unit tests for challenge documents and the built-in catalogue."""

import pytest
from pydantic import ValidationError

from codeduel.game_engine.duel.challenges import (
    FALLBACK_CHALLENGES,
    Challenge,
    Difficulty,
    get_challenge_by_id,
    get_challenges_by_difficulty,
    get_fallback_challenge,
    normalize_text,
)


class TestNormalizeText:
    def test_strings_untouched(self):
        assert normalize_text(" 1 2 \n") == " 1 2 \n"

    def test_scalars(self):
        assert normalize_text(None) == ""
        assert normalize_text(42) == "42"
        assert normalize_text(True) == "true"

    def test_arrays_become_lines(self):
        assert normalize_text(["horse", "ros"]) == "horse\nros"
        assert normalize_text([[1, 2], [3, 4]]) == "1 2\n3 4"

    def test_objects_become_json(self):
        assert normalize_text({"a": 1}) == '{"a": 1}'


class TestDifficulty:
    @pytest.mark.parametrize("raw,expected", [
        ("easy", Difficulty.BEGINNER),
        ("Beginner", Difficulty.BEGINNER),
        ("medium", Difficulty.INTERMEDIATE),
        ("HARD", Difficulty.ADVANCED),
        ("expert", Difficulty.ADVANCED),
    ])
    def test_parse(self, raw, expected):
        assert Difficulty.parse(raw) == expected

    def test_unknown_difficulty(self):
        with pytest.raises(ValueError):
            Difficulty.parse("impossible")


class TestChallenge:
    def test_generator_json_is_normalized_once(self):
        challenge = Challenge.model_validate({
            "id": 7,
            "title": "Edit distance",
            "difficulty": "hard",
            "timeLimit": 600,
            "testCases": [
                {"input": ["horse", "ros"], "output": 3},
                {"input": "a b", "expectedOutput": ["x", "y"]},
            ],
            "examples": [{"input": [1, 2], "output": 3}],
            "constraints": "n <= 500",
        })

        assert challenge.id == "7"
        assert challenge.difficulty == Difficulty.ADVANCED
        assert challenge.time_limit == 600
        assert challenge.test_cases[0].input == "horse\nros"
        assert challenge.test_cases[0].expected_output == "3"
        assert challenge.test_cases[1].expected_output == "x\ny"
        assert challenge.examples[0].input == "1\n2"
        assert challenge.constraints == ["n <= 500"]

    def test_requires_test_cases(self):
        with pytest.raises(ValidationError):
            Challenge.model_validate({"title": "No tests", "testCases": []})

    def test_is_frozen(self):
        challenge = FALLBACK_CHALLENGES[0]
        with pytest.raises(ValidationError):
            challenge.title = "changed"

    def test_public_dict_hides_test_cases(self):
        data = get_challenge_by_id("sum-array").public_dict()
        assert "testCases" not in data
        assert data["timeLimit"] == 300
        assert set(data["boilerplateCode"]) == {"python", "javascript", "cpp", "java"}

    def test_to_dict_round_trips(self):
        challenge = get_challenge_by_id("max-subarray")
        again = Challenge.model_validate(challenge.to_dict())
        assert again == challenge
        assert challenge.to_dict()["testCases"][0]["output"] == "6"

    def test_boilerplate_falls_back_to_registry(self):
        challenge = get_challenge_by_id("reverse-string")
        assert "reverse" in challenge.boilerplate_for("python")
        assert challenge.boilerplate_for("javascript")


class TestCatalogue:
    def test_every_difficulty_has_challenges(self):
        for difficulty in Difficulty:
            assert get_challenges_by_difficulty(difficulty)

    def test_unknown_id(self):
        assert get_challenge_by_id("does-not-exist") is None

    def test_fallback_prefers_requested_difficulty(self):
        for _ in range(20):
            assert get_fallback_challenge(Difficulty.INTERMEDIATE).difficulty == Difficulty.INTERMEDIATE

    def test_fallback_without_difficulty(self):
        assert get_fallback_challenge() in FALLBACK_CHALLENGES
