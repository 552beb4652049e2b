"""Unit tests for practice mode."""

import pytest

from codeduel.core.exceptions import ChallengeNotFoundError, UnsupportedLanguageError
from codeduel.game_engine.duel.languages import get_language_config
from codeduel.game_engine.duel.sandbox import ExecutionStatus
from codeduel.game_engine.practice import PracticeService
from tests.fakes import (
    PASSING_CODE,
    FakeChallenges,
    FakeExecutor,
    accepted,
)


class EmptyChallenges(FakeChallenges):
    async def get_practice_challenges(self, difficulty, count=5):
        return []


@pytest.fixture
def executor():
    return FakeExecutor({"World": accepted("Hello World")})


@pytest.fixture
def practice(executor, fake_judge):
    return PracticeService(executor=executor, solution_judge=fake_judge, challenges=FakeChallenges())


class TestSessions:
    def test_create_session(self, practice):
        session = practice.create_session("alice", "Python")
        assert session["sessionId"]
        assert session["boilerplate"] == get_language_config("python").boilerplate
        assert practice.session_count() == 1

    def test_sessions_are_distinct(self, practice):
        first = practice.create_session("alice", "python")
        second = practice.create_session("alice", "java")
        assert first["sessionId"] != second["sessionId"]
        assert practice.session_count() == 2

    def test_unsupported_language(self, practice):
        with pytest.raises(UnsupportedLanguageError):
            practice.create_session("alice", "cobol")
        assert practice.session_count() == 0

    def test_forget(self, practice):
        practice.create_session("alice", "python")
        practice.create_session("bob", "cpp")
        practice.forget("alice")
        practice.forget("nobody")
        assert practice.session_count() == 1


class TestExecute:
    @pytest.mark.asyncio
    async def test_execute_passes_stdin(self, practice, executor):
        result = await practice.execute("print('Hello', input())", "python", "World")

        assert result.status == ExecutionStatus.ACCEPTED
        assert result.stdout == "Hello World"
        assert executor.calls == [("print('Hello', input())", "python", "World")]

    @pytest.mark.asyncio
    async def test_execute_defaults_to_empty_stdin(self, practice, executor):
        await practice.execute("print(1)", "python", None)
        assert executor.calls[0][2] == ""


class TestPracticeChallenges:
    @pytest.mark.asyncio
    async def test_fetch_hides_test_cases(self, practice):
        data = await practice.get_practice_challenges("alice", "medium")

        assert data["selectedDifficulty"] == "Intermediate"
        assert len(data["challenges"]) == 1
        assert "testCases" not in data["challenges"][0]

    @pytest.mark.asyncio
    async def test_empty_set(self, fake_judge):
        practice = PracticeService(
            executor=FakeExecutor(), solution_judge=fake_judge, challenges=EmptyChallenges()
        )
        with pytest.raises(ChallengeNotFoundError) as exc:
            await practice.get_practice_challenges("alice")
        assert exc.value.message == "No challenges available"

    @pytest.mark.asyncio
    async def test_submit_against_fetched_challenge(self, practice, fake_judge):
        await practice.get_practice_challenges("alice")

        result = await practice.submit("alice", "sum-test", PASSING_CODE, "python")

        assert result.passed
        assert result.total_tests == 2
        assert fake_judge.calls == [PASSING_CODE]

    @pytest.mark.asyncio
    async def test_submit_failing(self, practice):
        await practice.get_practice_challenges("alice")
        result = await practice.submit("alice", "sum-test", "print(0)", "python")
        assert not result.passed
        assert result.passed_tests == 0

    @pytest.mark.asyncio
    async def test_submit_against_catalogue(self, practice):
        result = await practice.submit("bob", "sum-array", "print(0)", "python")
        assert result.total_tests > 0

    @pytest.mark.asyncio
    async def test_fetched_sets_are_per_connection(self, practice):
        await practice.get_practice_challenges("alice")
        with pytest.raises(ChallengeNotFoundError):
            practice.find_challenge("bob", "sum-test")

    @pytest.mark.asyncio
    async def test_forget_drops_cached_set(self, practice):
        await practice.get_practice_challenges("alice")
        practice.forget("alice")
        with pytest.raises(ChallengeNotFoundError):
            await practice.submit("alice", "sum-test", PASSING_CODE, "python")

    def test_unknown_challenge(self, practice):
        with pytest.raises(ChallengeNotFoundError):
            practice.find_challenge("alice", "does-not-exist")
