"""Solution judge for duel and practice submissions.

Validates submissions against a challenge's test cases.
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from codeduel.core.exceptions import UnsupportedLanguageError
from codeduel.core.metrics import record_submission
from codeduel.game_engine.duel.challenges import TestCase
from codeduel.game_engine.duel.languages import get_language_config
from codeduel.game_engine.duel.sandbox import (
    ExecutionResult,
    ExecutionStatus,
    sandbox,
)


class Executor(Protocol):
    async def execute(self, code: str, language: str, stdin: str = "") -> ExecutionResult:
        ...


@dataclass(frozen=True)
class TestResult:
    """Result of running a single test case."""
    passed: bool
    input: str
    expected: str
    actual: str
    error: Optional[str]
    status: ExecutionStatus
    time_ms: Optional[int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "input": self.input,
            "expected": self.expected,
            "actual": self.actual,
            "error": self.error,
            "status": self.status.value,
            "time": self.time_ms,
        }


@dataclass(frozen=True)
class ValidationResult:
    """Complete result of judging a submission."""
    passed: bool  # All tests passed
    results: list[TestResult]

    @property
    def passed_tests(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def total_tests(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "passedTests": self.passed_tests,
            "totalTests": self.total_tests,
            "results": [r.to_dict() for r in self.results],
        }


class SolutionJudge:
    """Judges submissions against test cases.

    Every test case is run, even after a failure, so the player gets the
    full breakdown. Output comparison trims leading and trailing whitespace
    and is otherwise exact.
    """

    def __init__(self, executor: Optional[Executor] = None):
        self.executor = executor or sandbox

    def normalize_output(self, output: str) -> str:
        return output.strip()

    def compare_output(self, expected: str, actual: str) -> bool:
        """Trimmed exact comparison: " 5\\n" matches "5", "5 " does not match "05"."""
        return self.normalize_output(expected) == self.normalize_output(actual)

    async def validate(
        self,
        code: str,
        language: str,
        test_cases: Sequence[TestCase],
    ) -> ValidationResult:
        """Judge a submission against all test cases.

        Args:
            code: Source code to judge
            language: Language name from the runtime registry
            test_cases: Ordered test cases; one result is produced per case

        Returns:
            ValidationResult with results in test case order
        """
        results: list[TestResult] = []

        for test_case in test_cases:
            execution = await self.executor.execute(code, language, test_case.input)

            expected = self.normalize_output(test_case.expected_output)
            actual = self.normalize_output(execution.stdout)
            passed = execution.success and expected == actual

            if execution.success:
                error = None if passed else "Wrong answer"
            else:
                error = execution.error

            results.append(TestResult(
                passed=passed,
                input=test_case.input,
                expected=expected,
                actual=actual,
                error=error,
                status=execution.status,
                time_ms=execution.time_ms,
            ))

        validation = ValidationResult(
            passed=bool(results) and all(r.passed for r in results),
            results=results,
        )
        record_submission(self._language_label(language), self._result_label(validation), len(results))
        return validation

    @staticmethod
    def _language_label(language: str) -> str:
        try:
            get_language_config(language)
        except UnsupportedLanguageError:
            return "unsupported"
        return language.lower()

    @staticmethod
    def _result_label(validation: ValidationResult) -> str:
        if validation.passed:
            return "passed"
        statuses = {r.status for r in validation.results}
        if ExecutionStatus.TIME_LIMIT_EXCEEDED in statuses:
            return "timeout"
        if statuses - {ExecutionStatus.ACCEPTED}:
            return "error"
        return "failed"


# Global judge instance
judge = SolutionJudge()
