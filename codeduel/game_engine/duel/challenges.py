"""Challenge documents and the built-in fallback catalogue.

Challenges arrive as loosely typed JSON from the external generator, so
every test case and example is normalized to plain strings here, once, on
ingestion. Nothing downstream has to care whether the generator emitted
an array where a string was expected.
"""

import json
import random
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from codeduel.game_engine.duel.languages import LANGUAGE_CONFIGS, get_language_config


class Difficulty(str, Enum):
    """Challenge difficulty levels."""
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"

    @classmethod
    def parse(cls, value: Any) -> "Difficulty":
        """Accept both the duel labels and easy/medium/hard."""
        if isinstance(value, cls):
            return value
        aliases = {
            "beginner": cls.BEGINNER,
            "easy": cls.BEGINNER,
            "intermediate": cls.INTERMEDIATE,
            "medium": cls.INTERMEDIATE,
            "advanced": cls.ADVANCED,
            "hard": cls.ADVANCED,
            "expert": cls.ADVANCED,
        }
        key = str(value).strip().lower()
        if key not in aliases:
            raise ValueError(f"Unknown difficulty: {value}")
        return aliases[key]


class ChallengeOrigin(str, Enum):
    """Where a room's challenge came from."""
    PRIMARY = "primary"  # External generator
    FALLBACK = "fallback"  # Built-in catalogue


def normalize_text(value: Any) -> str:
    """Coerce generator output into the string a program reads or prints.

    Arrays become one line per element (nested arrays space-separated),
    objects are JSON-encoded and null becomes the empty string.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return json.dumps(value)
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return "\n".join(
            " ".join(normalize_text(v) for v in item) if isinstance(item, (list, tuple))
            else normalize_text(item)
            for item in value
        )
    if isinstance(value, dict):
        return json.dumps(value)
    return str(value)


class TestCase(BaseModel):
    """A single hidden test case."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    input: str = ""
    expected_output: str = Field(
        default="",
        validation_alias=AliasChoices("expected_output", "output", "expectedOutput", "expected"),
        serialization_alias="output",
    )

    @field_validator("input", "expected_output", mode="before")
    @classmethod
    def _to_text(cls, v: Any) -> str:
        return normalize_text(v)


class Example(BaseModel):
    """A worked example shown to players."""
    model_config = ConfigDict(frozen=True)

    input: str = ""
    output: str = ""
    explanation: str = ""

    @field_validator("input", "output", "explanation", mode="before")
    @classmethod
    def _to_text(cls, v: Any) -> str:
        return normalize_text(v)


class Challenge(BaseModel):
    """A coding challenge. Immutable once assigned to a room."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    title: str = Field(..., min_length=1)
    description: str = ""
    difficulty: Difficulty = Difficulty.BEGINNER
    time_limit: float = Field(300, alias="timeLimit", gt=0)  # seconds
    input_format: str = Field("", alias="inputFormat")
    output_format: str = Field("", alias="outputFormat")
    constraints: list[str] = Field(default_factory=list)
    examples: list[Example] = Field(default_factory=list)
    test_cases: list[TestCase] = Field(..., alias="testCases", min_length=1)
    boilerplate_code: dict[str, str] = Field(default_factory=dict, alias="boilerplateCode")

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_text(cls, v: Any) -> str:
        return normalize_text(v) or uuid4().hex

    @field_validator("difficulty", mode="before")
    @classmethod
    def _parse_difficulty(cls, v: Any) -> Difficulty:
        return Difficulty.parse(v)

    @field_validator("constraints", mode="before")
    @classmethod
    def _constraints_to_text(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [normalize_text(item) for item in v]

    @field_validator("boilerplate_code", mode="before")
    @classmethod
    def _boilerplate_to_text(cls, v: Any) -> dict[str, str]:
        if not v:
            return {}
        return {str(lang): normalize_text(code) for lang, code in dict(v).items()}

    def boilerplate_for(self, language: str) -> str:
        """Starter code for a language, defaulting to the registry's."""
        if language in self.boilerplate_code:
            return self.boilerplate_code[language]
        return get_language_config(language).boilerplate

    def to_dict(self) -> dict[str, Any]:
        """Full document, test cases included (storage only)."""
        return self.model_dump(mode="json", by_alias=True)

    def public_dict(self) -> dict[str, Any]:
        """What players see: everything except the hidden test cases."""
        data = self.model_dump(mode="json", by_alias=True, exclude={"test_cases"})
        data["boilerplateCode"] = {
            lang.value: self.boilerplate_for(lang.value) for lang in LANGUAGE_CONFIGS
        }
        return data


_SUM_ARRAY_BOILERPLATE = {
    "python": (
        "# Read space-separated integers from input\n"
        "nums = list(map(int, input().strip().split()))\n\n"
        "# Write your code here to find the sum\n"
        "# Print the result\n"
    ),
    "javascript": (
        "// Read space-separated integers from input\n"
        "const nums = require('fs').readFileSync(0, 'utf8').trim().split(/\\s+/).map(Number);\n\n"
        "// Write your code here to find the sum\n"
        "// Print the result\n"
    ),
    "cpp": (
        "#include <iostream>\n#include <vector>\nusing namespace std;\n\n"
        "int main() {\n"
        "    vector<int> nums;\n"
        "    int num;\n"
        "    while (cin >> num) nums.push_back(num);\n\n"
        "    // Write your code here to find the sum\n"
        "    // Print the result\n"
        "    return 0;\n"
        "}\n"
    ),
    "java": (
        "import java.util.*;\n\n"
        "public class Main {\n"
        "    public static void main(String[] args) {\n"
        "        Scanner scanner = new Scanner(System.in);\n"
        "        List<Integer> nums = new ArrayList<>();\n"
        "        while (scanner.hasNextInt()) nums.add(scanner.nextInt());\n\n"
        "        // Write your code here to find the sum\n"
        "        // Print the result\n"
        "    }\n"
        "}\n"
    ),
}

_REVERSE_STRING_BOILERPLATE = {
    "python": (
        "# Read the input string\n"
        "s = input().strip()\n\n"
        "# Write your code here to reverse the string\n"
        "# Print the result\n"
    ),
    "cpp": (
        "#include <iostream>\n#include <string>\nusing namespace std;\n\n"
        "int main() {\n"
        "    string s;\n"
        "    getline(cin, s);\n\n"
        "    // Write your code here to reverse the string\n"
        "    // Print the result\n"
        "    return 0;\n"
        "}\n"
    ),
}


# Raw documents in the same shape the external generator produces
_RAW_CHALLENGES: list[dict[str, Any]] = [
    {
        "id": "sum-array",
        "title": "Sum of Array",
        "description": "Given an array of integers, find the sum of all elements.",
        "difficulty": "easy",
        "timeLimit": 300,
        "inputFormat": "A single line containing space-separated integers.",
        "outputFormat": "A single integer representing the sum of all elements.",
        "constraints": [
            "Array length is between 1 and 1000",
            "Each element is between -1000 and 1000",
        ],
        "examples": [
            {"input": "1 2 3 4 5", "output": "15", "explanation": "1 + 2 + 3 + 4 + 5 = 15"},
            {"input": "-1 -2 3 4", "output": "4", "explanation": "(-1) + (-2) + 3 + 4 = 4"},
        ],
        "testCases": [
            {"input": "1 2 3 4 5", "output": "15"},
            {"input": "-1 -2 3 4", "output": "4"},
            {"input": "0", "output": "0"},
            {"input": "10 -10", "output": "0"},
            {"input": "1 1 1 1 1", "output": "5"},
        ],
        "boilerplateCode": _SUM_ARRAY_BOILERPLATE,
    },
    {
        "id": "reverse-string",
        "title": "Reverse String",
        "description": "Given a string, print it reversed.",
        "difficulty": "easy",
        "timeLimit": 300,
        "inputFormat": "A single line containing a string.",
        "outputFormat": "A single line containing the reversed string.",
        "constraints": [
            "String length is between 1 and 1000",
            "String contains only ASCII characters",
        ],
        "examples": [
            {"input": "hello", "output": "olleh", "explanation": "The characters are reversed in order"},
            {"input": "world!", "output": "!dlrow", "explanation": "Punctuation is reversed too"},
        ],
        "testCases": [
            {"input": "hello", "output": "olleh"},
            {"input": "world!", "output": "!dlrow"},
            {"input": "a", "output": "a"},
            {"input": "12345", "output": "54321"},
            {"input": "radar", "output": "radar"},
        ],
        "boilerplateCode": _REVERSE_STRING_BOILERPLATE,
    },
    {
        "id": "balanced-brackets",
        "title": "Balanced Brackets",
        "description": (
            "Given a string made of the characters ()[]{}, decide whether every "
            "bracket is closed by the matching bracket in the correct order."
        ),
        "difficulty": "medium",
        "timeLimit": 600,
        "inputFormat": "A single line containing only bracket characters.",
        "outputFormat": "YES if the string is balanced, otherwise NO.",
        "constraints": ["String length is between 1 and 10000"],
        "examples": [
            {"input": "{[()]}", "output": "YES", "explanation": "Each opener is closed in reverse order"},
            {"input": "([)]", "output": "NO", "explanation": "The square bracket closes before the parenthesis"},
        ],
        "testCases": [
            {"input": "()[]{}", "output": "YES"},
            {"input": "([)]", "output": "NO"},
            {"input": "{[()]}", "output": "YES"},
            {"input": "(((", "output": "NO"},
            {"input": "}{", "output": "NO"},
        ],
    },
    {
        "id": "max-subarray",
        "title": "Maximum Subarray",
        "description": "Find the largest possible sum of a non-empty contiguous subarray.",
        "difficulty": "medium",
        "timeLimit": 600,
        "inputFormat": "A single line containing space-separated integers.",
        "outputFormat": "A single integer, the maximum subarray sum.",
        "constraints": [
            "Array length is between 1 and 100000",
            "Each element is between -10000 and 10000",
        ],
        "examples": [
            {"input": "-2 1 -3 4 -1 2 1 -5 4", "output": "6", "explanation": "The subarray 4 -1 2 1 sums to 6"},
        ],
        "testCases": [
            {"input": "-2 1 -3 4 -1 2 1 -5 4", "output": 6},
            {"input": "1", "output": 1},
            {"input": "-3 -1 -2", "output": -1},
            {"input": "5 4 -1 7 8", "output": 23},
            {"input": "2 -1 2 3 -9 4", "output": 6},
        ],
    },
    {
        "id": "longest-increasing-subsequence",
        "title": "Longest Increasing Subsequence",
        "description": "Return the length of the longest strictly increasing subsequence.",
        "difficulty": "hard",
        "timeLimit": 900,
        "inputFormat": "A single line containing space-separated integers.",
        "outputFormat": "A single integer, the length of the subsequence.",
        "constraints": ["Array length is between 1 and 100000"],
        "examples": [
            {"input": "10 9 2 5 3 7 101 18", "output": "4", "explanation": "One answer is 2 3 7 101"},
        ],
        "testCases": [
            {"input": "10 9 2 5 3 7 101 18", "output": "4"},
            {"input": "0 1 0 3 2 3", "output": "4"},
            {"input": "7 7 7 7", "output": "1"},
            {"input": "1 2 3 4 5", "output": "5"},
            {"input": "5 4 3 2 1", "output": "1"},
        ],
    },
    {
        "id": "edit-distance",
        "title": "Edit Distance",
        "description": (
            "Given two words, compute the minimum number of single-character "
            "insertions, deletions or substitutions that turn the first into the second."
        ),
        "difficulty": "hard",
        "timeLimit": 900,
        "inputFormat": "Two lines, each containing one lowercase word.",
        "outputFormat": "A single integer, the edit distance.",
        "constraints": ["Each word has at most 500 characters"],
        "examples": [
            {"input": ["horse", "ros"], "output": "3", "explanation": "horse -> rorse -> rose -> ros"},
        ],
        "testCases": [
            {"input": ["horse", "ros"], "output": "3"},
            {"input": ["intention", "execution"], "output": "5"},
            {"input": ["abc", "abc"], "output": "0"},
            {"input": ["kitten", "sitting"], "output": "3"},
        ],
    },
]

FALLBACK_CHALLENGES: list[Challenge] = [Challenge.model_validate(raw) for raw in _RAW_CHALLENGES]


def get_all_challenges() -> list[Challenge]:
    """Get all built-in challenges."""
    return list(FALLBACK_CHALLENGES)


def get_challenge_by_id(challenge_id: str) -> Optional[Challenge]:
    """Get a built-in challenge by id."""
    for challenge in FALLBACK_CHALLENGES:
        if challenge.id == challenge_id:
            return challenge
    return None


def get_challenges_by_difficulty(difficulty: Difficulty) -> list[Challenge]:
    return [c for c in FALLBACK_CHALLENGES if c.difficulty == difficulty]


def get_fallback_challenge(difficulty: Optional[Difficulty] = None) -> Challenge:
    """Pick a random built-in challenge, preferring the requested difficulty."""
    pool = get_challenges_by_difficulty(difficulty) if difficulty else []
    return random.choice(pool or FALLBACK_CHALLENGES)
