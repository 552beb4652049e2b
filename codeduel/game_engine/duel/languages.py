"""Language runtime registry.

One row per supported language: the sandbox image, the source file the
submission is written to, how to compile it (if at all) and how to run it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from codeduel.core.exceptions import UnsupportedLanguageError


class Language(str, Enum):
    """Supported programming languages."""
    PYTHON = "python"
    JAVASCRIPT = "javascript"
    CPP = "cpp"
    JAVA = "java"


@dataclass(frozen=True)
class LanguageConfig:
    """Configuration for a supported language."""
    image: str
    file_name: str  # Written into /code inside the container
    file_extension: str
    compile_command: Optional[list[str]]
    run_command: list[str]
    boilerplate: str
    interactive_stdin: bool = False  # Attach stdin even when empty

    @property
    def is_compiled(self) -> bool:
        return self.compile_command is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_extension": self.file_extension,
            "image": self.image,
            "compiled": self.is_compiled,
            "boilerplate": self.boilerplate,
        }


LANGUAGE_CONFIGS: dict[Language, LanguageConfig] = {
    Language.PYTHON: LanguageConfig(
        image="python:3.11-slim",
        file_name="solution.py",
        file_extension=".py",
        compile_command=None,
        run_command=["python", "-u", "/code/solution.py"],
        boilerplate="# Enter your python code below\n",
        interactive_stdin=True,
    ),
    Language.JAVASCRIPT: LanguageConfig(
        image="node:20-slim",
        file_name="solution.js",
        file_extension=".js",
        compile_command=None,
        run_command=["node", "/code/solution.js"],
        boilerplate=(
            "const lines = require('fs').readFileSync(0, 'utf8').split('\\n');\n"
        ),
    ),
    Language.CPP: LanguageConfig(
        image="gcc:12.2.0",
        file_name="solution.cpp",
        file_extension=".cpp",
        compile_command=["g++", "-O2", "-o", "/code/a.out", "/code/solution.cpp"],
        run_command=["/code/a.out"],
        boilerplate="#include<iostream>\nint main(){\n    return 0;\n}\n",
    ),
    Language.JAVA: LanguageConfig(
        image="eclipse-temurin:17-jdk",
        file_name="Main.java",  # javac requires the public class name
        file_extension=".java",
        compile_command=["javac", "-d", "/code", "/code/Main.java"],
        run_command=["java", "-cp", "/code", "Main"],
        boilerplate=(
            "import java.util.*;\n"
            "public class Main {\n"
            "    public static void main(String[] args) {\n"
            "        Scanner scanner = new Scanner(System.in);\n"
            "    }\n"
            "}\n"
        ),
        interactive_stdin=True,
    ),
}


def get_language_config(language: str | Language) -> LanguageConfig:
    """Look up a language, raising UnsupportedLanguageError if unknown."""
    try:
        lang = Language(language.lower())
    except (AttributeError, ValueError):
        raise UnsupportedLanguageError(language) from None
    return LANGUAGE_CONFIGS[lang]


def list_languages() -> dict[str, dict[str, Any]]:
    """Registry contents keyed by language name."""
    return {lang.value: config.to_dict() for lang, config in LANGUAGE_CONFIGS.items()}
