"""Code Duel - head-to-head competitive programming.

Two players race to solve the same challenge; submissions run against
hidden test cases in Docker sandboxes and the first full pass wins.
"""

from codeduel.game_engine.duel.judge import SolutionJudge
from codeduel.game_engine.duel.room import DuelStatus, Room
from codeduel.game_engine.duel.sandbox import SandboxExecutor

__all__ = ["DuelStatus", "Room", "SandboxExecutor", "SolutionJudge"]
