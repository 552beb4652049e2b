from codeduel.api.routes import duel, practice

__all__ = [
    "duel",
    "practice",
]
