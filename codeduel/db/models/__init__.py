from codeduel.db.models.duel import DuelOutcome, DuelRecord

__all__ = [
    "DuelOutcome",
    "DuelRecord",
]
