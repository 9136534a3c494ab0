from .completed_pairs import CompletedPairSet
from .ledger import CLOSE_FIGHT_RANK_GAP, HistoryLedger, RecomputeResult

__all__ = [
    "CLOSE_FIGHT_RANK_GAP",
    "CompletedPairSet",
    "HistoryLedger",
    "RecomputeResult",
]
