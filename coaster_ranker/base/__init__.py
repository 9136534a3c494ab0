"""Rating state and the per-item stats store."""

from .rating_state import RatingState, migrate_legacy
from .stats_store import StatsStore, compute_ranks

__all__ = ["RatingState", "StatsStore", "compute_ranks", "migrate_legacy"]
