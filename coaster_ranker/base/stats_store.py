"""Per-item rating state store."""

import logging
import math
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Optional, Union

import numpy as np
import polars as pl

from .rating_state import RATING_BASE, RD_INITIAL, VOLATILITY_INITIAL, RatingState, migrate_legacy

if TYPE_CHECKING:
    from ..data.types import Item
    from ..systems.glicko2 import Glicko2, PairOutcome

logger = logging.getLogger(__name__)


def compute_ranks(ratings: np.ndarray) -> np.ndarray:
    """
    Compute 1-based ranks for all entries in O(n log n).

    Highest rating gets rank 1. Ties keep insertion order (stable sort).
    """
    n = len(ratings)
    sorted_indices = np.argsort(-ratings, kind="stable")
    ranks = np.empty(n, dtype=np.int64)
    ranks[sorted_indices] = np.arange(1, n + 1)
    return ranks


class StatsStore:
    """
    Owns the RatingState of every item, keyed by item name.

    States are created lazily by ``ensure`` and never deleted. Only
    ``apply_outcome`` changes ratings, and it always updates both sides
    of a battle together.
    """

    def __init__(
        self,
        initial_rating: float = RATING_BASE,
        initial_rd: float = RD_INITIAL,
        initial_volatility: float = VOLATILITY_INITIAL,
    ):
        self.initial_rating = initial_rating
        self.initial_rd = initial_rd
        self.initial_volatility = initial_volatility
        self._states: Dict[str, RatingState] = {}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def ensure(self, item: Union["Item", str]) -> RatingState:
        """Return the state for ``item``, creating a default one if needed."""
        name = item if isinstance(item, str) else item.name
        state = self._states.get(name)
        if state is None:
            state = RatingState(
                name=name,
                park="" if isinstance(item, str) else item.park,
                manufacturer="" if isinstance(item, str) else item.manufacturer,
                rating=self.initial_rating,
                rd=self.initial_rd,
                volatility=self.initial_volatility,
            )
            self._states[name] = state
        return state

    def initialize(self, items: Iterable["Item"]) -> None:
        """Replace all states with fresh defaults for ``items``."""
        self._states = {}
        for item in items:
            self.ensure(item)

    @staticmethod
    def migrate_legacy(data: Dict[str, Any]) -> RatingState:
        """Convert a stored (possibly Elo-era) stats dict into a RatingState."""
        return migrate_legacy(data)

    def get(self, name: str) -> Optional[RatingState]:
        return self._states.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[RatingState]:
        return iter(self._states.values())

    @property
    def names(self) -> List[str]:
        return list(self._states)

    # =========================================================================
    # Updates
    # =========================================================================

    def apply_outcome(
        self,
        winner: str,
        loser: str,
        outcome: "PairOutcome",
        count_battle: bool = True,
    ) -> None:
        """
        Write a battle outcome to both participants.

        The new values are validated before either state is touched, so
        a bad outcome leaves both states unchanged.
        """
        values = (
            outcome.new_winner_rating, outcome.new_winner_rd, outcome.new_winner_volatility,
            outcome.new_loser_rating, outcome.new_loser_rd, outcome.new_loser_volatility,
        )
        if not all(math.isfinite(v) for v in values):
            raise ValueError(f"Non-finite rating outcome for {winner!r} vs {loser!r}: {values}")
        if min(values[1], values[2], values[4], values[5]) <= 0:
            raise ValueError(f"Non-positive RD or volatility for {winner!r} vs {loser!r}")

        w_state = self.ensure(winner)
        l_state = self.ensure(loser)
        w_state.set_rating(outcome.new_winner_rating, outcome.new_winner_rd, outcome.new_winner_volatility)
        l_state.set_rating(outcome.new_loser_rating, outcome.new_loser_rd, outcome.new_loser_volatility)
        if count_battle:
            w_state.battles += 1
            w_state.wins += 1
            l_state.battles += 1
            l_state.losses += 1

    # =========================================================================
    # Ranking
    # =========================================================================

    def ranks(self) -> Dict[str, int]:
        """Rank of every item by raw rating (1 = highest)."""
        if not self._states:
            return {}
        ratings = np.fromiter((s.rating for s in self._states.values()), dtype=np.float64)
        return dict(zip(self._states, compute_ranks(ratings).tolist()))

    def rank(self, name: str) -> int:
        """1-based position of ``name`` by raw rating, descending."""
        target = self.ensure(name).rating
        rank = 1
        before = True
        # Same order as compute_ranks: ties go to the earlier-inserted item
        for other_name, state in self._states.items():
            if other_name == name:
                before = False
            elif state.rating > target or (before and state.rating == target):
                rank += 1
        return rank

    def to_dataframe(self, engine: Optional["Glicko2"] = None) -> pl.DataFrame:
        """
        Export all states as a ranking table sorted by rank.

        When an engine is given a ``displayed_rating`` column is added.
        """
        states = list(self._states.values())
        ratings = np.array([s.rating for s in states], dtype=np.float64)
        battles = np.array([s.battles for s in states], dtype=np.int64)

        data = {
            "rank": compute_ranks(ratings) if states else np.empty(0, dtype=np.int64),
            "name": [s.name for s in states],
            "park": [s.park for s in states],
            "manufacturer": [s.manufacturer for s in states],
            "rating": ratings,
            "rd": np.array([s.rd for s in states], dtype=np.float64),
            "volatility": np.array([s.volatility for s in states], dtype=np.float64),
            "battles": battles,
            "wins": np.array([s.wins for s in states], dtype=np.int64),
            "losses": np.array([s.losses for s in states], dtype=np.int64),
        }
        if engine is not None:
            data["displayed_rating"] = (
                engine.displayed_ratings(ratings, battles) if states
                else np.empty(0, dtype=np.float64)
            )

        return pl.DataFrame(data).sort("rank")

    def top(self, n: int = 10, engine: Optional["Glicko2"] = None) -> pl.DataFrame:
        """Top N items by raw rating."""
        return self.to_dataframe(engine).head(n)

    # =========================================================================
    # Serialisation
    # =========================================================================

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {name: state.to_dict() for name, state in self._states.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, Any]], **kwargs) -> "StatsStore":
        """Load states, migrating legacy Elo entries on the way in."""
        store = cls(**kwargs)
        migrated = 0
        for name, raw in data.items():
            raw = dict(raw)
            raw.setdefault("name", name)
            if "elo" in raw and raw.get("rating") is None:
                migrated += 1
            store._states[name] = migrate_legacy(raw)
        if migrated:
            logger.info("Migrated %d legacy Elo states to Glicko-2", migrated)
        return store

    def __repr__(self) -> str:
        return f"StatsStore(items={len(self._states)})"
