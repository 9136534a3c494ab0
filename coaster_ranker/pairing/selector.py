"""
Battle pairing: choose the next two items to compare.

Hybrid strategy:
1. Pick one item with probability proportional to an exploration weight
   that favours items with few battles
2. Pick its opponent from the same weights multiplied by a proximity
   factor on *displayed* rating, so close matchups are more likely
3. Reject pairs that were already battled; after a bounded number of
   attempts fall back to a deterministic scan

All randomness comes from the injected RandomSource.
"""

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Container, Optional, Sequence, Sized, Tuple

import numpy as np

from ..data.types import Item, pair_key
from ..exceptions import PairingInvariantError
from .random_source import RandomSource

if TYPE_CHECKING:
    from ..base import StatsStore
    from ..systems.glicko2 import Glicko2

logger = logging.getLogger(__name__)


@dataclass
class PairingConfig:
    """Tuning parameters for the pairing selector."""

    exploration_power: float = 2.0  # higher => stronger preference for low-battle items
    proximity_power: float = 0.1  # higher => stronger preference for similar ratings
    rating_diff_scale: float = 400.0  # rating points used to normalise differences
    attempts: int = 200
    collision_retries: int = 8


def sample_index(weights: np.ndarray, rng: RandomSource) -> int:
    """
    Roulette-wheel sample an index from ``weights``.

    Non-finite and non-positive weights count as zero. If every weight
    is zero the index is drawn uniformly.
    """
    n = len(weights)
    clean = np.where(np.isfinite(weights) & (weights > 0), weights, 0.0)
    total = float(clean.sum())
    if total <= 0 or not np.isfinite(total):
        return min(int(rng.next() * n), n - 1)
    r = rng.next() * total
    cumulative = np.cumsum(clean)
    index = int(np.searchsorted(cumulative, r, side="right"))
    # Rounding can push r onto the total; never land on a zero weight
    return min(index, int(np.flatnonzero(clean)[-1]))


def total_pairs(n: int) -> int:
    return n * (n - 1) // 2


class PairingSelector:
    """
    Weighted pair sampler with duplicate avoidance.

    Holds no state between calls beyond its configuration; weights are
    rebuilt from the stats store on every call.

    Example:
        >>> selector = PairingSelector(engine, PairingConfig(exploration_power=3))
        >>> pair = selector.select_pair(catalog, store, completed, NumpyRandom(7))
        >>> if pair is None:
        ...     print("all matchups done")
    """

    def __init__(self, engine: "Glicko2", config: Optional[PairingConfig] = None):
        self.engine = engine
        self.config = replace(config) if config is not None else PairingConfig()

    def exploration_weights(self, items: Sequence[Item], store: "StatsStore") -> np.ndarray:
        """w_i = 1 / (1 + battles_i) ** exploration_power."""
        battles = np.array(
            [self._battles(store, item.name) for item in items], dtype=np.float64
        )
        return 1.0 / np.power(1.0 + np.maximum(battles, 0.0), self.config.exploration_power)

    def proximity_factors(self, displayed: np.ndarray, i: int) -> np.ndarray:
        """1 / (1 + |d_i - d_k| / scale) ** proximity_power for every k."""
        diff = np.abs(displayed[i] - displayed) / self.config.rating_diff_scale
        return 1.0 / np.power(1.0 + diff, self.config.proximity_power)

    def select_pair(
        self,
        items: Sequence[Item],
        store: "StatsStore",
        completed: "Container[str] | Sized",
        rng: RandomSource,
    ) -> Optional[Tuple[Item, Item]]:
        """
        Choose the next battle.

        Args:
            items: Candidate items (normally the operational catalog)
            store: Rating states; items without a state count as new
            completed: Pair keys already battled
            rng: Random source

        Returns:
            (left, right) items, or None when every pair has been battled
            or there are fewer than two items
        """
        n = len(items)
        if n < 2:
            return None
        if len(completed) >= total_pairs(n):
            return None

        cfg = self.config
        weights = self.exploration_weights(items, store)
        displayed = self._displayed_ratings(items, store)

        for _ in range(cfg.attempts):
            i = sample_index(weights, rng)

            base = np.where(np.isfinite(weights) & (weights > 0), weights, 1.0)
            cond = base * self.proximity_factors(displayed, i)
            cond[i] = 0.0

            j = sample_index(cond, rng)
            if j == i:
                retries = 0
                while j == i and retries < cfg.collision_retries:
                    j = sample_index(cond, rng)
                    retries += 1
                if j == i:
                    j = (i + 1) % n

            a, b = items[i], items[j]
            if pair_key(a.name, b.name) not in completed:
                return a, b

        logger.debug("Sampling found no open pair in %d attempts, scanning", cfg.attempts)
        for i in range(n):
            for j in range(i + 1, n):
                a, b = items[i], items[j]
                if pair_key(a.name, b.name) not in completed:
                    return (a, b) if rng.next() < 0.5 else (b, a)

        raise PairingInvariantError(
            f"No open pair among {n} items although only {len(completed)} "
            f"of {total_pairs(n)} pairs are completed"
        )

    def _battles(self, store: "StatsStore", name: str) -> int:
        state = store.get(name)
        return state.battles if state is not None else 0

    def _displayed_ratings(self, items: Sequence[Item], store: "StatsStore") -> np.ndarray:
        base = self.engine.config.initial_rating
        ratings = np.empty(len(items), dtype=np.float64)
        battles = np.empty(len(items), dtype=np.float64)
        for k, item in enumerate(items):
            state = store.get(item.name)
            ratings[k] = state.rating if state is not None else base
            battles[k] = state.battles if state is not None else 0
        return self.engine.displayed_ratings(ratings, battles)

    def __repr__(self) -> str:
        return (
            f"PairingSelector(exploration_power={self.config.exploration_power}, "
            f"proximity_power={self.config.proximity_power})"
        )
