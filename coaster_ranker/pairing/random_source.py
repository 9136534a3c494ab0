"""Injectable random sources for pairing and simulation."""

from typing import Optional, Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class RandomSource(Protocol):
    """Anything that yields uniform floats in [0, 1)."""

    def next(self) -> float:
        ...


class NumpyRandom:
    """RandomSource backed by a numpy Generator.

    Pass a seed for reproducible pairing and simulation.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def next(self) -> float:
        return float(self._rng.random())

    def __repr__(self) -> str:
        return f"NumpyRandom(seed={self.seed})"
