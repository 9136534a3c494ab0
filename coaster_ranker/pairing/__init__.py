from .random_source import NumpyRandom, RandomSource
from .selector import PairingConfig, PairingSelector, sample_index, total_pairs

__all__ = [
    "NumpyRandom",
    "PairingConfig",
    "PairingSelector",
    "RandomSource",
    "sample_index",
    "total_pairs",
]
