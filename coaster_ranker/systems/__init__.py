"""Rating engine implementations.

- Glicko2: Glicko-2 with per-battle one-vs-one rating periods

Hot paths use Numba.
"""

from .glicko2 import Glicko2, Glicko2Config, PairOutcome

__all__ = [
    "Glicko2",
    "Glicko2Config",
    "PairOutcome",
]
