"""Glicko-2 rating engine."""

from .glicko2 import Glicko2, Glicko2Config, PairOutcome

__all__ = ["Glicko2", "Glicko2Config", "PairOutcome"]
