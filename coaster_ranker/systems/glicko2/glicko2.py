"""
Glicko-2 rating engine for pairwise battles.

Each battle is treated as its own one-vs-one rating period: the winner
is updated against the loser's pre-battle state with score 1 and the
loser against the winner's pre-battle state with score 0. The update is
a pure function of the two input states, which is what makes history
replay (winner switch, recompute) reproducible.

Hot paths are Numba-compiled in ``_numba_core``; this module converts
between the Glicko scale (1500 / 350) and the internal Glicko-2 scale
(mu / phi) and turns solver failures into exceptions.
"""

from dataclasses import dataclass, replace
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from ...base.rating_state import RATING_BASE, RD_INITIAL, VOLATILITY_INITIAL, RatingState
from ...exceptions import VolatilityConvergenceError
from . import _numba_core as core


@dataclass
class Glicko2Config:
    """Configuration for the Glicko-2 engine."""

    initial_rating: float = RATING_BASE
    initial_rd: float = RD_INITIAL
    initial_volatility: float = VOLATILITY_INITIAL
    tau: float = 0.5  # System constant (typically 0.3 to 1.2)
    epsilon: float = 0.000001  # Convergence tolerance
    scale: float = 173.7178  # Conversion factor from Glicko to Glicko-2 scale
    max_iterations: int = 100  # Bound for each volatility solver loop
    prior_weight: float = 6.0  # Pseudo-battles for displayed-rating shrinkage


@dataclass(frozen=True)
class PairOutcome:
    """New Glicko-scale values for both sides of a battle."""

    new_winner_rating: float
    new_winner_rd: float
    new_winner_volatility: float
    new_loser_rating: float
    new_loser_rd: float
    new_loser_volatility: float


class Glicko2:
    """
    Glicko-2 rating engine with Numba acceleration.

    Parameters:
        tau: System constant controlling volatility change (default: 0.5)
        epsilon: Volatility solver tolerance (default: 1e-6)
        prior_weight: Pseudo-battles used by displayed_rating (default: 6)
        config: Full configuration; keyword arguments override it

    Example:
        >>> engine = Glicko2()
        >>> a, b = RatingState("Taron"), RatingState("Baron 1898")
        >>> outcome = engine.update_pair(a, b)
        >>> outcome.new_winner_rating > 1500
        True
    """

    def __init__(
        self,
        tau: Optional[float] = None,
        epsilon: Optional[float] = None,
        prior_weight: Optional[float] = None,
        config: Optional[Glicko2Config] = None,
    ):
        self.config = replace(config) if config is not None else Glicko2Config()
        if tau is not None:
            self.config.tau = tau
        if epsilon is not None:
            self.config.epsilon = epsilon
        if prior_weight is not None:
            self.config.prior_weight = prior_weight

    # =========================================================================
    # Scale conversions
    # =========================================================================

    def scale(self, rating: float) -> float:
        """Convert a Glicko rating to mu (Glicko-2 scale)."""
        return (rating - self.config.initial_rating) / self.config.scale

    def unscale(self, mu: float) -> float:
        """Convert mu back to a Glicko rating."""
        return mu * self.config.scale + self.config.initial_rating

    def scale_rd(self, rd: float) -> float:
        """Convert a Glicko RD to phi."""
        return rd / self.config.scale

    def unscale_rd(self, phi: float) -> float:
        """Convert phi back to a Glicko RD."""
        return phi * self.config.scale

    # =========================================================================
    # Glicko-2 functions
    # =========================================================================

    def g(self, phi: float) -> float:
        return core.g(phi)

    def expected_score(self, mu: float, mu_j: float, phi_j: float) -> float:
        """Expected score of a player at mu against an opponent at (mu_j, phi_j)."""
        return core.expected_score(mu, mu_j, phi_j)

    def win_probability(self, state: RatingState, opponent: RatingState) -> float:
        """Expected score of ``state`` against ``opponent`` (Glicko-scale inputs)."""
        return self.expected_score(
            self.scale(state.rating),
            self.scale(opponent.rating),
            self.scale_rd(opponent.rd),
        )

    def update_single(
        self,
        mu: float,
        phi: float,
        sigma: float,
        opponents: Iterable[Tuple[float, float, float]],
    ) -> Tuple[float, float, float]:
        """
        Canonical Glicko-2 update for one player over one rating period.

        Args:
            mu: Player rating on the Glicko-2 scale
            phi: Player rating deviation on the Glicko-2 scale
            sigma: Player volatility
            opponents: (mu_j, phi_j, score) triples with score in {0, 1}

        Returns:
            (new_mu, new_phi, new_sigma)

        Raises:
            VolatilityConvergenceError: if the volatility solver does not
                converge within config.max_iterations
        """
        rows = np.asarray(list(opponents), dtype=np.float64).reshape(-1, 3)
        new_mu, new_phi, new_sigma, converged = core.update_player_glicko2(
            float(mu),
            float(phi),
            float(sigma),
            np.ascontiguousarray(rows[:, 0]),
            np.ascontiguousarray(rows[:, 1]),
            np.ascontiguousarray(rows[:, 2]),
            self.config.tau,
            self.config.epsilon,
            self.config.max_iterations,
        )
        if not converged:
            raise VolatilityConvergenceError(sigma, phi, self.config.max_iterations)
        return new_mu, new_phi, new_sigma

    def update_pair(self, winner: RatingState, loser: RatingState) -> PairOutcome:
        """
        Compute new states for both sides of a decided battle.

        Neither input is modified.

        Raises:
            VolatilityConvergenceError: if either side's solver fails
        """
        cfg = self.config
        w_mu, w_phi, w_sigma, l_mu, l_phi, l_sigma, w_ok, l_ok = core.update_pair(
            self.scale(winner.rating),
            self.scale_rd(winner.rd),
            float(winner.volatility),
            self.scale(loser.rating),
            self.scale_rd(loser.rd),
            float(loser.volatility),
            cfg.tau,
            cfg.epsilon,
            cfg.max_iterations,
        )
        for ok, state in ((w_ok, winner), (l_ok, loser)):
            if not ok:
                raise VolatilityConvergenceError(
                    state.volatility, self.scale_rd(state.rd), cfg.max_iterations, name=state.name
                )

        return PairOutcome(
            new_winner_rating=self.unscale(w_mu),
            new_winner_rd=self.unscale_rd(w_phi),
            new_winner_volatility=w_sigma,
            new_loser_rating=self.unscale(l_mu),
            new_loser_rd=self.unscale_rd(l_phi),
            new_loser_volatility=l_sigma,
        )

    # =========================================================================
    # Display
    # =========================================================================

    def displayed_rating(
        self,
        state: Optional[RatingState],
        prior_weight: Optional[float] = None,
    ) -> float:
        """
        Rating shrunk toward the base by ``prior_weight`` pseudo-battles.

        Used for ranking display and pairing proximity, never written
        back into the model state.
        """
        base = self.config.initial_rating
        if state is None or state.battles <= 0:
            return base
        w = self.config.prior_weight if prior_weight is None else prior_weight
        return (state.rating * state.battles + base * w) / (state.battles + w)

    def displayed_ratings(
        self,
        ratings: Sequence[float],
        battles: Sequence[int],
    ) -> np.ndarray:
        """Vectorised displayed_rating over parallel arrays."""
        return core.displayed_ratings(
            np.ascontiguousarray(ratings, dtype=np.float64),
            np.ascontiguousarray(battles, dtype=np.float64),
            self.config.initial_rating,
            float(self.config.prior_weight),
        )

    def new_state(self, name: str, park: str = "", manufacturer: str = "") -> RatingState:
        """A fresh state at the configured initial values."""
        return RatingState(
            name=name,
            park=park,
            manufacturer=manufacturer,
            rating=self.config.initial_rating,
            rd=self.config.initial_rd,
            volatility=self.config.initial_volatility,
        )

    def __repr__(self) -> str:
        return (
            f"Glicko2(tau={self.config.tau}, epsilon={self.config.epsilon}, "
            f"prior_weight={self.config.prior_weight})"
        )
