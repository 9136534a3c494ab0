"""
Numba-accelerated core functions for the Glicko-2 rating engine.

Design principles:
1. All hot-path functions compiled with @njit(cache=True)
2. Kernels never raise; convergence is reported as a flag and the
   Python facade turns it into an exception
3. Contiguous float64 arrays for opponent lists
"""

import math
import numpy as np
from numba import njit


# =============================================================================
# Core Glicko-2 functions
# =============================================================================

@njit(cache=True, fastmath=True, inline="always")
def g(phi: float) -> float:
    """Calculate g(phi) function."""
    return 1.0 / math.sqrt(1.0 + 3.0 * (phi * phi) / (math.pi * math.pi))


@njit(cache=True, fastmath=True, inline="always")
def expected_score(mu: float, opp_mu: float, opp_phi: float) -> float:
    """Calculate expected score in Glicko-2 scale."""
    g_phi = g(opp_phi)
    return 1.0 / (1.0 + math.exp(-g_phi * (mu - opp_mu)))


@njit(cache=True)
def _volatility_f(
    x: float,
    a: float,
    delta_sq: float,
    phi_sq: float,
    v: float,
    tau: float,
) -> float:
    ex = math.exp(x)
    num1 = ex * (delta_sq - phi_sq - v - ex)
    den1 = 2.0 * ((phi_sq + v + ex) ** 2)
    return num1 / den1 - (x - a) / (tau * tau)


@njit(cache=True)
def update_volatility(
    sigma: float,
    phi: float,
    v: float,
    delta: float,
    tau: float,
    epsilon: float,
    max_iterations: int,
) -> tuple:
    """
    Update volatility with the Illinois algorithm (Step 5).

    Returns (new_sigma, converged). Both the bracket search and the
    regula falsi loop give up after max_iterations steps.
    """
    a = math.log(sigma * sigma)
    phi_sq = phi * phi
    delta_sq = delta * delta

    # Set initial bounds
    A = a
    if delta_sq > phi_sq + v:
        B = math.log(delta_sq - phi_sq - v)
    else:
        k = 1
        while _volatility_f(a - k * tau, a, delta_sq, phi_sq, v, tau) < 0:
            k += 1
            if k > max_iterations:
                return sigma, False
        B = a - k * tau

    f_A = _volatility_f(A, a, delta_sq, phi_sq, v, tau)
    f_B = _volatility_f(B, a, delta_sq, phi_sq, v, tau)

    iterations = 0
    while abs(B - A) > epsilon:
        if iterations >= max_iterations:
            return sigma, False

        C = A + (A - B) * f_A / (f_B - f_A)
        f_C = _volatility_f(C, a, delta_sq, phi_sq, v, tau)

        if f_C * f_B <= 0:
            A = B
            f_A = f_B
        else:
            f_A = f_A / 2.0

        B = C
        f_B = f_C
        iterations += 1

    return math.exp(A / 2.0), True


@njit(cache=True)
def update_player_glicko2(
    player_mu: float,
    player_phi: float,
    player_sigma: float,
    opp_mus: np.ndarray,
    opp_phis: np.ndarray,
    player_scores: np.ndarray,
    tau: float,
    epsilon: float,
    max_iterations: int,
) -> tuple:
    """
    Update a single player's rating, RD, and volatility for one period.

    Returns (new_mu, new_phi, new_sigma, converged).
    """
    n_games = len(opp_mus)
    if n_games == 0:
        return player_mu, player_phi, player_sigma, True

    # Step 3: Compute variance v and the score sum
    v_inv = 0.0
    delta_sum = 0.0

    for i in range(n_games):
        g_val = g(opp_phis[i])
        e_val = expected_score(player_mu, opp_mus[i], opp_phis[i])

        v_inv += g_val * g_val * e_val * (1.0 - e_val)
        delta_sum += g_val * (player_scores[i] - e_val)

    if v_inv > 0:
        v = 1.0 / v_inv
    else:
        v = 1e10

    # Step 4: Compute delta
    delta = v * delta_sum

    # Step 5: Update volatility
    new_sigma, converged = update_volatility(
        player_sigma, player_phi, v, delta, tau, epsilon, max_iterations
    )
    if not converged:
        return player_mu, player_phi, player_sigma, False

    # Step 6: Update phi*
    phi_star = math.sqrt(player_phi * player_phi + new_sigma * new_sigma)

    # Step 7: Update rating and RD
    new_phi = 1.0 / math.sqrt(1.0 / (phi_star * phi_star) + 1.0 / v)
    new_mu = player_mu + new_phi * new_phi * delta_sum

    return new_mu, new_phi, new_sigma, True


@njit(cache=True)
def update_pair(
    winner_mu: float,
    winner_phi: float,
    winner_sigma: float,
    loser_mu: float,
    loser_phi: float,
    loser_sigma: float,
    tau: float,
    epsilon: float,
    max_iterations: int,
) -> tuple:
    """
    One-vs-one rating period for both sides of a decided battle.

    Each side is updated against the other's pre-battle values.
    Returns (w_mu, w_phi, w_sigma, l_mu, l_phi, l_sigma, w_ok, l_ok).
    """
    opp_mu = np.empty(1, dtype=np.float64)
    opp_phi = np.empty(1, dtype=np.float64)
    score = np.empty(1, dtype=np.float64)

    opp_mu[0] = loser_mu
    opp_phi[0] = loser_phi
    score[0] = 1.0
    w_mu, w_phi, w_sigma, w_ok = update_player_glicko2(
        winner_mu, winner_phi, winner_sigma,
        opp_mu, opp_phi, score,
        tau, epsilon, max_iterations,
    )

    opp_mu[0] = winner_mu
    opp_phi[0] = winner_phi
    score[0] = 0.0
    l_mu, l_phi, l_sigma, l_ok = update_player_glicko2(
        loser_mu, loser_phi, loser_sigma,
        opp_mu, opp_phi, score,
        tau, epsilon, max_iterations,
    )

    return w_mu, w_phi, w_sigma, l_mu, l_phi, l_sigma, w_ok, l_ok


# =============================================================================
# Utility functions
# =============================================================================

@njit(cache=True, fastmath=True)
def displayed_ratings(
    ratings: np.ndarray,
    battles: np.ndarray,
    base: float,
    prior_weight: float,
) -> np.ndarray:
    """Shrink raw ratings toward the base rating by battle count."""
    n = len(ratings)
    out = np.empty(n, dtype=np.float64)
    for i in range(n):
        b = battles[i]
        if b <= 0:
            out[i] = base
        else:
            out[i] = (ratings[i] * b + base * prior_weight) / (b + prior_weight)
    return out
