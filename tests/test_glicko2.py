"""Tests for the Glicko-2 rating engine."""

import itertools

import numpy as np
import pytest

from coaster_ranker import Glicko2, Glicko2Config, RatingState, VolatilityConvergenceError


def test_glickman_worked_example():
    """Reproduce the worked example from Glickman's Glicko-2 paper."""
    print("=" * 60)
    print("Testing Glickman worked example...")
    print("=" * 60)

    engine = Glicko2(tau=0.5)
    opponents = [
        (engine.scale(1400), engine.scale_rd(30), 1.0),
        (engine.scale(1550), engine.scale_rd(100), 0.0),
        (engine.scale(1700), engine.scale_rd(300), 0.0),
    ]
    mu, phi, sigma = engine.update_single(engine.scale(1500), engine.scale_rd(200), 0.06, opponents)

    rating, rd = engine.unscale(mu), engine.unscale_rd(phi)
    print(f"  rating={rating:.2f} rd={rd:.2f} volatility={sigma:.5f}")

    assert rating == pytest.approx(1464.06, abs=0.05)
    assert rd == pytest.approx(151.52, abs=0.05)
    assert sigma == pytest.approx(0.05999, abs=1e-5)


def test_update_single_without_games_is_identity():
    engine = Glicko2()
    assert engine.update_single(0.3, 1.2, 0.06, []) == (0.3, 1.2, 0.06)


def test_concrete_first_battle():
    """Two fresh items, A beats B once."""
    engine = Glicko2()
    a = engine.new_state("A")
    b = engine.new_state("B")

    assert engine.win_probability(a, b) == 0.5

    outcome = engine.update_pair(a, b)
    print(f"  A: 1500 -> {outcome.new_winner_rating:.1f} (rd {outcome.new_winner_rd:.1f})")
    print(f"  B: 1500 -> {outcome.new_loser_rating:.1f} (rd {outcome.new_loser_rd:.1f})")

    assert outcome.new_winner_rating > 1500
    assert outcome.new_loser_rating < 1500
    assert outcome.new_winner_rd < 350
    assert outcome.new_loser_rd < 350
    assert outcome.new_winner_volatility > 0
    assert outcome.new_loser_volatility > 0

    # Inputs are not modified
    assert a.rating == 1500 and b.rating == 1500


def test_pair_update_mirror_symmetry():
    """Swapping winner and loser between equal states mirrors the result."""
    engine = Glicko2()
    for rating, rd, vol in [(1500, 350, 0.06), (1720, 80, 0.05), (1310, 200, 0.09)]:
        a = RatingState("A", rating=rating, rd=rd, volatility=vol)
        b = RatingState("B", rating=rating, rd=rd, volatility=vol)

        ab = engine.update_pair(a, b)
        ba = engine.update_pair(b, a)

        assert ab.new_winner_rating == pytest.approx(ba.new_winner_rating)
        assert ab.new_loser_rating == pytest.approx(ba.new_loser_rating)
        assert ab.new_winner_rating - rating == pytest.approx(rating - ab.new_loser_rating)
        assert ab.new_winner_rd == pytest.approx(ab.new_loser_rd)


def test_expected_score_bounds():
    engine = Glicko2()
    rng = np.random.default_rng(42)
    for _ in range(200):
        mu, mu_j = rng.uniform(-4, 4, size=2)
        phi_j = rng.uniform(0.05, 2.5)
        e = engine.expected_score(mu, mu_j, phi_j)
        assert 0.0 < e < 1.0

    for mu in (-2.0, 0.0, 1.7):
        assert engine.expected_score(mu, mu, 1.0) == 0.5


def test_win_loss_monotonicity():
    """Winning always raises the rating and losing always lowers it."""
    engine = Glicko2()
    opponent = RatingState("opponent", rating=1500, rd=120, volatility=0.06)

    ratings = [1000, 1400, 1500, 1650, 2100]
    rds = [40, 150, 350]
    vols = [0.03, 0.06, 0.12]
    for rating, rd, vol in itertools.product(ratings, rds, vols):
        state = RatingState("player", rating=rating, rd=rd, volatility=vol)
        won = engine.update_pair(state, opponent)
        lost = engine.update_pair(opponent, state)
        assert won.new_winner_rating > rating
        assert lost.new_loser_rating < rating


def test_convergence_failure_raises():
    """A solver bound that is too small fails loudly instead of looping."""
    engine = Glicko2(config=Glicko2Config(max_iterations=1))
    a = engine.new_state("A")
    b = engine.new_state("B")
    with pytest.raises(VolatilityConvergenceError):
        engine.update_pair(a, b)


def test_displayed_rating_shrinkage():
    engine = Glicko2(prior_weight=6)

    fresh = RatingState("fresh", rating=1800)
    assert engine.displayed_rating(fresh) == 1500
    assert engine.displayed_rating(None) == 1500

    veteran = RatingState("veteran", rating=1800, battles=6, wins=6)
    assert engine.displayed_rating(veteran) == pytest.approx(1650.0)
    assert engine.displayed_rating(veteran, prior_weight=0) == pytest.approx(1800.0)

    shrunk = engine.displayed_ratings([1800.0, 1800.0, 1200.0], [0, 6, 12])
    np.testing.assert_allclose(shrunk, [1500.0, 1650.0, 1300.0])


def test_scale_round_trip():
    engine = Glicko2()
    for rating in (900.0, 1500.0, 2234.5):
        assert engine.unscale(engine.scale(rating)) == pytest.approx(rating)
    assert engine.scale(1500.0) == 0.0
    assert engine.unscale_rd(engine.scale_rd(350.0)) == pytest.approx(350.0)


def test_config_is_not_shared():
    config = Glicko2Config()
    tuned = Glicko2(tau=1.2, config=config)
    plain = Glicko2(config=config)

    assert tuned.config.tau == 1.2
    assert config.tau == 0.5
    assert plain.config.tau == 0.5


def test_convergence_error_names_failing_side(monkeypatch):
    engine = Glicko2()
    winner = RatingState("A", volatility=0.06)
    loser = RatingState("B", rd=200, volatility=0.09)

    def loser_fails(*args):
        return 0.0, 1.0, 0.06, 0.0, 1.0, 0.09, True, False

    monkeypatch.setattr("coaster_ranker.systems.glicko2._numba_core.update_pair", loser_fails)
    with pytest.raises(VolatilityConvergenceError) as info:
        engine.update_pair(winner, loser)

    assert info.value.name == "B"
    assert info.value.sigma == 0.09
    assert info.value.phi == pytest.approx(engine.scale_rd(200))
    assert "'B'" in str(info.value)
