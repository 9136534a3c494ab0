"""Tests for the history ledger: record, delete/undo, winner switch, recompute."""

import itertools

import numpy as np
import pytest

from coaster_ranker import (
    BattleSnapshot,
    Glicko2,
    Glicko2Config,
    HistoryLedger,
    ItemCatalog,
    SideStats,
    StatsStore,
    VolatilityConvergenceError,
    pair_key,
)


def generate_history(
    num_items: int = 8,
    num_battles: int = 20,
    seed: int = 42,
):
    """Resolve random battles where lower-numbered items tend to win."""
    rng = np.random.default_rng(seed)
    engine = Glicko2()
    catalog = ItemCatalog.from_names([f"Coaster {i:02d}" for i in range(num_items)])
    store = StatsStore()
    store.initialize(catalog)
    ledger = HistoryLedger(engine)

    pairs = list(itertools.combinations(range(num_items), 2))
    order = rng.permutation(len(pairs))[:num_battles]
    for k in order:
        a, b = pairs[k]
        p_a = 1 / (1 + np.exp((a - b) / 2))
        winner = a if rng.random() < p_a else b
        ledger.resolve(catalog[a], catalog[b], catalog[winner], store)

    return engine, catalog, store, ledger


def test_resolve_records_snapshot():
    print("=" * 60)
    print("Testing battle resolution...")
    print("=" * 60)

    engine = Glicko2()
    store = StatsStore()
    ledger = HistoryLedger(engine)

    entry = ledger.resolve("Taron", "Baron 1898", "Baron 1898", store)
    print(f"  {entry.winner} beat {entry.loser}")

    assert entry.left == "Taron" and entry.right == "Baron 1898"
    assert entry.winner == "Baron 1898" and entry.loser == "Taron"
    assert entry.pair_key == pair_key("Taron", "Baron 1898")
    assert entry.pair_key in ledger.completed_pairs

    winner_side = entry.stats_b
    loser_side = entry.stats_a
    assert winner_side.rating_before == 1500 and loser_side.rating_before == 1500
    assert winner_side.rating_after == store.get("Baron 1898").rating
    assert loser_side.rating_after == store.get("Taron").rating
    assert winner_side.expected_win_probability == pytest.approx(0.5)
    assert winner_side.potential_gain > 0 > winner_side.potential_loss
    assert winner_side.potential_gain == pytest.approx(-loser_side.potential_loss)
    assert winner_side.rank_after == 1 and loser_side.rank_after == 2
    assert entry.close_fight  # both started next to each other

    baron = store.get("Baron 1898")
    taron = store.get("Taron")
    assert (baron.battles, baron.wins, baron.losses) == (1, 1, 0)
    assert (taron.battles, taron.wins, taron.losses) == (1, 0, 1)


def test_resolve_rejects_unknown_winner():
    ledger = HistoryLedger(Glicko2())
    store = StatsStore()
    with pytest.raises(ValueError):
        ledger.resolve("A", "B", "C", store)
    with pytest.raises(ValueError):
        ledger.resolve("A", "A", "A", store)
    assert len(ledger) == 0
    assert len(store) == 0


def test_record_validates_winner():
    ledger = HistoryLedger(Glicko2())
    side = SideStats(1500, 1500, 350, 350, 0.06, 0.06)
    with pytest.raises(ValueError):
        ledger.record("A", "B", "A", "A", BattleSnapshot(side, side))
    with pytest.raises(ValueError):
        ledger.record("A", "B", "C", "B", BattleSnapshot(side, side))
    with pytest.raises(ValueError):
        ledger.record("A", "A", "A", "A", BattleSnapshot(side, side))
    assert len(ledger) == 0


def test_delete_undo_round_trip():
    """delete(i) then undo() restores entries, order and completed pairs."""
    _, _, store, ledger = generate_history(num_battles=15)
    entries_before = ledger.to_dicts()
    completed_before = ledger.completed_pairs.to_list()
    ratings_before = store.to_dict()

    for index in (0, 7, len(ledger) - 1):
        removed_key = ledger[index].pair_key
        assert ledger.delete(index)
        assert ledger.can_undo
        assert len(ledger) == 14
        assert removed_key not in ledger.completed_pairs
        # Ratings are untouched by delete
        assert store.to_dict() == ratings_before

        assert ledger.undo()
        assert ledger.to_dicts() == entries_before
        assert not ledger.can_undo
        assert ledger.completed_pairs.to_list() == completed_before


def test_out_of_range_index_is_noop():
    _, _, store, ledger = generate_history(num_battles=5)
    snapshot = ledger.to_dicts()
    ratings = store.to_dict()

    assert not ledger.delete(5)
    assert not ledger.delete(-1)
    assert not ledger.switch_winner(99, store)
    assert not ledger.undo()

    assert ledger.to_dicts() == snapshot
    assert store.to_dict() == ratings


def test_undo_capacity():
    ledger = HistoryLedger(Glicko2(), undo_capacity=2)
    store = StatsStore()
    for a, b in [("A", "B"), ("A", "C"), ("B", "C")]:
        ledger.resolve(a, b, a, store)

    assert ledger.delete(0)
    assert ledger.delete(0)
    assert ledger.delete(0)
    assert len(ledger) == 0

    assert ledger.undo()
    assert ledger.undo()
    assert not ledger.undo()
    assert [e.pair_key for e in ledger] == [pair_key("A", "C"), pair_key("B", "C")]


def test_retention_cap_keeps_pair_keys():
    ledger = HistoryLedger(Glicko2(), max_entries=3)
    store = StatsStore()
    matchups = [("A", "B"), ("A", "C"), ("A", "D"), ("B", "C"), ("B", "D")]
    for a, b in matchups:
        ledger.resolve(a, b, b, store)

    assert len(ledger) == 3
    assert [(e.left, e.right) for e in ledger] == matchups[2:]
    assert len(ledger.completed_pairs) == 5


def test_switch_winner():
    engine = Glicko2()
    store = StatsStore()
    ledger = HistoryLedger(engine)
    ledger.resolve("A", "B", "A", store)
    first_outcome = engine.update_pair(engine.new_state("A"), engine.new_state("B"))

    assert ledger.switch_winner(0, store)

    entry = ledger[0]
    assert entry.winner == "B" and entry.loser == "A"
    a, b = store.get("A"), store.get("B")
    assert b.rating == pytest.approx(first_outcome.new_winner_rating)
    assert a.rating == pytest.approx(first_outcome.new_loser_rating)
    assert (a.battles, a.wins, a.losses) == (1, 0, 1)
    assert (b.battles, b.wins, b.losses) == (1, 1, 0)

    assert entry.stats_b.rating_after == pytest.approx(b.rating)
    assert entry.stats_a.rating_after == pytest.approx(a.rating)
    assert entry.stats_a.rating_before == 1500
    assert entry.stats_b.potential_gain > 0
    assert entry.stats_b.rank_after == 1 and entry.stats_a.rank_after == 2

    # Switching back restores the first outcome
    assert ledger.switch_winner(0, store)
    assert store.get("A").rating == pytest.approx(first_outcome.new_winner_rating)
    assert (store.get("A").wins, store.get("A").losses) == (1, 0)


def test_switch_winner_restores_from_entry_anchors():
    """Later battles are ignored: the pair restarts from the stored before-values."""
    engine = Glicko2()
    store = StatsStore()
    ledger = HistoryLedger(engine)
    ledger.resolve("A", "B", "A", store)
    ledger.resolve("A", "C", "C", store)
    stale_c = ledger[1].to_dict()

    assert ledger.switch_winner(0, store)
    expected = engine.update_pair(engine.new_state("B"), engine.new_state("A"))
    assert store.get("A").rating == pytest.approx(expected.new_loser_rating)
    # The later entry is left as it was
    assert ledger[1].to_dict() == stale_c


def test_recompute_is_idempotent():
    print("=" * 60)
    print("Testing recompute (wizard)...")
    print("=" * 60)

    _, catalog, store, ledger = generate_history(num_items=10, num_battles=30)
    ledger.switch_winner(3, store)
    ledger.switch_winner(11, store)

    first = ledger.recompute_all(store, catalog)
    print(f"  first run: {first}")
    assert first.converged

    after_values = [(e.stats_a.rating_after, e.stats_b.rating_after) for e in ledger]
    ratings = store.to_dict()
    second = ledger.recompute_all(store, catalog)
    print(f"  second run: {second}")

    assert second.converged
    assert second.iterations == 1
    assert second.total_changes == 0
    assert [(e.stats_a.rating_after, e.stats_b.rating_after) for e in ledger] == after_values
    assert store.to_dict() == ratings


def test_recompute_rederives_store_from_history():
    engine, catalog, store, ledger = generate_history(num_items=6, num_battles=12)
    expected = {s.name: s.rating for s in store}

    # Corrupt the live ratings; recompute restores them from the anchors
    for state in store:
        state.set_rating(1500.0, 350.0, 0.06)
    result = ledger.recompute_all(store, catalog)

    assert result.converged
    for name, rating in expected.items():
        if ledger.for_item(name):
            assert store.get(name).rating == pytest.approx(rating)


def test_recompute_empty_history():
    result = HistoryLedger(Glicko2()).recompute_all(StatsStore())
    assert (result.iterations, result.total_changes, result.converged) == (0, 0, True)


def test_serialisation_round_trip():
    engine, _, _, ledger = generate_history(num_battles=10)
    rows = ledger.to_dicts()

    restored = HistoryLedger(engine)
    skipped = restored.from_dicts(rows + [{"winner": "nobody"}])
    assert skipped == 1
    assert restored.to_dicts() == rows
    assert restored.completed_pairs == ledger.completed_pairs


def test_from_dicts_replaces_completed_pairs():
    """Loading into a used ledger keeps only the loaded matchups."""
    ledger = HistoryLedger(Glicko2())
    store = StatsStore()
    ledger.resolve("A", "B", "A", store)
    ledger.resolve("A", "C", "C", store)
    kept = ledger[1].to_dict()
    ledger.delete(0)

    self_battle = dict(kept, left="C", right="C", a="C", b="C", winner="C", loser="C", pairKey="")
    assert ledger.from_dicts([kept, self_battle]) == 1
    assert ledger.completed_pairs.to_list() == [pair_key("A", "C")]
    assert not ledger.can_undo

    assert ledger.from_dicts([]) == 0
    assert len(ledger) == 0
    assert len(ledger.completed_pairs) == 0


def test_legacy_history_rows():
    row = {
        "a": "A",
        "b": "B",
        "winner": "A",
        "timestamp": "2024-05-01T12:00:00Z",
        "statsA": {"eloBefore": 1500, "eloAfter": 1516},
        "statsB": {"eloBefore": 1500, "eloAfter": 1484},
    }
    ledger = HistoryLedger(Glicko2())
    assert ledger.from_dicts([row]) == 0
    entry = ledger[0]
    assert entry.loser == "B"
    assert entry.stats_a.rating_after == 1516
    assert entry.stats_a.rd_before == 350
    assert entry.pair_key == pair_key("A", "B")


def test_for_item_and_dataframe():
    _, catalog, _, ledger = generate_history(num_battles=12)
    name = catalog[0].name
    involved = ledger.for_item(name)
    assert all(e.involves(name) for _, e in involved)

    df = ledger.to_dataframe()
    assert df.height == len(ledger)
    assert df["winner"].to_list() == [e.winner for e in ledger]


def test_engine_failure_leaves_ledger_and_store_untouched():
    catalog = ItemCatalog.from_names(["A", "B", "C"])
    store = StatsStore()
    store.initialize(catalog)
    ledger = HistoryLedger(Glicko2())
    ledger.resolve("A", "B", "A", store)

    ratings = store.to_dict()
    entries = ledger.to_dicts()
    completed = ledger.completed_pairs.to_list()

    # One solver step is never enough for the default tolerance
    ledger.engine = Glicko2(config=Glicko2Config(max_iterations=1))
    with pytest.raises(VolatilityConvergenceError):
        ledger.resolve("A", "C", "C", store)
    with pytest.raises(VolatilityConvergenceError):
        ledger.switch_winner(0, store)
    with pytest.raises(VolatilityConvergenceError):
        ledger.recompute_all(store, catalog)

    assert store.to_dict() == ratings
    assert ledger.to_dicts() == entries
    assert ledger.completed_pairs.to_list() == completed
