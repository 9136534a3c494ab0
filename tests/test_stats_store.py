"""Tests for rating states, the stats store and the item catalog."""

import math

import numpy as np
import polars as pl
import pytest

from coaster_ranker import (
    Glicko2,
    Item,
    ItemCatalog,
    PairOutcome,
    RatingState,
    StatsStore,
    compute_ranks,
    migrate_legacy,
)


def test_ensure_creates_default_once():
    store = StatsStore()
    item = Item("Taron", park="Phantasialand", manufacturer="Intamin")

    state = store.ensure(item)
    assert (state.rating, state.rd, state.volatility) == (1500, 350, 0.06)
    assert (state.battles, state.wins, state.losses) == (0, 0, 0)
    assert state.park == "Phantasialand"
    assert store.ensure("Taron") is state
    assert len(store) == 1
    assert store.get("Unknown") is None


def test_rating_state_validation():
    with pytest.raises(ValueError):
        RatingState("bad", rd=0)
    with pytest.raises(ValueError):
        RatingState("bad", volatility=-0.1)
    with pytest.raises(ValueError):
        RatingState("bad", rating=math.inf)


def test_rank_ties_follow_insertion_order():
    store = StatsStore()
    store.initialize([Item("A"), Item("B"), Item("C"), Item("D")])
    store.get("C").set_rating(1600, 300, 0.06)

    assert store.rank("C") == 1
    assert [store.rank(n) for n in "ABD"] == [2, 3, 4]
    assert store.ranks() == {"A": 2, "B": 3, "C": 1, "D": 4}

    # Unknown names are created first and ranked
    assert store.rank("E") == 5
    assert "E" in store


def test_compute_ranks_matches_rank():
    rng = np.random.default_rng(42)
    store = StatsStore()
    for i in range(40):
        store.ensure(f"item{i}").set_rating(float(rng.integers(1400, 1600)), 200, 0.06)

    ranks = store.ranks()
    for name in store.names:
        assert store.rank(name) == ranks[name]
    assert sorted(ranks.values()) == list(range(1, 41))
    assert compute_ranks(np.array([1.0, 3.0, 2.0])).tolist() == [3, 1, 2]


def test_migrate_legacy_elo():
    state = migrate_legacy({"name": "Baron 1898", "elo": 1612, "battles": 3, "wins": 2, "losses": 1})
    assert state.rating == 1612
    assert state.rd == 350
    assert state.volatility == 0.06
    assert (state.battles, state.wins, state.losses) == (3, 2, 1)

    repaired = StatsStore.migrate_legacy({"name": "X", "rating": 1400, "battles": 9, "wins": 2, "losses": 1})
    assert repaired.battles == 3
    assert repaired.rd == 350

    store = StatsStore.from_dict({"Baron 1898": {"elo": 1612, "battles": 0}})
    assert store.get("Baron 1898").rating == 1612
    assert store.get("Baron 1898").name == "Baron 1898"


def test_apply_outcome_is_atomic():
    store = StatsStore()
    store.ensure("A")
    store.ensure("B")

    bad = PairOutcome(1600, 300, 0.06, math.nan, 300, 0.06)
    with pytest.raises(ValueError):
        store.apply_outcome("A", "B", bad)
    assert store.get("A").rating == 1500 and store.get("A").battles == 0
    assert store.get("B").rating == 1500

    store.apply_outcome("A", "B", PairOutcome(1600, 300, 0.06, 1400, 300, 0.06))
    assert store.get("A").rating == 1600 and store.get("A").wins == 1
    assert store.get("B").rating == 1400 and store.get("B").losses == 1


def test_to_dataframe_and_round_trip():
    engine = Glicko2()
    store = StatsStore()
    store.ensure(Item("A", park="P1"))
    store.ensure(Item("B", park="P2"))
    store.apply_outcome("B", "A", engine.update_pair(store.get("B"), store.get("A")))

    df = store.to_dataframe(engine)
    assert df["name"].to_list() == ["B", "A"]
    assert df["rank"].to_list() == [1, 2]
    assert "displayed_rating" in df.columns
    assert df["displayed_rating"][0] < df["rating"][0]

    assert store.top(1)["name"].to_list() == ["B"]
    assert StatsStore().to_dataframe(engine).height == 0

    restored = StatsStore.from_dict(store.to_dict())
    assert restored.to_dict() == store.to_dict()


def test_catalog_from_dataframe_with_dutch_columns():
    df = pl.DataFrame({
        "naam": ["Taron ", "Baron 1898", "Old Coaster", ""],
        "park": ["Phantasialand", "Efteling", "Somewhere", "x"],
        "fabrikant": ["Intamin", "B&M", None, "y"],
        "operatief": [1, 1, 0, 1],
    })
    catalog = ItemCatalog.from_dataframe(df)
    assert catalog.names == ["Taron", "Baron 1898", "Old Coaster"]
    assert catalog.get("Old Coaster").manufacturer == ""

    operational = catalog.operational()
    assert operational.names == ["Taron", "Baron 1898"]
    assert operational.num_pairs == 1


def test_catalog_csv_and_duplicates(tmp_path):
    path = tmp_path / "coasters.csv"
    path.write_text("name,park,manufacturer\nA,P,M\nB,P,M\n", encoding="utf-8")
    catalog = ItemCatalog.from_path(path)
    assert len(catalog) == 2
    assert all(item.operational for item in catalog)

    with pytest.raises(ValueError):
        catalog.add(Item("A"))
    with pytest.raises(ValueError):
        ItemCatalog.from_dataframe(pl.DataFrame({"title": ["A"]}))
