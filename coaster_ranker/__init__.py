"""
Coaster Ranker - pairwise battle ranking with Glicko-2.

Items (roller coasters) are ranked by repeatedly showing two of them and
recording which one wins. Each item carries a Glicko-2 rating, and the
next matchup is sampled to favour items with few battles and similar
ratings while never repeating a matchup.

Hot paths of the rating engine use Numba.

Quick Start:
    from coaster_ranker import ItemCatalog, RankingSession, DirectoryStore, NumpyRandom

    # Load the item list
    catalog = ItemCatalog.from_csv("coasters.csv")

    # One session per user, persisted to a directory
    session = RankingSession(
        "alice", catalog, persistence=DirectoryStore("data"), rng=NumpyRandom(42)
    )
    session.load()

    # Battle
    left, right = session.next_battle()
    session.choose_winner(0)  # left wins

    # Or simulate a thousand battles
    session.simulate_battles(1000)

    # Ranking table (polars)
    print(session.ranking().head(10))

    # Re-derive all ratings from the history
    result = session.run_wizard()

Lower-level components:
    from coaster_ranker import Glicko2, StatsStore, HistoryLedger, PairingSelector

    engine = Glicko2(tau=0.5)
    store = StatsStore()
    ledger = HistoryLedger(engine)
    ledger.resolve("Taron", "Baron 1898", "Taron", store)

Command-line interface:
    python -m coaster_ranker simulate coasters.csv --user alice -n 1000
    python -m coaster_ranker top coasters.csv --user alice -n 20
"""

from .base import RatingState, StatsStore, compute_ranks, migrate_legacy
from .data import BattleRecord, BattleSnapshot, Item, ItemCatalog, SideStats, pair_key
from .exceptions import (
    CoasterRankerError,
    PairingInvariantError,
    PersistenceError,
    PersistenceWarning,
    VolatilityConvergenceError,
)
from .history import CompletedPairSet, HistoryLedger, RecomputeResult
from .pairing import NumpyRandom, PairingConfig, PairingSelector, RandomSource
from .persistence import DirectoryStore, InMemoryStore, PersistenceStore
from .session import GameStats, RankingSession, SimulationProgress
from .systems import Glicko2, Glicko2Config, PairOutcome

__version__ = "0.1.0"

__all__ = [
    # Rating engine
    "Glicko2",
    "Glicko2Config",
    "PairOutcome",
    # State
    "RatingState",
    "StatsStore",
    "compute_ranks",
    "migrate_legacy",
    # Data
    "BattleRecord",
    "BattleSnapshot",
    "Item",
    "ItemCatalog",
    "SideStats",
    "pair_key",
    # Pairing
    "NumpyRandom",
    "PairingConfig",
    "PairingSelector",
    "RandomSource",
    # History
    "CompletedPairSet",
    "HistoryLedger",
    "RecomputeResult",
    # Persistence
    "DirectoryStore",
    "InMemoryStore",
    "PersistenceStore",
    # Session
    "GameStats",
    "RankingSession",
    "SimulationProgress",
    # Errors
    "CoasterRankerError",
    "PairingInvariantError",
    "PersistenceError",
    "PersistenceWarning",
    "VolatilityConvergenceError",
]
