"""
Per-user ranking session.

A RankingSession ties the rating engine, the pairing selector, the
history ledger and the stats store together for one user and persists
them through a PersistenceStore under user-namespaced keys:

    coasterStats_<user>      item name -> rating state
    coasterHistory_<user>    list of battle records
    completedPairs_<user>    list of pair keys
    totalBattles_<user>      battle counter
    pairingSettings_<user>   {"explorationPower", "eloProximityPower"}
    currentBattle_<user>     [left, right] or null

Persistence failures never abort an operation: they are logged and
reported as PersistenceWarning while the in-memory state carries on.
"""

import json
import logging
import warnings
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

import numpy as np
import polars as pl

from .base import StatsStore, compute_ranks
from .data import BattleRecord, Item, ItemCatalog
from .exceptions import PersistenceError, PersistenceWarning
from .history import HistoryLedger, RecomputeResult
from .pairing import NumpyRandom, PairingConfig, PairingSelector, RandomSource
from .persistence import InMemoryStore, PersistenceStore
from .systems.glicko2 import Glicko2

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"
CLOSE_MATCHUP_MIN_BATTLES = 3
CLOSE_MATCHUP_RANK_GAP = 3


@dataclass
class SimulationProgress:
    """Progress report yielded by RankingSession.simulate."""

    completed: int
    requested: int
    exhausted: bool = False


@dataclass
class GameStats:
    """Summary counters over the session state."""

    total_battles: int
    min_battles: int
    all_pairs_completed: bool
    unique_parks: int
    unique_manufacturers: int
    history_length: int
    remaining_pairs: int


class RankingSession:
    """
    Battle ranking for a single user.

    Args:
        user: User name, used to namespace persisted keys
        catalog: Items to rank; only operational items take part
        persistence: Key/value store (default: in-memory)
        engine: Glicko-2 engine (default: Glicko2())
        pairing: Pairing configuration (default: PairingConfig())
        rng: Random source for pairing and simulation (default: unseeded)

    Example:
        >>> session = RankingSession("alice", ItemCatalog.from_csv("coasters.csv"))
        >>> session.load()
        >>> left, right = session.next_battle()
        >>> session.choose_winner(0)
        >>> session.ranking().head(10)
    """

    def __init__(
        self,
        user: str,
        catalog: ItemCatalog,
        persistence: Optional[PersistenceStore] = None,
        engine: Optional[Glicko2] = None,
        pairing: Optional[PairingConfig] = None,
        rng: Optional[RandomSource] = None,
        max_history: int = 10000,
        undo_capacity: int = 50,
    ):
        if not user or not str(user).strip():
            raise ValueError("A user name is required")
        self.user = str(user).strip()
        self.catalog = catalog
        self.persistence = persistence if persistence is not None else InMemoryStore()
        self.engine = engine or Glicko2()
        self.selector = PairingSelector(self.engine, pairing)
        self.rng = rng if rng is not None else NumpyRandom()

        self.store = self._new_store()
        self.ledger = HistoryLedger(self.engine, max_entries=max_history, undo_capacity=undo_capacity)
        self.total_battles = 0
        self.current_battle: Optional[Tuple[Item, Item]] = None
        self.items: List[Item] = list(catalog.operational())
        self.store.initialize(self.items)

    # =========================================================================
    # Persistence
    # =========================================================================

    def key(self, name: str) -> str:
        return f"{name}_{self.user}"

    def load(self) -> bool:
        """
        Load the user's state from the persistence store.

        Items in the catalog without stored state start fresh. Returns
        True if stored ratings were found.
        """
        cfg = self.engine.config
        stats = self._read("coasterStats")
        found = isinstance(stats, dict)
        if found:
            self.store = StatsStore.from_dict(
                stats,
                initial_rating=cfg.initial_rating,
                initial_rd=cfg.initial_rd,
                initial_volatility=cfg.initial_volatility,
            )
        else:
            self.store = self._new_store()
        for item in self.items:
            self.store.ensure(item)

        self.ledger.clear()
        history = self._read("coasterHistory")
        if isinstance(history, list):
            self.ledger.from_dicts(history)
        pairs = self._read("completedPairs")
        if isinstance(pairs, list):
            for key in pairs:
                self.ledger.completed_pairs.add(str(key))

        total = self._read("totalBattles")
        self.total_battles = int(total) if isinstance(total, (int, float)) else len(self.ledger)

        settings = self._read("pairingSettings")
        if isinstance(settings, dict):
            self._apply_pairing_settings(settings)

        self.current_battle = None
        current = self._read("currentBattle")
        if isinstance(current, list) and len(current) == 2:
            left, right = (self.catalog.get(str(n)) for n in current)
            if left is not None and right is not None and left.operational and right.operational:
                if not self.ledger.completed_pairs.has_pair(left.name, right.name):
                    self.current_battle = (left, right)

        logger.info(
            "Loaded user %s: %d items, %d battles, %d completed pairs",
            self.user, len(self.store), len(self.ledger), len(self.ledger.completed_pairs),
        )
        return found

    def save(self) -> bool:
        """Write all state; returns False (with a PersistenceWarning) on failure."""
        payload = {
            "coasterStats": self.store.to_dict(),
            "coasterHistory": self.ledger.to_dicts(),
            "completedPairs": self.ledger.completed_pairs.to_list(),
            "totalBattles": self.total_battles,
            "pairingSettings": self.pairing_settings(),
            "currentBattle": self._current_names(),
        }
        try:
            for name, value in payload.items():
                self.persistence.set(self.key(name), json.dumps(value).encode("utf-8"))
        except PersistenceError as e:
            self._warn(f"Could not save data for {self.user}: {e}")
            return False
        return True

    def _read(self, name: str) -> Any:
        key = self.key(name)
        try:
            raw = self.persistence.get(key)
        except PersistenceError as e:
            self._warn(f"Could not read {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
        except (UnicodeDecodeError, ValueError) as e:
            self._warn(f"Ignoring corrupt value for {key}: {e}")
            return None

    def _write(self, name: str, value: Any) -> bool:
        try:
            self.persistence.set(self.key(name), json.dumps(value).encode("utf-8"))
        except PersistenceError as e:
            self._warn(f"Could not save {self.key(name)}: {e}")
            return False
        return True

    @staticmethod
    def _warn(message: str) -> None:
        logger.warning(message)
        warnings.warn(message, PersistenceWarning, stacklevel=3)

    def _new_store(self) -> StatsStore:
        cfg = self.engine.config
        return StatsStore(cfg.initial_rating, cfg.initial_rd, cfg.initial_volatility)

    def _current_names(self) -> Optional[List[str]]:
        if self.current_battle is None:
            return None
        return [self.current_battle[0].name, self.current_battle[1].name]

    # =========================================================================
    # Battles
    # =========================================================================

    def next_battle(self) -> Optional[Tuple[Item, Item]]:
        """
        Choose (or return the pending) battle.

        Returns None once every matchup has been played.
        """
        if self.current_battle is not None:
            left, right = self.current_battle
            if not self.ledger.completed_pairs.has_pair(left.name, right.name):
                return self.current_battle

        self.current_battle = self.selector.select_pair(
            self.items, self.store, self.ledger.completed_pairs, self.rng
        )
        self._write("currentBattle", self._current_names())
        return self.current_battle

    def choose_winner(self, index: int) -> BattleRecord:
        """
        Resolve the current battle: 0 picks the left item, 1 the right.

        Raises:
            ValueError: if there is no current battle or index is not 0/1
        """
        if self.current_battle is None:
            raise ValueError("No battle in progress; call next_battle() first")
        if index not in (0, 1):
            raise ValueError(f"Winner index must be 0 or 1, got {index!r}")
        left, right = self.current_battle
        record = self.ledger.resolve(left, right, self.current_battle[index], self.store)
        self.total_battles += 1
        self.current_battle = None
        self.save()
        return record

    def simulate(self, count: int, batch_size: int = 200) -> Iterator[SimulationProgress]:
        """
        Play ``count`` battles with winners drawn from the expected score.

        Yields progress after every batch. Each battle is applied as a
        whole, so stopping the generator between batches leaves the
        session consistent; state is saved when the generator finishes
        or is closed.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        done = 0
        self.current_battle = None
        try:
            while done < count:
                batch_end = min(count, done + batch_size)
                while done < batch_end:
                    pair = self.selector.select_pair(
                        self.items, self.store, self.ledger.completed_pairs, self.rng
                    )
                    if pair is None:
                        logger.info("All matchups completed after %d simulated battles", done)
                        yield SimulationProgress(done, count, exhausted=True)
                        return
                    a, b = pair
                    p_a = self.engine.win_probability(self.store.ensure(a), self.store.ensure(b))
                    winner = a if self.rng.next() < p_a else b
                    self.ledger.resolve(a, b, winner, self.store)
                    self.total_battles += 1
                    done += 1
                yield SimulationProgress(done, count)
        finally:
            self.save()

    def simulate_battles(
        self,
        count: int,
        progress_callback: Optional[Callable[[SimulationProgress], None]] = None,
    ) -> int:
        """Run a whole simulation; returns the number of battles played."""
        played = 0
        for progress in self.simulate(count):
            played = progress.completed
            if progress_callback is not None:
                progress_callback(progress)
        return played

    # =========================================================================
    # History editing
    # =========================================================================

    def delete_history_entry(self, index: int) -> bool:
        ok = self.ledger.delete(index)
        if ok:
            self.save()
        return ok

    def undo_delete(self) -> bool:
        ok = self.ledger.undo()
        if ok:
            self.save()
        return ok

    def switch_history_winner(self, index: int) -> bool:
        ok = self.ledger.switch_winner(index, self.store)
        if ok:
            self.save()
        return ok

    def run_wizard(self, max_iterations: int = 100) -> RecomputeResult:
        """Recompute all ratings from history (the ranking wizard)."""
        result = self.ledger.recompute_all(self.store, self.items, max_iterations=max_iterations)
        self.save()
        logger.info(
            "Wizard finished: %d iterations, %d rank changes, converged=%s",
            result.iterations, result.total_changes, result.converged,
        )
        return result

    def reset_ranking(self) -> None:
        """Fresh ratings, empty history and completed pairs, zero battle count."""
        self.store = self._new_store()
        self.store.initialize(self.items)
        self.ledger.clear()
        self.total_battles = 0
        self.current_battle = None
        self.save()

    # =========================================================================
    # Export / import
    # =========================================================================

    def pairing_settings(self) -> Dict[str, float]:
        cfg = self.selector.config
        return {"explorationPower": cfg.exploration_power, "eloProximityPower": cfg.proximity_power}

    def _apply_pairing_settings(self, settings: Dict[str, Any]) -> None:
        if "explorationPower" in settings:
            self.set_exploration_power(settings["explorationPower"], persist=False)
        if "eloProximityPower" in settings:
            self.set_proximity_power(settings["eloProximityPower"], persist=False)

    def set_exploration_power(self, value: float, persist: bool = True) -> None:
        value = float(value)
        if not np.isfinite(value) or value < 0:
            raise ValueError(f"exploration_power must be a non-negative number, got {value}")
        self.selector.config.exploration_power = value
        if persist:
            self._write("pairingSettings", self.pairing_settings())

    def set_proximity_power(self, value: float, persist: bool = True) -> None:
        value = float(value)
        if not np.isfinite(value) or value < 0:
            raise ValueError(f"proximity_power must be a non-negative number, got {value}")
        self.selector.config.proximity_power = value
        if persist:
            self._write("pairingSettings", self.pairing_settings())

    def export_data(self) -> Dict[str, Any]:
        """The user's whole state in the versioned export envelope."""
        return {
            "version": EXPORT_VERSION,
            "exportDate": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "user": self.user,
            "data": {
                "coasterStats": self.store.to_dict(),
                "totalBattlesCount": self.total_battles,
                "coasterHistory": self.ledger.to_dicts(),
                "completedPairs": self.ledger.completed_pairs.to_list(),
                "pairingSettings": {
                    "explorationPower": self.selector.config.exploration_power,
                    "eloProximityPower": self.selector.config.proximity_power,
                },
            },
        }

    def export_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.export_data(), indent=indent)

    def import_data(self, envelope: Union[Dict[str, Any], str, bytes]) -> None:
        """
        Replace the session state with an exported envelope.

        Raises:
            ValueError: if the envelope is malformed
        """
        if isinstance(envelope, (str, bytes)):
            try:
                envelope = json.loads(envelope)
            except ValueError as e:
                raise ValueError(f"Import is not valid JSON: {e}") from e
        if not isinstance(envelope, dict) or not isinstance(envelope.get("data"), dict):
            raise ValueError("Import envelope must contain a 'data' object")
        data = envelope["data"]
        stats = data.get("coasterStats")
        if not isinstance(stats, dict):
            raise ValueError("Import data must contain 'coasterStats'")
        history = data.get("coasterHistory") or []
        if not isinstance(history, list):
            raise ValueError("'coasterHistory' must be a list")
        pairs = data.get("completedPairs") or []
        if not isinstance(pairs, list):
            raise ValueError("'completedPairs' must be a list")

        if envelope.get("version") != EXPORT_VERSION:
            logger.warning("Importing export version %r", envelope.get("version"))
        if envelope.get("user") not in (None, self.user):
            logger.info("Importing data exported by %s into %s", envelope["user"], self.user)

        cfg = self.engine.config
        store = StatsStore.from_dict(
            stats,
            initial_rating=cfg.initial_rating,
            initial_rd=cfg.initial_rd,
            initial_volatility=cfg.initial_volatility,
        )
        for item in self.items:
            store.ensure(item)

        self.store = store
        self.ledger.clear()
        self.ledger.from_dicts(history)
        for key in pairs:
            self.ledger.completed_pairs.add(str(key))
        total = data.get("totalBattlesCount")
        self.total_battles = int(total) if isinstance(total, (int, float)) else len(self.ledger)
        settings = data.get("pairingSettings")
        if isinstance(settings, dict):
            self._apply_pairing_settings(settings)
        self.current_battle = None
        self.save()

    # =========================================================================
    # Queries
    # =========================================================================

    def ranking(self) -> pl.DataFrame:
        """Ranking table, highest raw rating first."""
        return self.store.to_dataframe(self.engine)

    def remaining_pairs(self) -> int:
        return self.ledger.completed_pairs.remaining(len(self.items))

    def find_close_matchup(self) -> Optional[Tuple[Item, Item]]:
        """
        A random pair of experienced items ranked close together.

        Both items need more than three battles and their positions by
        displayed rating must differ by less than three.
        """
        states = list(self.store)
        if len(states) < 2:
            return None
        ratings = np.array([s.rating for s in states], dtype=np.float64)
        battles = np.array([s.battles for s in states], dtype=np.float64)
        ranks = compute_ranks(self.engine.displayed_ratings(ratings, battles))

        eligible = []
        for i in range(len(states)):
            if states[i].battles <= CLOSE_MATCHUP_MIN_BATTLES:
                continue
            for j in range(i + 1, len(states)):
                if states[j].battles <= CLOSE_MATCHUP_MIN_BATTLES:
                    continue
                if abs(int(ranks[i]) - int(ranks[j])) < CLOSE_MATCHUP_RANK_GAP:
                    eligible.append((i, j))
        if not eligible:
            return None

        i, j = eligible[min(int(self.rng.next() * len(eligible)), len(eligible) - 1)]
        return self._item_for(states[i]), self._item_for(states[j])

    def _item_for(self, state) -> Item:
        item = self.catalog.get(state.name)
        if item is not None:
            return item
        return Item(name=state.name, park=state.park, manufacturer=state.manufacturer)

    def game_stats(self) -> GameStats:
        states = list(self.store)
        battled = [s for s in states if s.battles > 0]
        return GameStats(
            total_battles=self.total_battles,
            min_battles=min((s.battles for s in states), default=0),
            all_pairs_completed=self.ledger.completed_pairs.is_exhausted(len(self.items)),
            unique_parks=len({s.park for s in battled if s.park}),
            unique_manufacturers=len({s.manufacturer for s in battled if s.manufacturer}),
            history_length=len(self.ledger),
            remaining_pairs=self.remaining_pairs(),
        )

    def __repr__(self) -> str:
        return (
            f"RankingSession(user={self.user!r}, items={len(self.items)}, "
            f"battles={self.total_battles}, history={len(self.ledger)})"
        )
