"""
Battle history ledger.

Keeps the chronological list of resolved battles with full before/after
snapshots, the completed-pair set and a bounded undo stack for deletes.
Two operations rewrite ratings from the stored snapshots:

- ``switch_winner`` flips a single entry and recomputes it from that
  entry's own before-values. Later entries involving the same items keep
  the before-values they captured at the time and may therefore be
  stale; only ``recompute_all`` re-derives them.
- ``recompute_all`` (the ranking wizard) replays every entry in order,
  each one restarted from its stored before-values, until no item
  changes rank between two passes.
"""

import logging
import numbers
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Deque, Dict, Iterable, List, Optional, Tuple, Union

import polars as pl

from ..base.rating_state import RatingState
from ..data.types import BattleRecord, BattleSnapshot, Item, SideStats, utc_timestamp
from .completed_pairs import CompletedPairSet

if TYPE_CHECKING:
    from ..base import StatsStore
    from ..systems.glicko2 import Glicko2, PairOutcome

logger = logging.getLogger(__name__)

CLOSE_FIGHT_RANK_GAP = 3


@dataclass
class RecomputeResult:
    """Summary of a recompute_all run."""

    iterations: int
    total_changes: int
    converged: bool


def _name(item: Union[Item, str]) -> str:
    return item if isinstance(item, str) else item.name


class HistoryLedger:
    """
    Ordered, editable log of battles.

    Args:
        engine: Rating engine used to resolve and replay battles
        max_entries: Retention cap; the oldest entries are dropped beyond it
        undo_capacity: Maximum number of deletes that can be undone

    Example:
        >>> ledger = HistoryLedger(Glicko2())
        >>> record = ledger.resolve("Taron", "Baron 1898", "Taron", store)
        >>> ledger.delete(0)
        True
        >>> ledger.undo()
        True
    """

    def __init__(
        self,
        engine: "Glicko2",
        max_entries: int = 10000,
        undo_capacity: int = 50,
    ):
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        if undo_capacity < 1:
            raise ValueError(f"undo_capacity must be positive, got {undo_capacity}")
        self.engine = engine
        self.max_entries = max_entries
        self.undo_capacity = undo_capacity
        self.entries: List[BattleRecord] = []
        self.completed_pairs = CompletedPairSet()
        self._undo: Deque[Tuple[BattleRecord, int]] = deque(maxlen=undo_capacity)

    # =========================================================================
    # Recording
    # =========================================================================

    def record(
        self,
        left: str,
        right: str,
        winner: str,
        loser: str,
        snapshot: BattleSnapshot,
        timestamp: Optional[str] = None,
    ) -> BattleRecord:
        """Append a resolved battle and mark its pair as completed."""
        entry = BattleRecord(
            left=left,
            right=right,
            winner=winner,
            loser=loser,
            stats_a=snapshot.stats_a,
            stats_b=snapshot.stats_b,
            close_fight=snapshot.close_fight,
            timestamp=timestamp or utc_timestamp(),
        )
        self.entries.append(entry)
        self.completed_pairs.add(entry.pair_key)
        self._enforce_cap()
        return entry

    def resolve(
        self,
        left: Union[Item, str],
        right: Union[Item, str],
        winner: Union[Item, str],
        store: "StatsStore",
    ) -> BattleRecord:
        """
        Apply a battle outcome to the store and record it.

        Both rating states are computed before either is written, so an
        engine failure leaves the store and the ledger untouched.

        Raises:
            ValueError: if ``winner`` is not one of the two participants
            VolatilityConvergenceError: if the rating update fails
        """
        left_name, right_name, winner_name = _name(left), _name(right), _name(winner)
        if left_name == right_name:
            # Rejected before the store is touched
            raise ValueError(f"An item cannot battle itself: {left_name!r}")
        if winner_name not in (left_name, right_name):
            raise ValueError(
                f"Winner {winner_name!r} is neither {left_name!r} nor {right_name!r}"
            )
        loser_name = right_name if winner_name == left_name else left_name

        store.ensure(left)
        store.ensure(right)
        w_before = store.get(winner_name).copy()
        l_before = store.get(loser_name).copy()
        w_rank_before = store.rank(winner_name)
        l_rank_before = store.rank(loser_name)

        outcome, w_side, l_side = self._evaluate(w_before, l_before)

        store.apply_outcome(winner_name, loser_name, outcome)
        w_side.rank_before, l_side.rank_before = w_rank_before, l_rank_before
        w_side.rank_after = store.rank(winner_name)
        l_side.rank_after = store.rank(loser_name)

        w_is_left = winner_name == left_name
        snapshot = BattleSnapshot(
            stats_a=w_side if w_is_left else l_side,
            stats_b=l_side if w_is_left else w_side,
            close_fight=abs(w_rank_before - l_rank_before) < CLOSE_FIGHT_RANK_GAP,
        )
        entry = self.record(left_name, right_name, winner_name, loser_name, snapshot)
        logger.debug(
            "%s beat %s: %.1f -> %.1f / %.1f -> %.1f",
            winner_name, loser_name,
            w_side.rating_before, w_side.rating_after,
            l_side.rating_before, l_side.rating_after,
        )
        return entry

    # =========================================================================
    # Delete / undo
    # =========================================================================

    def delete(self, index: int) -> bool:
        """
        Remove an entry and reopen its matchup.

        Ratings are not touched. Returns False (and logs) if ``index`` is
        out of range.
        """
        if not self._valid_index(index, "delete"):
            return False
        entry = self.entries.pop(index)
        if not any(e.pair_key == entry.pair_key for e in self.entries):
            self.completed_pairs.discard(entry.pair_key)
        self._undo.append((entry, index))
        logger.info("Deleted battle %d: %s vs %s", index, entry.left, entry.right)
        return True

    def undo(self) -> bool:
        """Restore the most recently deleted entry at its original index."""
        if not self._undo:
            return False
        entry, index = self._undo.pop()
        self.entries.insert(min(index, len(self.entries)), entry)
        self.completed_pairs.add(entry.pair_key)
        self._enforce_cap()
        return True

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    # =========================================================================
    # Rewrites
    # =========================================================================

    def switch_winner(self, index: int, store: "StatsStore") -> bool:
        """
        Flip the winner of one entry and recompute it.

        Both participants are restored to the before-values stored on the
        entry, their win/loss counts are swapped for this battle and the
        pair is recomputed with the new winner. Other entries are left
        as they are.
        """
        if not self._valid_index(index, "switch winner of"):
            return False

        entry = self.entries[index]
        new_winner, new_loser = entry.loser, entry.winner
        w_anchor = self._anchor(entry, new_winner)
        l_anchor = self._anchor(entry, new_loser)
        outcome, w_side, l_side = self._evaluate(w_anchor, l_anchor)

        w_state = store.ensure(new_winner)
        l_state = store.ensure(new_loser)
        if w_state.losses > 0 and l_state.wins > 0:
            w_state.losses -= 1
            w_state.wins += 1
            l_state.wins -= 1
            l_state.losses += 1
        else:
            logger.warning(
                "Win/loss counts for %s vs %s do not reflect battle %d, leaving them",
                new_winner, new_loser, index,
            )

        store.apply_outcome(new_winner, new_loser, outcome, count_battle=False)
        self._write_back(entry, new_winner, new_loser, w_side, l_side, store)
        logger.info("Switched winner of battle %d to %s", index, new_winner)
        return True

    def recompute_all(
        self,
        store: "StatsStore",
        items: Optional[Iterable[Union[Item, str]]] = None,
        max_iterations: int = 100,
    ) -> RecomputeResult:
        """
        Replay the whole history until ranks stop changing.

        Every entry restarts from its own stored before-values, so the
        chronological structure is held fixed while the results are
        written back to the entries and the store.
        """
        for item in items or ():
            store.ensure(item)
        for entry in self.entries:
            store.ensure(entry.left)
            store.ensure(entry.right)

        if not self.entries:
            return RecomputeResult(iterations=0, total_changes=0, converged=True)

        total_changes = 0
        for iteration in range(1, max_iterations + 1):
            ranks_before = store.ranks()

            for entry in self.entries:
                w_anchor = self._anchor(entry, entry.winner)
                l_anchor = self._anchor(entry, entry.loser)
                outcome, w_side, l_side = self._evaluate(w_anchor, l_anchor)
                store.apply_outcome(entry.winner, entry.loser, outcome, count_battle=False)
                self._write_back(entry, entry.winner, entry.loser, w_side, l_side, store)

            ranks_after = store.ranks()
            changes = sum(1 for name, rank in ranks_after.items() if ranks_before.get(name) != rank)
            total_changes += changes
            logger.info("Recompute pass %d: %d items changed rank", iteration, changes)
            if changes == 0:
                return RecomputeResult(iteration, total_changes, converged=True)

        logger.warning("Recompute did not converge after %d passes", max_iterations)
        return RecomputeResult(max_iterations, total_changes, converged=False)

    # =========================================================================
    # Queries and serialisation
    # =========================================================================

    def clear(self) -> None:
        self.entries.clear()
        self.completed_pairs.clear()
        self._undo.clear()

    def for_item(self, name: str) -> List[Tuple[int, BattleRecord]]:
        """(index, entry) for every battle ``name`` took part in."""
        return [(i, e) for i, e in enumerate(self.entries) if e.involves(name)]

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.entries]

    def from_dicts(self, rows: Iterable[Dict[str, Any]]) -> int:
        """
        Replace the entries with stored rows.

        Rows that cannot be parsed are skipped with a warning. The completed
        set is rebuilt from the loaded entries and the undo stack is emptied.
        Returns the number of skipped rows.
        """
        self.entries = []
        self.completed_pairs.clear()
        self._undo.clear()
        skipped = 0
        for i, row in enumerate(rows):
            try:
                entry = BattleRecord.from_dict(row)
            except (KeyError, TypeError, ValueError) as e:
                skipped += 1
                logger.warning("Skipping history row %d: %s", i, e)
                continue
            self.entries.append(entry)
            self.completed_pairs.add(entry.pair_key)
        self._enforce_cap()
        return skipped

    def to_dataframe(self) -> pl.DataFrame:
        """History as a table, one row per battle in chronological order."""
        rows = []
        for i, e in enumerate(self.entries):
            w, l = e.side(e.winner), e.side(e.loser)
            rows.append({
                "index": i,
                "timestamp": e.timestamp,
                "left": e.left,
                "right": e.right,
                "winner": e.winner,
                "loser": e.loser,
                "winner_rating_before": w.rating_before,
                "winner_rating_after": w.rating_after,
                "loser_rating_before": l.rating_before,
                "loser_rating_after": l.rating_after,
                "expected_win_probability": w.expected_win_probability,
                "close_fight": e.close_fight,
            })
        schema = {
            "index": pl.Int64, "timestamp": pl.Utf8, "left": pl.Utf8, "right": pl.Utf8,
            "winner": pl.Utf8, "loser": pl.Utf8,
            "winner_rating_before": pl.Float64, "winner_rating_after": pl.Float64,
            "loser_rating_before": pl.Float64, "loser_rating_after": pl.Float64,
            "expected_win_probability": pl.Float64, "close_fight": pl.Boolean,
        }
        return pl.DataFrame(rows, schema=schema)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> BattleRecord:
        return self.entries[index]

    def __iter__(self):
        return iter(self.entries)

    def __repr__(self) -> str:
        return (
            f"HistoryLedger(entries={len(self.entries)}, "
            f"completed_pairs={len(self.completed_pairs)}, undo={len(self._undo)})"
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _evaluate(
        self,
        winner: RatingState,
        loser: RatingState,
    ) -> Tuple["PairOutcome", SideStats, SideStats]:
        """Outcome plus both snapshots (without ranks) for a battle from given states."""
        outcome = self.engine.update_pair(winner, loser)
        reversed_outcome = self.engine.update_pair(loser, winner)
        p_win = self.engine.win_probability(winner, loser)

        w_side = SideStats(
            rating_before=winner.rating,
            rating_after=outcome.new_winner_rating,
            rd_before=winner.rd,
            rd_after=outcome.new_winner_rd,
            volatility_before=winner.volatility,
            volatility_after=outcome.new_winner_volatility,
            potential_gain=outcome.new_winner_rating - winner.rating,
            potential_loss=reversed_outcome.new_loser_rating - winner.rating,
            expected_win_probability=p_win,
            total_battles_before=winner.battles,
        )
        l_side = SideStats(
            rating_before=loser.rating,
            rating_after=outcome.new_loser_rating,
            rd_before=loser.rd,
            rd_after=outcome.new_loser_rd,
            volatility_before=loser.volatility,
            volatility_after=outcome.new_loser_volatility,
            potential_gain=reversed_outcome.new_winner_rating - loser.rating,
            potential_loss=outcome.new_loser_rating - loser.rating,
            expected_win_probability=1.0 - p_win,
            total_battles_before=loser.battles,
        )
        return outcome, w_side, l_side

    @staticmethod
    def _anchor(entry: BattleRecord, name: str) -> RatingState:
        """Pre-battle state of ``name`` as stored on the entry."""
        side = entry.side(name)
        return RatingState(
            name=name,
            rating=side.rating_before,
            rd=side.rd_before,
            volatility=side.volatility_before,
            battles=side.total_battles_before,
        )

    @staticmethod
    def _write_back(
        entry: BattleRecord,
        winner: str,
        loser: str,
        w_side: SideStats,
        l_side: SideStats,
        store: "StatsStore",
    ) -> None:
        w_side.rank_before = entry.side(winner).rank_before
        l_side.rank_before = entry.side(loser).rank_before
        w_side.rank_after = store.rank(winner)
        l_side.rank_after = store.rank(loser)
        entry.winner, entry.loser = winner, loser
        if winner == entry.left:
            entry.stats_a, entry.stats_b = w_side, l_side
        else:
            entry.stats_a, entry.stats_b = l_side, w_side

    def _valid_index(self, index: int, action: str) -> bool:
        if isinstance(index, bool) or not isinstance(index, numbers.Integral) or not 0 <= index < len(self.entries):
            logger.warning(
                "Cannot %s history entry %r: ledger has %d entries",
                action, index, len(self.entries),
            )
            return False
        return True

    def _enforce_cap(self) -> None:
        overflow = len(self.entries) - self.max_entries
        if overflow > 0:
            # Dropped entries keep their pair keys: those matchups were played
            del self.entries[:overflow]
            logger.debug("Dropped %d oldest history entries", overflow)
