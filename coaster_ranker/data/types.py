"""Data types shared by the ranking components."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..base.rating_state import RD_INITIAL, VOLATILITY_INITIAL

PAIR_KEY_SEPARATOR = "|||"


def pair_key(name_a: str, name_b: str) -> str:
    """Unordered key for a matchup (same for (a, b) and (b, a))."""
    return PAIR_KEY_SEPARATOR.join(sorted((name_a, name_b)))


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Item:
    """A rankable catalog entry. Identity is the name."""

    name: str
    park: str = ""
    manufacturer: str = ""
    operational: bool = True


# Python attribute -> stored (camelCase) key
_SIDE_KEYS = {
    "rating_before": "ratingBefore",
    "rating_after": "ratingAfter",
    "rd_before": "rdBefore",
    "rd_after": "rdAfter",
    "volatility_before": "volatilityBefore",
    "volatility_after": "volatilityAfter",
    "rank_before": "rankBefore",
    "rank_after": "rankAfter",
    "potential_gain": "potentialGain",
    "potential_loss": "potentialLoss",
    "expected_win_probability": "expectedWinProbability",
    "total_battles_before": "totalBattlesBefore",
}

_LEGACY_SIDE_KEYS = {
    "rating_before": "eloBefore",
    "rating_after": "eloAfter",
}

_REQUIRED_SIDE_FIELDS = frozenset({
    "rating_before", "rating_after",
    "rd_before", "rd_after",
    "volatility_before", "volatility_after",
})


@dataclass
class SideStats:
    """Before/after snapshot for one side (left or right) of a battle."""

    rating_before: float
    rating_after: float
    rd_before: float
    rd_after: float
    volatility_before: float
    volatility_after: float
    rank_before: Optional[int] = None
    rank_after: Optional[int] = None
    potential_gain: float = 0.0  # rating change if this side wins
    potential_loss: float = 0.0  # rating change if this side loses
    expected_win_probability: float = 0.5
    total_battles_before: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, attr) for attr, key in _SIDE_KEYS.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SideStats":
        kwargs = {}
        for attr, key in _SIDE_KEYS.items():
            if key in data:
                kwargs[attr] = data[key]
            elif attr in _LEGACY_SIDE_KEYS and _LEGACY_SIDE_KEYS[attr] in data:
                kwargs[attr] = data[_LEGACY_SIDE_KEYS[attr]]
        missing = _REQUIRED_SIDE_FIELDS - kwargs.keys()
        if missing:
            # Pre-Glicko snapshots only stored Elo values
            for attr in missing:
                if attr.startswith("rd_"):
                    kwargs[attr] = RD_INITIAL
                elif attr.startswith("volatility_"):
                    kwargs[attr] = VOLATILITY_INITIAL
                else:
                    raise ValueError(f"Battle snapshot is missing {_SIDE_KEYS[attr]!r}")
        return cls(**kwargs)


@dataclass
class BattleSnapshot:
    """Both sides of a resolved battle, keyed to left (a) and right (b)."""

    stats_a: SideStats
    stats_b: SideStats
    close_fight: bool = False


@dataclass
class BattleRecord:
    """
    One resolved battle in the history ledger.

    ``stats_a`` belongs to ``left`` and ``stats_b`` to ``right``.
    """

    left: str
    right: str
    winner: str
    loser: str
    stats_a: SideStats
    stats_b: SideStats
    close_fight: bool = False
    timestamp: str = field(default_factory=utc_timestamp)
    pair_key: str = ""

    def __post_init__(self):
        if self.left == self.right:
            raise ValueError(f"An item cannot battle itself: {self.left!r}")
        if self.winner not in (self.left, self.right):
            raise ValueError(
                f"Winner {self.winner!r} is neither {self.left!r} nor {self.right!r}"
            )
        expected_loser = self.right if self.winner == self.left else self.left
        if self.loser != expected_loser:
            raise ValueError(
                f"Loser {self.loser!r} does not match the other side {expected_loser!r}"
            )
        if not self.pair_key:
            self.pair_key = pair_key(self.left, self.right)

    def side(self, name: str) -> SideStats:
        """Snapshot belonging to the named participant."""
        if name == self.left:
            return self.stats_a
        if name == self.right:
            return self.stats_b
        raise KeyError(name)

    def involves(self, name: str) -> bool:
        return name == self.left or name == self.right

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pairKey": self.pair_key,
            "left": self.left,
            "right": self.right,
            "a": self.left,
            "b": self.right,
            "winner": self.winner,
            "loser": self.loser,
            "timestamp": self.timestamp,
            "statsA": self.stats_a.to_dict(),
            "statsB": self.stats_b.to_dict(),
            "closeFight": self.close_fight,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BattleRecord":
        left = data.get("left", data.get("a"))
        right = data.get("right", data.get("b"))
        winner = data["winner"]
        loser = data.get("loser") or (right if winner == left else left)
        return cls(
            left=left,
            right=right,
            winner=winner,
            loser=loser,
            stats_a=SideStats.from_dict(data["statsA"]),
            stats_b=SideStats.from_dict(data["statsB"]),
            close_fight=bool(data.get("closeFight", False)),
            timestamp=data.get("timestamp") or utc_timestamp(),
            pair_key=data.get("pairKey") or pair_key(left, right),
        )
