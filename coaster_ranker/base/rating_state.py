"""Per-item Glicko-2 rating state."""

import math
from dataclasses import dataclass, asdict
from typing import Any, Dict

RATING_BASE = 1500.0
RD_INITIAL = 350.0
VOLATILITY_INITIAL = 0.06


@dataclass
class RatingState:
    """
    Mutable rating state of a single item.

    Ratings and RDs are stored on the Glicko scale (1500 / 350), the
    engine converts to the internal Glicko-2 scale when updating.

    Invariants: rd > 0, volatility > 0, battles == wins + losses.
    """

    name: str
    park: str = ""
    manufacturer: str = ""
    rating: float = RATING_BASE
    rd: float = RD_INITIAL
    volatility: float = VOLATILITY_INITIAL
    battles: int = 0
    wins: int = 0
    losses: int = 0

    def __post_init__(self):
        self.rating = float(self.rating)
        self.rd = float(self.rd)
        self.volatility = float(self.volatility)
        if not math.isfinite(self.rating):
            raise ValueError(f"Rating for {self.name!r} must be finite, got {self.rating}")
        if self.rd <= 0:
            raise ValueError(f"RD for {self.name!r} must be positive, got {self.rd}")
        if self.volatility <= 0:
            raise ValueError(
                f"Volatility for {self.name!r} must be positive, got {self.volatility}"
            )

    def set_rating(self, rating: float, rd: float, volatility: float) -> None:
        self.rating = float(rating)
        self.rd = float(rd)
        self.volatility = float(volatility)

    def copy(self) -> "RatingState":
        return RatingState(**asdict(self))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RatingState":
        """Build a state from a stored dict, migrating legacy Elo entries."""
        return migrate_legacy(data)


def migrate_legacy(data: Dict[str, Any]) -> RatingState:
    """
    Convert a stored stats dict into a RatingState.

    Older data carried a single ``elo`` number and no RD or volatility.
    That number becomes the rating and RD/volatility start from the
    initial defaults. Any other missing Glicko-2 field is filled with
    its default as well.
    """
    data = dict(data)
    if "elo" in data:
        legacy = data.pop("elo")
        if data.get("rating") is None:
            data["rating"] = legacy
            data["rd"] = RD_INITIAL
            data["volatility"] = VOLATILITY_INITIAL

    battles = int(data.get("battles") or 0)
    wins = int(data.get("wins") or 0)
    losses = int(data.get("losses") or 0)
    if wins + losses != battles:
        battles = wins + losses

    return RatingState(
        name=str(data["name"]),
        park=data.get("park") or "",
        manufacturer=data.get("manufacturer") or "",
        rating=RATING_BASE if data.get("rating") is None else data["rating"],
        rd=data.get("rd") or RD_INITIAL,
        volatility=data.get("volatility") or VOLATILITY_INITIAL,
        battles=battles,
        wins=wins,
        losses=losses,
    )
