"""Items, catalogs and battle record types."""

from .catalog import ItemCatalog
from .types import (
    PAIR_KEY_SEPARATOR,
    BattleRecord,
    BattleSnapshot,
    Item,
    SideStats,
    pair_key,
)

__all__ = [
    "PAIR_KEY_SEPARATOR",
    "BattleRecord",
    "BattleSnapshot",
    "Item",
    "ItemCatalog",
    "SideStats",
    "pair_key",
]
