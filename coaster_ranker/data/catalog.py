"""Item catalog: the ordered set of rankable items.

Uses Polars for loading tabular item lists.
"""

from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

import polars as pl

from .types import Item

# Dutch column names found in older coaster lists
_COLUMN_ALIASES = {
    "naam": "name",
    "fabrikant": "manufacturer",
    "operatief": "operational",
}


class ItemCatalog:
    """
    Ordered collection of Items with unique names.

    The order is stable and is the order the pairing selector indexes
    into, so two catalogs built from the same rows behave identically
    under a seeded random source.
    """

    def __init__(self, items: Optional[Iterable[Item]] = None):
        self._items: List[Item] = []
        self._by_name: Dict[str, Item] = {}
        for item in items or ():
            self.add(item)

    def add(self, item: Item) -> None:
        if item.name in self._by_name:
            raise ValueError(f"Duplicate item name: {item.name!r}")
        self._items.append(item)
        self._by_name[item.name] = item

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "ItemCatalog":
        return cls(Item(name=n) for n in names)

    @classmethod
    def from_dataframe(cls, df) -> "ItemCatalog":
        """
        Build a catalog from a DataFrame (pandas or polars).

        Required column: name (or naam). Optional: park, manufacturer
        (or fabrikant), operational (or operatief, 1/0 or bool).
        """
        if not isinstance(df, pl.DataFrame):
            # Assume pandas DataFrame - convert to polars
            df = pl.from_pandas(df)

        df = df.rename({k: v for k, v in _COLUMN_ALIASES.items() if k in df.columns})
        if "name" not in df.columns:
            raise ValueError("Missing required column: name")

        if "park" not in df.columns:
            df = df.with_columns(pl.lit("").alias("park"))
        if "manufacturer" not in df.columns:
            df = df.with_columns(pl.lit("").alias("manufacturer"))
        if "operational" not in df.columns:
            df = df.with_columns(pl.lit(True).alias("operational"))

        df = df.select(
            pl.col("name").cast(pl.Utf8).str.strip_chars(),
            pl.col("park").cast(pl.Utf8).fill_null(""),
            pl.col("manufacturer").cast(pl.Utf8).fill_null(""),
            pl.col("operational").cast(pl.Int64, strict=False).fill_null(0).cast(pl.Boolean),
        ).filter(pl.col("name").is_not_null() & (pl.col("name") != ""))

        return cls(
            Item(name=row["name"], park=row["park"], manufacturer=row["manufacturer"],
                 operational=row["operational"])
            for row in df.iter_rows(named=True)
        )

    @classmethod
    def from_csv(cls, path: Union[str, Path], separator: str = ",") -> "ItemCatalog":
        """Load a catalog from a CSV file."""
        return cls.from_dataframe(pl.read_csv(path, separator=separator))

    @classmethod
    def from_parquet(cls, path: Union[str, Path]) -> "ItemCatalog":
        """Load a catalog from a parquet file."""
        return cls.from_dataframe(pl.read_parquet(path))

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ItemCatalog":
        if str(path).endswith(".parquet"):
            return cls.from_parquet(path)
        return cls.from_csv(path)

    def operational(self) -> "ItemCatalog":
        """A new catalog with only operational items, order preserved."""
        return ItemCatalog(item for item in self._items if item.operational)

    def get(self, name: str) -> Optional[Item]:
        return self._by_name.get(name)

    @property
    def names(self) -> List[str]:
        return [item.name for item in self._items]

    @property
    def num_pairs(self) -> int:
        """Number of unordered pairs, n * (n - 1) / 2."""
        n = len(self._items)
        return n * (n - 1) // 2

    def to_dataframe(self) -> pl.DataFrame:
        return pl.DataFrame({
            "name": [i.name for i in self._items],
            "park": [i.park for i in self._items],
            "manufacturer": [i.manufacturer for i in self._items],
            "operational": [i.operational for i in self._items],
        })

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def __getitem__(self, index: int) -> Item:
        return self._items[index]

    def __iter__(self) -> Iterator[Item]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        operational = sum(1 for i in self._items if i.operational)
        return f"ItemCatalog(items={len(self._items)}, operational={operational})"
