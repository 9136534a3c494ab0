"""Set of matchups that have already been battled."""

from typing import Iterable, Iterator, List, Optional

from ..data.types import pair_key


class CompletedPairSet:
    """
    Unordered pair keys, one per matchup that has been played.

    Membership mirrors the history ledger: keys are added when a battle is
    recorded, removed when its entry is deleted and re-added on undo.
    """

    def __init__(self, keys: Optional[Iterable[str]] = None):
        self._keys = set(keys or ())

    def add(self, key: str) -> None:
        self._keys.add(key)

    def add_pair(self, name_a: str, name_b: str) -> str:
        key = pair_key(name_a, name_b)
        self._keys.add(key)
        return key

    def discard(self, key: str) -> None:
        self._keys.discard(key)

    def clear(self) -> None:
        self._keys.clear()

    def has_pair(self, name_a: str, name_b: str) -> bool:
        return pair_key(name_a, name_b) in self._keys

    def is_exhausted(self, n_items: int) -> bool:
        """True once every unordered pair of ``n_items`` items is completed."""
        return len(self._keys) >= n_items * (n_items - 1) // 2

    def remaining(self, n_items: int) -> int:
        return max(0, n_items * (n_items - 1) // 2 - len(self._keys))

    def to_list(self) -> List[str]:
        return sorted(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CompletedPairSet):
            return NotImplemented
        return self._keys == other._keys

    def __repr__(self) -> str:
        return f"CompletedPairSet(size={len(self._keys)})"
