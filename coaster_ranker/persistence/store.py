"""Key/value persistence backends.

Values are opaque bytes (the session stores UTF-8 JSON). Backends raise
PersistenceError on failure; callers decide whether that is fatal.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Iterator, Optional, Protocol, Union, runtime_checkable
from urllib.parse import quote, unquote

from ..exceptions import PersistenceError

logger = logging.getLogger(__name__)


@runtime_checkable
class PersistenceStore(Protocol):
    """Minimal get/set interface a session persists through."""

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...


class InMemoryStore:
    """Dict-backed store, useful for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, bytes]] = None):
        self._data: Dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(sorted(self._data))

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"InMemoryStore(keys={len(self._data)})"


class DirectoryStore:
    """
    One file per key under ``root``.

    Writes go to a temporary sibling first and are moved into place with
    ``os.replace``, so a crash never leaves a half-written value behind.
    """

    suffix = ".json"

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        return self.root / (quote(key, safe="") + self.suffix)

    def get(self, key: str) -> Optional[bytes]:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(key, f"cannot read {path}: {e}") from e

    def set(self, key: str, value: bytes) -> None:
        path = self.path_for(key)
        tmp = path.with_name(path.name + f".tmp_{os.getpid()}")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(value)
            os.replace(tmp, path)
        except OSError as e:
            try:
                tmp.unlink()
            except OSError:
                pass
            raise PersistenceError(key, f"cannot write {path}: {e}") from e
        logger.debug("Wrote %d bytes to %s", len(value), path)

    def delete(self, key: str) -> None:
        try:
            self.path_for(key).unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise PersistenceError(key, f"cannot delete: {e}") from e

    def keys(self) -> Iterator[str]:
        if not self.root.is_dir():
            return iter(())
        return iter(sorted(
            unquote(p.name[: -len(self.suffix)])
            for p in self.root.iterdir()
            if p.is_file() and p.name.endswith(self.suffix)
        ))

    def __repr__(self) -> str:
        return f"DirectoryStore(root={str(self.root)!r})"
