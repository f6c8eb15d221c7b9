"""
store.py - the key-value tables behind the record adapter.

Two implementations of the same small surface:

- MemoryStore: a dict, for tests and throwaway servers.
- DbmStore:    an on-disk table via the stdlib `dbm` package. With the GNU
               backend iteration follows gdbm's own hash order (firstkey /
               nextkey); other backends iterate keys in byte order.

Keys and values are opaque bytes. Neither class does any locking; see
records.py for how access is serialized.
"""

import bisect
import dbm
import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """What the record adapter needs from a table."""

    def get(self, key: bytes) -> Optional[bytes]: ...

    def put(self, key: bytes, value: bytes, replace: bool = False) -> bool: ...

    def delete(self, key: bytes) -> bool: ...

    def exists(self, key: bytes) -> bool: ...

    def first_key(self) -> Optional[bytes]: ...

    def next_key(self, key: bytes) -> Optional[bytes]: ...

    def close(self) -> None: ...


def _key_after(keys, key: bytes) -> Optional[bytes]:
    # Works even when `key` itself was deleted mid-iteration. One full scan per
    # call, so only the non-GNU dbm fallback uses it.
    later = [k for k in keys if k > key]
    return min(later) if later else None


class MemoryStore:
    """
    Dict-backed table. Iterates in byte order of the keys; a sorted key list
    kept beside the dict makes each next_key() a binary search.
    """

    def __init__(self, initial: Optional[Dict[bytes, bytes]] = None) -> None:
        self._data: Dict[bytes, bytes] = dict(initial or {})
        self._keys: List[bytes] = sorted(self._data)

    def get(self, key: bytes) -> Optional[bytes]:
        return self._data.get(key)

    def put(self, key: bytes, value: bytes, replace: bool = False) -> bool:
        """Insert-only unless `replace`; returns False when an insert hits an existing key."""
        if key in self._data:
            if not replace:
                return False
        else:
            bisect.insort(self._keys, key)
        self._data[key] = value
        return True

    def delete(self, key: bytes) -> bool:
        if self._data.pop(key, None) is None:
            return False
        del self._keys[bisect.bisect_left(self._keys, key)]
        return True

    def exists(self, key: bytes) -> bool:
        return key in self._data

    def first_key(self) -> Optional[bytes]:
        return self._keys[0] if self._keys else None

    def next_key(self, key: bytes) -> Optional[bytes]:
        # bisect_right also finds the successor of a key deleted mid-walk.
        i = bisect.bisect_right(self._keys, key)
        return self._keys[i] if i < len(self._keys) else None

    def close(self) -> None:
        pass


class DbmStore:
    """On-disk table. Opened read/write and created when missing (mode 0660)."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._db = dbm.open(str(self.path), "c", 0o660)
        # Only the GNU backend exposes its own iteration order.
        self._native_order = hasattr(self._db, "firstkey") and hasattr(self._db, "nextkey")
        logger.debug("opened %s (%s)", self.path, type(self._db).__module__)

    def get(self, key: bytes) -> Optional[bytes]:
        try:
            return self._db[key]
        except KeyError:
            return None

    def put(self, key: bytes, value: bytes, replace: bool = False) -> bool:
        if not replace and key in self._db:
            return False
        self._db[key] = value
        return True

    def delete(self, key: bytes) -> bool:
        try:
            del self._db[key]
        except KeyError:
            return False
        return True

    def exists(self, key: bytes) -> bool:
        return key in self._db

    def first_key(self) -> Optional[bytes]:
        if self._native_order:
            return self._db.firstkey()
        keys = self._db.keys()
        return min(keys) if keys else None

    def next_key(self, key: bytes) -> Optional[bytes]:
        if self._native_order:
            try:
                following = self._db.nextkey(key)
            except KeyError:
                following = None
            if following is None and key not in self._db:
                # gdbm cannot find the successor of a key that is gone, so
                # a walk that reaches one ends here.
                logger.warning("%s: %r was deleted during iteration; remaining keys are skipped",
                               self.path, key)
            return following
        return _key_after(self._db.keys(), key)

    def close(self) -> None:
        self._db.close()


def open_tables(data_dir: Path) -> Tuple[DbmStore, DbmStore]:
    """The two tables the server needs: (users, entries)."""
    data_dir = Path(data_dir)
    return DbmStore(data_dir / "users.db"), DbmStore(data_dir / "watchlist.db")
