from __future__ import annotations

from typing import Iterator
import threading

from .models import ItemKey


class BackedUpItems:
    """Set of items already written to the archive during one run."""

    def __init__(self) -> None:
        self._keys: set[ItemKey] = set()
        self._lock = threading.Lock()

    def mark(self, key: ItemKey) -> bool:
        """Add ``key`` and return True if it was already present."""
        with self._lock:
            if key in self._keys:
                return True
            self._keys.add(key)
            return False

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def __iter__(self) -> Iterator[ItemKey]:
        with self._lock:
            return iter(sorted(self._keys, key=lambda key: (key.resource, key.namespace, key.name)))
