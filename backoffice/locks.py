"""Per-entity mutual exclusion."""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.holders = 0


class KeyedLocks:
    """One lock per entity id, alive only while someone holds or waits on it.

    Transitions on the same break, exception or request are serialised;
    transitions on different entities proceed in parallel. An entry is
    dropped when its last holder leaves, so the map stays bounded by the
    number of entities being worked on right now.

    Example:
        locks = KeyedLocks()
        with locks.hold(request_id):
            ...
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, _Entry] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _Entry()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]

    def active_keys(self) -> List[str]:
        with self._guard:
            return sorted(self._locks)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
