from contextlib import contextmanager
from typing import Hashable
import threading


class KeyedLock:
    """
    One mutex per key, created on first use and dropped once nobody holds or waits on it.

    Usage:
        locks = KeyedLock()
        with locks.hold(conversation_id):
            ...
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._entries: dict[Hashable, list] = {}

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            entry = self._entries.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
