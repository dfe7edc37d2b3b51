# sortebem/database/locks.py

import threading
from contextlib import contextmanager

# One critical section per aggregate id (raffle, payment or credential).
# Entries are reference counted so ids that are no longer in use are dropped.


class KeyedLock:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def active_keys(self):
        with self._guard:
            return list(self._locks)
