# Per-entry locks that are dropped again once nobody holds or waits for them

import threading
from contextlib import contextmanager


class EntryLocks:
    """
    One lock per entry id, created on demand. A lock lives only while some
    thread holds it or waits for it, so a long-running process does not keep a
    lock for every entry it has ever touched.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._slots = {} # entry_id -> [lock, users]

    @contextmanager
    def hold(self, entry_id):
        with self._guard:
            slot = self._slots.get(entry_id)
            if slot is None:
                slot = self._slots[entry_id] = [threading.RLock(), 0]
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._slots[entry_id]

    def __len__(self):
        with self._guard:
            return len(self._slots)
