"""Per-consumable mutexes for the reconciliation service.

Sync route handlers run on a thread pool, so two requests can try to rewrite
the same consumable's ledger at once. Database transactions alone would let the
later commit silently replay over a stale read; holding one lock per consumable
for the whole operation serialises them inside this process.
"""

from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from typing import Hashable, Iterator

# Shared key for operations that hand out or check reference numbers, which
# are unique across consumables.
REFERENCE_NUMBERS = "reference-numbers"


class KeyedLocks:
    """Lock per key, dropped again once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> [lock, holders + waiters]
        self._locks: dict[Hashable, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def _acquire(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            slot = self._locks.get(key)
            if slot is None:
                slot = self._locks[key] = [threading.Lock(), 0]
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[key]

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        """Acquire the locks for ``keys`` in a stable order."""

        ordered = sorted(set(keys), key=repr)
        with ExitStack() as stack:
            for key in ordered:
                stack.enter_context(self._acquire(key))
            yield


consumable_locks = KeyedLocks()
