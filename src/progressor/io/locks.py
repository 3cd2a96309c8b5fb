"""
In-process keyed mutexes.

One lock per (user_id, exercise_id).  Enough for a single-process
deployment; across processes the SQLite write transaction
(BEGIN IMMEDIATE) provides the exclusion.

A key's lock only exists while someone holds or waits for it, so a
long-running worker does not accumulate one lock per exercise ever seen.
"""

import threading
from collections.abc import Hashable

from ..core.config import LOCK_TIMEOUT_SECONDS
from ..core.errors import TransientStoreError


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyLease:
    """A held key lock.  Call release() exactly once."""

    def __init__(self, owner: "KeyedLocks", key: Hashable, entry: _Entry):
        self._owner = owner
        self._key = key
        self._entry = entry

    def release(self) -> None:
        self._entry.lock.release()
        self._owner._drop(self._key, self._entry)


class KeyedLocks:
    """Mutex per key, created on first use and discarded when unused."""

    def __init__(self, timeout: float = LOCK_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _drop(self, key: Hashable, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    def acquire(self, key: Hashable) -> KeyLease:
        """
        Block until the key's lock is held, or raise after ``timeout``.

        Returns:
            A lease; the caller must release it

        Raises:
            TransientStoreError: If the lock was not acquired in time
        """
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _Entry()
            entry.users += 1

        if not entry.lock.acquire(timeout=self.timeout):
            self._drop(key, entry)
            raise TransientStoreError(f"Timed out waiting for lock on {key!r}")
        return KeyLease(self, key, entry)

    def is_locked(self, key: Hashable) -> bool:
        with self._guard:
            entry = self._locks.get(key)
        return entry is not None and entry.lock.locked()


# Shared by every store in the process so all writers see the same locks.
default_locks = KeyedLocks()
