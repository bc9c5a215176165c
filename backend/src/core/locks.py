"""
Per-key mutual exclusion for arbitration.

The arbiter serializes decisions on one contended key (a facility, or a
program occurrence) at a time. Database row locks give the same guarantee
across processes on PostgreSQL; this registry gives it inside one process
and on backends without SELECT ... FOR UPDATE (SQLite).
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Generator, Optional

from core.constants import KEYED_LOCK_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class LockTimeoutError(Exception):
    """Raised when a keyed lock cannot be acquired within the timeout."""

    def __init__(self, key: str, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for lock {key!r}")


class _KeyedLock:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0  # threads holding or waiting on this key


class KeyedLockRegistry:
    """
    Mutex-per-key map.

    Entries are reference counted and dropped once no thread holds or waits
    on the key, so the map only grows with the number of keys in flight.
    """

    def __init__(self, timeout: float = KEYED_LOCK_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, _KeyedLock] = {}

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Generator[None, None, None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Raises:
            LockTimeoutError: If the lock is not acquired within the timeout
        """
        wait = self.timeout if timeout is None else timeout
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyedLock()
                self._locks[key] = entry
            entry.holders += 1

        acquired = entry.lock.acquire(timeout=wait)
        try:
            if not acquired:
                logger.warning(f"Lock wait timed out for {key}")
                raise LockTimeoutError(key, wait)
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._locks.pop(key, None)

    def active_keys(self) -> int:
        """Number of keys currently held or awaited."""
        with self._guard:
            return len(self._locks)
