"""
KeyLockRegistry -- process-local mutual exclusion per stock key.

Responsibility:
    Serializes read-modify-write of one (product, warehouse, location)
    balance across threads of this process.  Operations on disjoint keys
    never contend.

Architecture position:
    Kernel > Services.  Used only through UnitOfWork.lock().

Invariants enforced:
    - Multi-key acquisition happens in sorted StockKey order, so two
      transfers in opposite directions cannot deadlock.
    - Locks are re-entrant: a unit of work that locks a key twice (e.g. the
      same key appears in two legs) does not block itself.
    - Acquisition is bounded by a timeout; on timeout every lock taken by the
      call is released before LockTimeoutError is raised.
    - Only keys currently held or waited on have an entry; the registry
      does not grow with the number of keys ever touched.

Failure modes:
    - LockTimeoutError when a key stays held by another thread longer than
      the timeout.

Cross-process serialization is NOT provided here; on PostgreSQL the balance
row's SELECT ... FOR UPDATE covers it.
"""

import threading
from typing import Iterable

from stock_kernel.domain.dtos import StockKey
from stock_kernel.exceptions import LockTimeoutError
from stock_kernel.logging_config import get_logger

logger = get_logger("services.locks")

DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0  # holders plus waiters


class KeyLockRegistry:
    """Registry of one re-entrant lock per StockKey in use."""

    def __init__(self, default_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self.default_timeout = default_timeout
        self._guard = threading.Lock()
        self._locks: dict[StockKey, _KeyLock] = {}

    def _checkout(self, key: StockKey) -> _KeyLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.users += 1
            return entry

    def _checkin(self, key: StockKey, release: bool) -> None:
        with self._guard:
            entry = self._locks[key]
            if release:
                entry.lock.release()
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    def acquire(
        self,
        keys: Iterable[StockKey],
        timeout: float | None = None,
    ) -> list[StockKey]:
        """
        Acquire the locks for ``keys`` in sorted order.

        Returns:
            The locked keys, in acquisition order.  The caller hands them
            back to release().

        Raises:
            LockTimeoutError: If any lock is not acquired within ``timeout``.
        """
        timeout = self.default_timeout if timeout is None else timeout
        acquired: list[StockKey] = []
        for key in sorted(set(keys)):
            entry = self._checkout(key)
            if not entry.lock.acquire(timeout=timeout):
                self._checkin(key, release=False)
                self.release(acquired)
                logger.warning(
                    "key_lock_timeout",
                    extra={**key.as_log_fields(), "timeout_seconds": timeout},
                )
                raise LockTimeoutError(str(key), timeout)
            acquired.append(key)
        return acquired

    def release(self, keys: list[StockKey]) -> None:
        """Release locks in reverse acquisition order; idle entries are dropped."""
        for key in reversed(keys):
            self._checkin(key, release=True)

    def __len__(self) -> int:
        """Keys currently held or waited on."""
        with self._guard:
            return len(self._locks)
