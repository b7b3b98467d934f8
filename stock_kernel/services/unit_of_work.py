"""
UnitOfWork -- explicit transaction boundary for inventory mutations.

Responsibility:
    Owns one SQLAlchemy session for the duration of a mutation (or a group
    of mutations), the per-key locks taken by it, and the notifications it
    will publish once committed.  Every store and the auditor flush into
    ``uow.session``; only the UnitOfWork commits.

Architecture position:
    Kernel > Services.  Created by InventoryAccountingEngine for each call,
    or by a caller that wants several movements to commit together.

Invariants enforced:
    - All-or-nothing: balance, ledger, cost-layer and audit writes commit
      together or not at all.  Any exception inside the ``with`` block rolls
      back everything flushed so far.
    - Locks taken via lock() are held through commit and released on exit,
      in every outcome.  Keys are sorted within one lock() call; see lock()
      for callers that lock across several movements.
    - Notifications are published only after a successful commit.  A sink
      failure is logged and never propagates.

Failure modes:
    - LockTimeoutError from lock().
    - OptimisticLockError when the commit flush finds a balance row whose
      version changed underneath us (StaleDataError).

Usage:
    with UnitOfWork(session_factory, notifications=sink) as uow:
        engine.record_receipt(..., actor_id=actor, uow=uow)
        engine.record_issue(..., actor_id=actor, uow=uow)
    # committed here; notifications published
"""

from __future__ import annotations

from typing import Callable

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stock_kernel.domain.dtos import InventoryLevelChanged, StockKey
from stock_kernel.exceptions import OptimisticLockError
from stock_kernel.logging_config import get_logger
from stock_kernel.services.locks import KeyLockRegistry
from stock_kernel.services.notifications import NotificationSink, NullNotificationSink

logger = get_logger("services.unit_of_work")


class UnitOfWork:
    """
    Context manager wrapping one session, its key locks and its outbox.

    Not re-entrant: entering the same instance twice raises RuntimeError.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        notifications: NotificationSink | None = None,
        locks: KeyLockRegistry | None = None,
        lock_timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self._notifications = notifications or NullNotificationSink()
        self._locks = locks or KeyLockRegistry()
        self._lock_timeout = lock_timeout
        self._session: Session | None = None
        self._held: list[StockKey] = []
        self._outbox: list[InventoryLevelChanged] = []

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("UnitOfWork is not active; use it as a context manager")
        return self._session

    @property
    def is_active(self) -> bool:
        return self._session is not None

    @property
    def locked_keys(self) -> frozenset[StockKey]:
        return frozenset(self._held)

    @property
    def pending_notifications(self) -> tuple[InventoryLevelChanged, ...]:
        return tuple(self._outbox)

    def __enter__(self) -> UnitOfWork:
        if self._session is not None:
            raise RuntimeError("UnitOfWork is already active")
        self._session = self._session_factory()
        logger.debug("unit_of_work_started")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        committed = False
        try:
            if exc_type is None:
                self._commit()
                committed = True
            else:
                self._rollback(exc)
        finally:
            self._release()
        if committed:
            self._publish()

    def lock(self, *keys: StockKey) -> None:
        """
        Acquire the per-key locks for ``keys`` (sorted order).

        Keys already held by this unit of work are skipped.  Locks are held
        until the unit of work ends.

        Sorted order only spans one call.  A caller-owned unit of work that
        runs several movements should lock every key it will touch up front,
        e.g. ``uow.lock(a, b)`` before ``issue(b)`` then ``transfer(a, b)``;
        a later call that needs a key sorting below one already held logs
        ``key_lock_out_of_order`` and can wait up to the lock timeout.
        """
        wanted = sorted({key for key in keys if key not in self._held})
        if not wanted:
            return
        if self._held and wanted[0] < max(self._held):
            logger.warning(
                "key_lock_out_of_order",
                extra={
                    "held_keys": sorted(str(k) for k in self._held),
                    "wanted_keys": [str(k) for k in wanted],
                },
            )
        self._held.extend(self._locks.acquire(wanted, timeout=self._lock_timeout))

    def defer_notification(self, event: InventoryLevelChanged) -> None:
        """Queue ``event`` for publication after commit."""
        self._outbox.append(event)

    def _commit(self) -> None:
        session = self.session
        try:
            session.commit()
        except StaleDataError as exc:
            session.rollback()
            self._outbox.clear()
            logger.warning("unit_of_work_conflict", extra={"error": str(exc)})
            raise OptimisticLockError("InventoryBalance", "commit") from exc
        except Exception:
            session.rollback()
            self._outbox.clear()
            logger.warning("unit_of_work_rolled_back", exc_info=True)
            raise
        logger.debug(
            "unit_of_work_committed",
            extra={
                "locked_keys": sorted(str(k) for k in self._held),
                "notifications": len(self._outbox),
            },
        )

    def _rollback(self, exc: BaseException | None) -> None:
        self.session.rollback()
        self._outbox.clear()
        logger.debug(
            "unit_of_work_rolled_back",
            extra={"error_type": type(exc).__name__ if exc else None},
        )

    def _release(self) -> None:
        try:
            self._locks.release(self._held)
        finally:
            self._held = []
            if self._session is not None:
                self._session.close()
                self._session = None

    def _publish(self) -> None:
        outbox, self._outbox = self._outbox, []
        for event in outbox:
            try:
                self._notifications.publish(event)
            except Exception:
                logger.exception(
                    "notification_publish_failed",
                    extra={**event.key.as_log_fields(), "operation": event.operation},
                )
