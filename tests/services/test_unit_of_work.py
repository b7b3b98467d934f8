"""
Tests for UnitOfWork boundaries, post-commit notifications, the audit trail
and operation logging.
"""

import threading
from decimal import Decimal

import pytest

from stock_config.schema import InventoryConfig
from stock_kernel.domain.dtos import StockKey
from stock_kernel.exceptions import InsufficientStockError, LockTimeoutError
from stock_kernel.models.audit_event import AuditAction
from stock_kernel.services.auditor_service import AuditorService
from stock_kernel.services.locks import KeyLockRegistry
from stock_kernel.services.notifications import NotificationSink, SubscriberNotificationSink
from stock_kernel.services.unit_of_work import UnitOfWork

KEY_ARGS = ("P1", "W1", "L1")
KEY = StockKey(*KEY_ARGS)
OTHER_ARGS = ("P1", "W2", "L1")


class ExplodingSink(NotificationSink):
    def publish(self, event):
        raise RuntimeError("broker down")


class TestCallerOwnedUnitOfWork:
    """Several movements committed or rolled back together."""

    def test_movements_commit_together(self, inventory, actor_id):
        with inventory.unit_of_work() as uow:
            inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id, uow=uow)
            inventory.record_receipt(*KEY_ARGS, "10", "3", actor_id=actor_id, uow=uow)
            inventory.record_issue(*KEY_ARGS, "5", actor_id=actor_id, uow=uow)

        balance = inventory.get_balance(*KEY_ARGS)
        assert balance.on_hand_quantity == Decimal("15")
        assert len(inventory.transactions()) == 3

    def test_failure_rolls_back_every_movement(self, inventory, actor_id):
        with pytest.raises(InsufficientStockError):
            with inventory.unit_of_work() as uow:
                inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id, uow=uow)
                inventory.record_receipt("P2", "W1", "L1", "10", "1", actor_id=actor_id, uow=uow)
                inventory.record_issue(*KEY_ARGS, "11", actor_id=actor_id, uow=uow)

        assert inventory.list_balances(include_deleted=True) == []
        assert inventory.transactions() == []
        assert inventory.cost_layers(*KEY_ARGS) == []

    def test_caller_exception_rolls_back(self, inventory, actor_id):
        with pytest.raises(ValueError):
            with inventory.unit_of_work() as uow:
                inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id, uow=uow)
                raise ValueError("caller changed its mind")

        assert inventory.get_balance(*KEY_ARGS) is None

    def test_locks_held_until_exit(self, inventory, actor_id):
        with inventory.unit_of_work() as uow:
            inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id, uow=uow)
            assert uow.locked_keys == frozenset({KEY})
        assert uow.locked_keys == frozenset()
        assert not uow.is_active

    def test_inactive_uow_rejected(self, inventory, actor_id):
        uow = inventory.unit_of_work()
        with pytest.raises(RuntimeError):
            inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id, uow=uow)

    def test_uow_not_reentrant(self, session_factory):
        uow = UnitOfWork(session_factory)
        with uow:
            with pytest.raises(RuntimeError):
                uow.__enter__()

    def test_later_movement_locking_a_lower_key_is_logged(self, receive, inventory, actor_id, captured_logs):
        receive(*KEY_ARGS, "10", "1")
        receive(*OTHER_ARGS, "10", "1")

        with inventory.unit_of_work() as uow:
            inventory.record_issue(*OTHER_ARGS, "1", actor_id=actor_id, uow=uow)
            inventory.transfer("P1", "W1", "L1", "W2", "L1", "2", actor_id=actor_id, uow=uow)

        assert any(r["message"] == "key_lock_out_of_order" for r in captured_logs())
        assert inventory.get_balance(*OTHER_ARGS).on_hand_quantity == Decimal("11")

    def test_locking_up_front_keeps_sorted_order(self, receive, inventory, actor_id, captured_logs):
        receive(*KEY_ARGS, "10", "1")
        receive(*OTHER_ARGS, "10", "1")

        with inventory.unit_of_work() as uow:
            uow.lock(StockKey(*OTHER_ARGS), KEY)
            inventory.record_issue(*OTHER_ARGS, "1", actor_id=actor_id, uow=uow)
            inventory.transfer("P1", "W1", "L1", "W2", "L1", "2", actor_id=actor_id, uow=uow)
            assert uow.locked_keys == frozenset({KEY, StockKey(*OTHER_ARGS)})

        assert not any(r["message"] == "key_lock_out_of_order" for r in captured_logs())
        assert inventory.get_balance(*KEY_ARGS).on_hand_quantity == Decimal("8")


class TestKeyLocks:
    """Per-key lock registry."""

    def test_lock_timeout(self, make_inventory, actor_id):
        locks = KeyLockRegistry(default_timeout=0.1)
        inventory = make_inventory(
            locks=locks,
            config=InventoryConfig(database_url="sqlite://", lock_timeout_seconds=0.1),
        )
        held = locks.acquire([KEY])
        failures = []

        def contender():
            try:
                inventory.record_receipt(*KEY_ARGS, "1", "1", actor_id=actor_id)
            except LockTimeoutError as exc:
                failures.append(exc)

        try:
            worker = threading.Thread(target=contender)
            worker.start()
            worker.join(timeout=10)
        finally:
            locks.release(held)

        assert len(failures) == 1
        assert failures[0].code == "LOCK_TIMEOUT"
        assert inventory.get_balance(*KEY_ARGS) is None

    def test_disjoint_keys_do_not_block(self):
        locks = KeyLockRegistry(default_timeout=0.1)
        held = locks.acquire([KEY])
        acquired = []

        def other_key():
            got = locks.acquire([StockKey("P2", "W1", "L1")])
            acquired.append(True)
            locks.release(got)

        try:
            worker = threading.Thread(target=other_key)
            worker.start()
            worker.join(timeout=10)
        finally:
            locks.release(held)

        assert acquired == [True]

    def test_partial_acquisition_released_on_timeout(self):
        locks = KeyLockRegistry(default_timeout=0.1)
        later = StockKey("P9", "W1", "L1")
        held = locks.acquire([later])
        outcome = []

        def both_keys():
            try:
                locks.acquire([KEY, later])
            except LockTimeoutError:
                outcome.append("timeout")

        try:
            worker = threading.Thread(target=both_keys)
            worker.start()
            worker.join(timeout=10)
        finally:
            locks.release(held)

        assert outcome == ["timeout"]
        # KEY was released by the failed acquisition
        locks.release(locks.acquire([KEY], timeout=0.1))

    def test_idle_keys_are_dropped(self):
        locks = KeyLockRegistry(default_timeout=0.1)
        held = locks.acquire([KEY, StockKey("P2", "W1", "L1")])
        assert len(locks) == 2

        locks.release(held)

        assert len(locks) == 0

    def test_registry_empty_after_movements(self, make_inventory, actor_id):
        locks = KeyLockRegistry(default_timeout=1.0)
        inventory = make_inventory(locks=locks)

        for location in ("L1", "L2"):
            inventory.record_receipt("P1", "W1", location, "5", "1", actor_id=actor_id)
        inventory.transfer("P1", "W1", "L1", "W2", "L1", "1", actor_id=actor_id)

        assert len(locks) == 0


class TestNotifications:
    """Level-change notifications are published after commit only."""

    def test_receipt_notifies(self, inventory, actor_id, notifications):
        inventory.record_receipt(*KEY_ARGS, "100", "10", actor_id=actor_id)

        assert len(notifications.events) == 1
        event = notifications.events[0]
        assert event.key == KEY
        assert event.old_quantity == Decimal("0")
        assert event.new_quantity == Decimal("100")
        assert event.delta == Decimal("100")
        assert event.operation == "receipt"

    def test_issue_notifies_old_and_new(self, inventory, actor_id, notifications):
        inventory.record_receipt(*KEY_ARGS, "100", "10", actor_id=actor_id)
        inventory.record_issue(*KEY_ARGS, "60", actor_id=actor_id)

        event = notifications.events[-1]
        assert event.old_quantity == Decimal("100")
        assert event.new_quantity == Decimal("40")
        assert event.operation == "issue"

    def test_failed_operation_does_not_notify(self, inventory, actor_id, notifications):
        inventory.record_receipt(*KEY_ARGS, "10", "10", actor_id=actor_id)
        notifications.clear()

        with pytest.raises(InsufficientStockError):
            inventory.record_issue(*KEY_ARGS, "11", actor_id=actor_id)

        assert notifications.events == []

    def test_nothing_published_before_commit(self, inventory, actor_id, notifications):
        with inventory.unit_of_work() as uow:
            inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id, uow=uow)
            assert notifications.events == []
            assert len(uow.pending_notifications) == 1
        assert len(notifications.events) == 1

    def test_transfer_notifies_both_locations(self, inventory, actor_id, notifications):
        inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id)
        notifications.clear()

        inventory.transfer("P1", "W1", "L1", "W2", "L1", "4", actor_id=actor_id)

        assert [(e.key.warehouse_id, e.operation) for e in notifications.events] == [
            ("W1", "transfer_out"),
            ("W2", "transfer_in"),
        ]

    def test_reservation_does_not_notify(self, inventory, actor_id, notifications):
        inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id)
        notifications.clear()
        inventory.reserve(*KEY_ARGS, "5", actor_id=actor_id)
        assert notifications.events == []

    def test_sink_failure_does_not_fail_operation(self, make_inventory, actor_id, captured_logs):
        inventory = make_inventory(notifications=ExplodingSink())

        result = inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id)

        assert result.balance.on_hand_quantity == Decimal("10")
        assert inventory.get_balance(*KEY_ARGS).on_hand_quantity == Decimal("10")
        assert any(r["message"] == "notification_publish_failed" for r in captured_logs())

    def test_subscriber_sink_isolates_failures(self, make_inventory, actor_id):
        sink = SubscriberNotificationSink()
        seen = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        sink.subscribe(broken)
        sink.subscribe(seen.append)
        inventory = make_inventory(notifications=sink)

        inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id)

        assert len(seen) == 1
        assert seen[0].new_quantity == Decimal("10")


class TestAuditTrail:
    """One audit event per successful mutation, none for failures."""

    def _trace(self, session_factory):
        with session_factory() as session:
            return AuditorService(session).get_trace("InventoryBalance", str(KEY))

    def test_movements_are_audited_in_order(self, inventory, actor_id, session_factory):
        inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id)
        inventory.reserve(*KEY_ARGS, "2", actor_id=actor_id)
        inventory.unreserve(*KEY_ARGS, "2", actor_id=actor_id)
        inventory.record_issue(*KEY_ARGS, "10", actor_id=actor_id)
        inventory.delete_balance(*KEY_ARGS, actor_id=actor_id)

        trace = self._trace(session_factory)

        assert trace.actions == (
            AuditAction.RECEIPT_RECORDED,
            AuditAction.RESERVED,
            AuditAction.UNRESERVED,
            AuditAction.ISSUE_RECORDED,
            AuditAction.BALANCE_DELETED,
        )
        assert [e.seq for e in trace.entries] == [1, 2, 3, 4, 5]
        assert all(e.actor_id == actor_id for e in trace.entries)

    def test_audit_captures_before_and_after(self, inventory, actor_id, session_factory):
        receipt = inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id)
        inventory.record_issue(*KEY_ARGS, "4", actor_id=actor_id)

        first, second = self._trace(session_factory).entries

        assert first.before is None
        assert Decimal(first.after["on_hand_quantity"]) == Decimal("10")
        assert first.transaction_id == receipt.transaction.id
        assert Decimal(second.before["on_hand_quantity"]) == Decimal("10")
        assert Decimal(second.after["on_hand_quantity"]) == Decimal("6")

    def test_failed_operation_leaves_no_audit(self, inventory, actor_id, session_factory):
        inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id)

        with pytest.raises(InsufficientStockError):
            inventory.record_issue(*KEY_ARGS, "50", actor_id=actor_id)

        assert self._trace(session_factory).last_action is AuditAction.RECEIPT_RECORDED

    def test_transfer_audits_both_balances(self, inventory, actor_id, session_factory):
        inventory.record_receipt(*KEY_ARGS, "10", "1", actor_id=actor_id)
        inventory.transfer("P1", "W1", "L1", "W2", "L1", "4", actor_id=actor_id)

        with session_factory() as session:
            auditor = AuditorService(session)
            source = auditor.get_trace("InventoryBalance", "P1@W1/L1")
            destination = auditor.get_trace("InventoryBalance", "P1@W2/L1")

        assert source.last_action is AuditAction.TRANSFERRED_OUT
        assert destination.actions == (AuditAction.TRANSFERRED_IN,)


class TestOperationLogging:
    """Structured log events emitted by the engine."""

    def test_success_logs_movement(self, inventory, actor_id, captured_logs):
        inventory.record_receipt(*KEY_ARGS, "10", "2", actor_id=actor_id)

        records = [r for r in captured_logs() if r["message"] == "receipt_recorded"]
        assert len(records) == 1
        assert records[0]["product_id"] == "P1"
        assert records[0]["quantity"] == "10"
        assert records[0]["operation"] == "record_receipt"
        assert records[0]["actor_id"] == str(actor_id)

    def test_failure_logs_error_code(self, inventory, actor_id, captured_logs):
        inventory.record_receipt(*KEY_ARGS, "10", "2", actor_id=actor_id)

        with pytest.raises(InsufficientStockError):
            inventory.record_issue(*KEY_ARGS, "500", actor_id=actor_id)

        failures = [r for r in captured_logs() if r["message"] == "inventory_operation_failed"]
        assert len(failures) == 1
        failure = failures[0]
        assert failure["level"] == "WARNING"
        assert failure["error_code"] == "INSUFFICIENT_STOCK"
        assert failure["requested_quantity"] == "500"
        assert failure["warehouse_id"] == "W1"
        assert failure["operation"] == "record_issue"

    def test_log_context_restored_after_operation(self, inventory, actor_id, captured_logs):
        from stock_kernel.logging_config import LogContext

        inventory.record_receipt(*KEY_ARGS, "10", "2", actor_id=actor_id)

        assert "operation" not in LogContext.get_all()
