"""
ORM immutability enforcement.

Ledger transactions and audit events are append-only.  Cost layers may only
be consumed (remaining_quantity goes down).  Balances keep their key and are
never hard-deleted.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.models import (
    CostLayerModel,
    InventoryAuditEvent,
    InventoryBalanceModel,
    InventoryTransactionModel,
)

KEY_ARGS = ("P1", "W1", "L1")


@pytest.fixture
def stocked(inventory, actor_id):
    """One receipt of 10 @ 5 at P1@W1/L1."""
    return inventory.record_receipt(*KEY_ARGS, "10", "5", actor_id=actor_id)


def _one(session, model):
    return session.execute(select(model)).scalars().first()


class TestLedgerImmutability:
    """Ledger rows cannot be changed or removed."""

    def test_update_blocked(self, stocked, session_factory):
        with session_factory() as session:
            row = _one(session, InventoryTransactionModel)
            row.quantity = Decimal("999")
            with pytest.raises(ImmutabilityViolationError) as exc_info:
                session.flush()
            assert exc_info.value.code == "IMMUTABILITY_VIOLATION"

    def test_delete_blocked(self, stocked, session_factory):
        with session_factory() as session:
            session.delete(_one(session, InventoryTransactionModel))
            with pytest.raises(ImmutabilityViolationError):
                session.flush()


class TestCostLayerImmutability:
    """Only consumption may change a cost layer."""

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("unit_cost", Decimal("1")),
            ("original_quantity", Decimal("11")),
            ("product_id", "P2"),
            ("sequence", 7),
        ],
    )
    def test_frozen_fields(self, stocked, session_factory, field, value):
        with session_factory() as session:
            layer = _one(session, CostLayerModel)
            setattr(layer, field, value)
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_remaining_cannot_increase(self, stocked, inventory, actor_id, session_factory):
        inventory.record_issue(*KEY_ARGS, "4", actor_id=actor_id)
        with session_factory() as session:
            layer = _one(session, CostLayerModel)
            layer.remaining_quantity = Decimal("8")
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_consumption_allowed(self, stocked, session_factory):
        with session_factory() as session:
            layer = _one(session, CostLayerModel)
            layer.remaining_quantity = Decimal("3")
            session.flush()
            session.rollback()

    def test_delete_blocked(self, stocked, session_factory):
        with session_factory() as session:
            session.delete(_one(session, CostLayerModel))
            with pytest.raises(ImmutabilityViolationError):
                session.flush()


class TestBalanceImmutability:
    """Balance keys are fixed; balances are soft-deleted only."""

    def test_key_change_blocked(self, stocked, session_factory):
        with session_factory() as session:
            balance = _one(session, InventoryBalanceModel)
            balance.location_id = "L2"
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_hard_delete_blocked(self, stocked, session_factory):
        with session_factory() as session:
            session.delete(_one(session, InventoryBalanceModel))
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_quantity_update_allowed(self, stocked, session_factory):
        with session_factory() as session:
            balance = _one(session, InventoryBalanceModel)
            balance.on_hand_quantity = Decimal("9")
            balance.recompute_available()
            session.flush()
            session.rollback()


class TestAuditEventImmutability:
    """Audit events are append-only."""

    def test_update_blocked(self, stocked, session_factory):
        with session_factory() as session:
            event = _one(session, InventoryAuditEvent)
            event.note = "rewritten"
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_delete_blocked(self, stocked, session_factory):
        with session_factory() as session:
            session.delete(_one(session, InventoryAuditEvent))
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
