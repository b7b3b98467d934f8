"""Tests for the read-side InventorySelector."""

from decimal import Decimal

from stock_kernel.domain.dtos import StockKey
from stock_kernel.selectors import InventorySelector


class TestValuation:
    """valuation() reports balances next to their open-layer totals."""

    def test_rows_per_active_balance(self, receive, inventory, actor_id, session):
        receive("P1", "W1", "L1", "10", "2")
        receive("P1", "W1", "L1", "10", "4")
        receive("P2", "W2", "L1", "5", "1")
        inventory.record_issue("P1", "W1", "L1", "12", actor_id=actor_id)

        rows = InventorySelector(session).valuation()

        assert [str(row.key) for row in rows] == ["P1@W1/L1", "P2@W2/L1"]
        first = rows[0]
        assert first.on_hand_quantity == Decimal("8")
        assert first.layered_quantity == Decimal("8")
        assert first.layered_value == Decimal("32")
        assert first.is_consistent

    def test_filters(self, receive, session):
        receive("P1", "W1", "L1", "1", "1")
        receive("P1", "W2", "L1", "1", "1")
        receive("P2", "W1", "L1", "1", "1")

        selector = InventorySelector(session)

        assert len(selector.valuation(product_id="P1")) == 2
        assert [str(r.key) for r in selector.valuation(product_id="P1", warehouse_id="W2")] == ["P1@W2/L1"]

    def test_deleted_balances_excluded(self, receive, inventory, actor_id, session):
        receive("P1", "W1", "L1", "3", "1")
        inventory.record_issue("P1", "W1", "L1", "3", actor_id=actor_id)
        inventory.delete_balance("P1", "W1", "L1", actor_id=actor_id)

        assert InventorySelector(session).valuation() == []


class TestConsistency:

    def test_unknown_key_is_trivially_consistent(self, session):
        report = InventorySelector(session).consistency(StockKey("P1", "W1", "L1"))
        assert report.is_consistent
        assert report.open_layers == 0

    def test_counts_open_layers(self, receive, inventory, actor_id, session):
        receive("P1", "W1", "L1", "4", "1")
        receive("P1", "W1", "L1", "4", "2")
        inventory.record_issue("P1", "W1", "L1", "4", actor_id=actor_id)

        report = InventorySelector(session).consistency(StockKey("P1", "W1", "L1"))

        assert report.open_layers == 1
        assert report.layered_value == Decimal("8")
