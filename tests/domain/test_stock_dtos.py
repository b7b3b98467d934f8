"""
Tests for the inventory value objects, decimal helpers and the clock.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.db.types import integer_digits, round_cost, to_decimal
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.domain.dtos import (
    BalanceStatus,
    ConsistencyReport,
    CostLayer,
    InventoryBalance,
    InventoryLevelChanged,
    LedgerQuery,
    StockKey,
    TransactionType,
)

KEY = StockKey("P1", "W1", "L1")


def make_balance(on_hand="10", reserved="4", average="2.5"):
    return InventoryBalance(
        id=uuid4(),
        key=KEY,
        on_hand_quantity=Decimal(on_hand),
        reserved_quantity=Decimal(reserved),
        average_unit_cost=Decimal(average),
        status=BalanceStatus.ACTIVE,
        version=1,
    )


class TestStockKey:

    def test_str(self):
        assert str(KEY) == "P1@W1/L1"

    def test_ordering_is_lexicographic(self):
        keys = [StockKey("P2", "W1", "L1"), StockKey("P1", "W2", "L1"), StockKey("P1", "W1", "L2"), KEY]
        assert sorted(keys) == [KEY, StockKey("P1", "W1", "L2"), StockKey("P1", "W2", "L1"), StockKey("P2", "W1", "L1")]

    def test_hashable_and_equal_by_value(self):
        assert {KEY, StockKey("P1", "W1", "L1")} == {KEY}

    def test_log_fields(self):
        assert KEY.as_log_fields() == {"product_id": "P1", "warehouse_id": "W1", "location_id": "L1"}


class TestInventoryBalance:

    def test_available_is_derived(self):
        assert make_balance().available_quantity == Decimal("6")

    def test_is_empty(self):
        assert make_balance("0", "0").is_empty
        assert not make_balance("1", "0").is_empty

    def test_inventory_value(self):
        assert make_balance().inventory_value == Decimal("25")

    def test_audit_state_is_json_friendly(self):
        state = make_balance().as_audit_state()
        assert state["available_quantity"] == "6"
        assert state["status"] == "active"
        assert all(isinstance(v, (str, type(None))) for v in state.values())


class TestCostLayer:

    def test_consumed_and_remaining_value(self):
        layer = CostLayer(
            id=uuid4(),
            key=KEY,
            sequence=1,
            original_quantity=Decimal("10"),
            remaining_quantity=Decimal("4"),
            unit_cost=Decimal("1.5"),
            receipt_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        assert layer.consumed_quantity == Decimal("6")
        assert layer.remaining_value == Decimal("6.0")
        assert not layer.is_exhausted


class TestTransactionType:

    @pytest.mark.parametrize(
        "transaction_type",
        [TransactionType.RECEIPT, TransactionType.ADJUSTMENT_IN, TransactionType.TRANSFER_IN],
    )
    def test_inbound(self, transaction_type):
        assert transaction_type.is_inbound
        assert not transaction_type.is_outbound

    @pytest.mark.parametrize(
        "transaction_type",
        [TransactionType.ISSUE, TransactionType.ADJUSTMENT_OUT, TransactionType.TRANSFER_OUT],
    )
    def test_outbound(self, transaction_type):
        assert transaction_type.is_outbound


class TestSmallValueObjects:

    def test_level_change_delta(self):
        event = InventoryLevelChanged(KEY, Decimal("10"), Decimal("7"), "issue", datetime.now(timezone.utc))
        assert event.delta == Decimal("-3")

    def test_consistency_report(self):
        report = ConsistencyReport(KEY, Decimal("10"), Decimal("9"), Decimal("18"), 2)
        assert not report.is_consistent
        assert report.discrepancy == Decimal("1")

    def test_ledger_query_for_key(self):
        query = LedgerQuery.for_key(KEY, limit=5)
        assert (query.product_id, query.warehouse_id, query.location_id) == ("P1", "W1", "L1")
        assert query.limit == 5
        assert query.transaction_types == frozenset()


class TestDecimalHelpers:

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("12.5", Decimal("12.5")),
            (" 3 ", Decimal("3")),
            (7, Decimal("7")),
            (0.1, Decimal("0.1")),
            (Decimal("1.000"), Decimal("1.000")),
        ],
    )
    def test_to_decimal(self, value, expected):
        assert to_decimal(value) == expected

    @pytest.mark.parametrize("value", [None, True, "abc", "NaN", "Infinity", float("inf")])
    def test_to_decimal_rejects(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)

    def test_round_cost_half_up(self):
        assert round_cost(Decimal("1.0000000005")) == Decimal("1.000000001")
        assert round_cost(Decimal("1.0000000004")) == Decimal("1.000000000")

    def test_round_cost_beyond_default_precision(self):
        assert round_cost(Decimal("1E+20")) == Decimal("100000000000000000000.000000000")
        assert round_cost(Decimal("12345678901234567890123456789.5")) == Decimal(
            "12345678901234567890123456789.500000000"
        )

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("0", 0), ("0.001", 0), ("7", 1), ("123.45", 3), ("1E+20", 21), ("0E+50", 0)],
    )
    def test_integer_digits(self, value, expected):
        assert integer_digits(Decimal(value)) == expected


class TestDeterministicClock:

    def test_fixed_until_advanced(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now()

    def test_advance_and_tick(self):
        start = datetime(2024, 6, 1, tzinfo=timezone.utc)
        clock = DeterministicClock(start)
        clock.advance(30)
        assert clock.now() == start + timedelta(seconds=30)
        assert clock.tick() == start + timedelta(seconds=31)

    def test_set_time_resets_offset(self):
        clock = DeterministicClock()
        clock.advance(100)
        target = datetime(2025, 1, 1, tzinfo=timezone.utc)
        clock.set_time(target)
        assert clock.now() == target
