"""
Tests for the cost-layer valuation engine.

Tests cover:
- FIFO and LIFO layer ordering
- Consumption plans spanning several layers
- Exhausted layers are skipped
- Consumed unit cost rounding
- Rolling weighted-average cost on receipt
- Insufficient layers and invalid quantities
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_engines.tracer import compute_input_fingerprint
from stock_engines.valuation import (
    CostFlow,
    order_layers,
    plan_consumption,
    rolling_average_cost,
    weighted_unit_cost,
)
from stock_kernel.domain.dtos import CostLayer, StockKey
from stock_kernel.exceptions import InsufficientCostLayersError

KEY = StockKey("P1", "W1", "L1")
T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_layer(sequence: int, remaining: str, unit_cost: str, original: str | None = None, day: int | None = None):
    return CostLayer(
        id=uuid4(),
        key=KEY,
        sequence=sequence,
        original_quantity=Decimal(original or remaining),
        remaining_quantity=Decimal(remaining),
        unit_cost=Decimal(unit_cost),
        receipt_date=T0 + timedelta(days=sequence if day is None else day),
    )


class TestLayerOrdering:
    """Tests for order_layers()."""

    def test_fifo_oldest_first(self):
        newer = make_layer(2, "10", "20")
        older = make_layer(1, "10", "10")
        assert order_layers([newer, older], CostFlow.FIFO) == [older, newer]

    def test_lifo_newest_first(self):
        older = make_layer(1, "10", "10")
        newer = make_layer(2, "10", "20")
        assert order_layers([older, newer], CostFlow.LIFO) == [newer, older]

    def test_same_receipt_date_breaks_tie_on_sequence(self):
        first = make_layer(1, "5", "10", day=0)
        second = make_layer(2, "5", "20", day=0)
        assert order_layers([second, first]) == [first, second]

    def test_exhausted_layers_are_dropped(self):
        empty = make_layer(1, "0", "10", original="10")
        open_layer = make_layer(2, "4", "12")
        assert order_layers([empty, open_layer]) == [open_layer]


class TestPlanConsumption:
    """Tests for plan_consumption()."""

    def test_single_layer_partial_draw(self):
        layer = make_layer(1, "100", "10")

        plan = plan_consumption(key=KEY, layers=[layer], quantity=Decimal("60"), flow=CostFlow.FIFO)

        assert len(plan.consumptions) == 1
        draw = plan.consumptions[0]
        assert draw.layer_id == layer.id
        assert draw.quantity == Decimal("60")
        assert draw.remaining_after == Decimal("40")
        assert plan.total_cost == Decimal("600")
        assert plan.unit_cost == Decimal("10")

    def test_fifo_spans_layers_oldest_first(self):
        """50 @ 10 then 50 @ 20; issuing 70 takes all of the first layer."""
        first = make_layer(1, "50", "10")
        second = make_layer(2, "50", "20")

        plan = plan_consumption(key=KEY, layers=[second, first], quantity=Decimal("70"), flow=CostFlow.FIFO)

        assert [c.layer_id for c in plan.consumptions] == [first.id, second.id]
        assert [c.quantity for c in plan.consumptions] == [Decimal("50"), Decimal("20")]
        assert [c.remaining_after for c in plan.consumptions] == [Decimal("0"), Decimal("30")]
        assert plan.total_cost == Decimal("900")
        assert plan.unit_cost == Decimal("12.857142857")
        assert round(plan.unit_cost, 2) == Decimal("12.86")

    def test_lifo_spans_layers_newest_first(self):
        first = make_layer(1, "50", "10")
        second = make_layer(2, "50", "20")

        plan = plan_consumption(key=KEY, layers=[first, second], quantity=Decimal("70"), flow=CostFlow.LIFO)

        assert [c.layer_id for c in plan.consumptions] == [second.id, first.id]
        assert plan.total_cost == Decimal("1200")
        assert plan.unit_cost == Decimal("17.142857143")

    def test_consumes_exactly_the_requested_quantity(self):
        layers = [make_layer(i, "3.5", str(i)) for i in range(1, 6)]

        plan = plan_consumption(key=KEY, layers=layers, quantity=Decimal("11"))

        assert sum(c.quantity for c in plan.consumptions) == Decimal("11")
        assert plan.total_quantity == Decimal("11")

    def test_skips_exhausted_layers(self):
        empty = make_layer(1, "0", "99", original="10")
        open_layer = make_layer(2, "10", "5")

        plan = plan_consumption(key=KEY, layers=[empty, open_layer], quantity=Decimal("4"))

        assert [c.layer_id for c in plan.consumptions] == [open_layer.id]
        assert plan.unit_cost == Decimal("5")

    def test_draining_every_layer_exactly(self):
        layers = [make_layer(1, "10", "1"), make_layer(2, "10", "3")]

        plan = plan_consumption(key=KEY, layers=layers, quantity=Decimal("20"))

        assert all(c.remaining_after == 0 for c in plan.consumptions)
        assert plan.unit_cost == Decimal("2")

    def test_insufficient_layers_raises(self):
        layers = [make_layer(1, "10", "1"), make_layer(2, "5", "2")]

        with pytest.raises(InsufficientCostLayersError) as exc_info:
            plan_consumption(key=KEY, layers=layers, quantity=Decimal("16"))

        assert exc_info.value.code == "INSUFFICIENT_COST_LAYERS"
        assert exc_info.value.layered_quantity == "15"

    def test_no_layers_raises(self):
        with pytest.raises(InsufficientCostLayersError):
            plan_consumption(key=KEY, layers=[], quantity=Decimal("1"))

    @pytest.mark.parametrize("quantity", ["0", "-1"])
    def test_non_positive_quantity_rejected(self, quantity):
        with pytest.raises(ValueError):
            plan_consumption(key=KEY, layers=[make_layer(1, "10", "1")], quantity=Decimal(quantity))

    def test_input_layers_are_not_modified(self):
        layer = make_layer(1, "10", "1")
        plan_consumption(key=KEY, layers=[layer], quantity=Decimal("4"))
        assert layer.remaining_quantity == Decimal("10")


class TestAverageCost:
    """Tests for rolling_average_cost() and weighted_unit_cost()."""

    def test_first_receipt_takes_receipt_cost(self):
        assert rolling_average_cost(Decimal("0"), Decimal("0"), Decimal("100"), Decimal("10")) == Decimal("10")

    def test_equal_quantities_average_midpoint(self):
        avg = rolling_average_cost(Decimal("50"), Decimal("10"), Decimal("50"), Decimal("20"))
        assert avg == Decimal("15")

    def test_weighted_by_quantity(self):
        avg = rolling_average_cost(Decimal("30"), Decimal("10"), Decimal("10"), Decimal("30"))
        assert avg == Decimal("15")

    def test_result_rounded_to_nine_places(self):
        avg = rolling_average_cost(Decimal("1"), Decimal("1"), Decimal("2"), Decimal("2"))
        assert avg == Decimal("1.666666667")

    def test_zero_denominator_falls_back_to_unit_cost(self):
        assert rolling_average_cost(Decimal("0"), Decimal("7"), Decimal("0"), Decimal("3")) == Decimal("3")

    def test_weighted_unit_cost_zero_quantity(self):
        assert weighted_unit_cost(Decimal("10"), Decimal("0")) == Decimal("0")


class TestTracerFingerprint:
    """The engine trace fingerprint is stable for identical inputs."""

    def test_same_inputs_same_fingerprint(self):
        kwargs = {"key": KEY, "quantity": Decimal("5"), "flow": CostFlow.FIFO}
        fields = ("key", "quantity", "flow")
        assert compute_input_fingerprint(fields, kwargs) == compute_input_fingerprint(fields, dict(kwargs))

    def test_flow_changes_fingerprint(self):
        fields = ("key", "quantity", "flow")
        fifo = compute_input_fingerprint(fields, {"key": KEY, "quantity": Decimal("5"), "flow": CostFlow.FIFO})
        lifo = compute_input_fingerprint(fields, {"key": KEY, "quantity": Decimal("5"), "flow": CostFlow.LIFO})
        assert fifo != lifo
