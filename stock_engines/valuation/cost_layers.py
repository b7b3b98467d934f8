"""
stock_engines.valuation.cost_layers -- Cost-layer consumption and average cost.

Responsibility:
    Plan which cost layers an outbound movement consumes (FIFO or LIFO),
    price the consumed portion, and compute the rolling weighted-average
    unit cost a receipt leaves on the balance.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Imports only kernel domain DTOs, db.types helpers and exceptions.
    The stateful writer (InventoryAccountingEngine) lives in stock_services/
    and applies the plan to the CostLayerStore.

Invariants enforced:
    - Conservation: a plan consumes exactly the requested quantity, or
      raises.  Never silently under-consumes.
    - Each draw is min(layer remaining, still needed); no layer goes below 0.
    - Deterministic ordering: (receipt_date, sequence) ascending for FIFO,
      descending for LIFO.
    - Decimal-only arithmetic; computed unit costs go through round_cost().

Failure modes:
    - ValueError if quantity <= 0.
    - InsufficientCostLayersError if open layers hold less than the
      requested quantity (balance and layers have diverged).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal, localcontext
from enum import Enum

from stock_engines.tracer import traced_engine
from stock_kernel.db.types import PRECISION, ZERO, round_cost
from stock_kernel.domain.dtos import (
    ConsumptionResult,
    CostLayer,
    LayerConsumption,
    StockKey,
)
from stock_kernel.exceptions import InsufficientCostLayersError
from stock_kernel.logging_config import get_logger

logger = get_logger("engines.valuation.cost_layers")


class CostFlow(str, Enum):
    """Order in which open cost layers are consumed."""

    FIFO = "fifo"  # oldest receipt first
    LIFO = "lifo"  # newest receipt first


def order_layers(layers: Iterable[CostLayer], flow: CostFlow = CostFlow.FIFO) -> list[CostLayer]:
    """Open layers (remaining > 0) in consumption order."""
    open_layers = [layer for layer in layers if layer.remaining_quantity > ZERO]
    return sorted(
        open_layers,
        key=lambda layer: (layer.receipt_date, layer.sequence),
        reverse=flow is CostFlow.LIFO,
    )


def weighted_unit_cost(total_cost: Decimal, quantity: Decimal) -> Decimal:
    """total_cost / quantity rounded to the cost scale; zero for zero quantity."""
    if quantity == ZERO:
        return ZERO
    with localcontext(prec=PRECISION):
        return round_cost(total_cost / quantity)


def rolling_average_cost(
    old_on_hand: Decimal,
    old_average: Decimal,
    quantity: Decimal,
    unit_cost: Decimal,
) -> Decimal:
    """
    Quantity-weighted average after receiving ``quantity`` at ``unit_cost``.

        new_avg = (old_on_hand * old_avg + quantity * unit_cost)
                  / (old_on_hand + quantity)

    Falls back to ``unit_cost`` when the denominator is zero.
    """
    denominator = old_on_hand + quantity
    if denominator == ZERO:
        return unit_cost
    with localcontext(prec=PRECISION):
        return round_cost((old_on_hand * old_average + quantity * unit_cost) / denominator)


@traced_engine("cost_layers", "1.0", fingerprint_fields=("key", "quantity", "flow"))
def plan_consumption(
    *,
    key: StockKey,
    layers: Sequence[CostLayer],
    quantity: Decimal,
    flow: CostFlow = CostFlow.FIFO,
) -> ConsumptionResult:
    """
    Walk open layers in ``flow`` order and draw ``quantity`` units.

    Preconditions:
        quantity > 0; ``layers`` are the layers of ``key``.

    Postconditions:
        sum(c.quantity for c in result.consumptions) == quantity.
        result.unit_cost is the consumed weighted average, rounded.

    Raises:
        ValueError: If quantity <= 0.
        InsufficientCostLayersError: If open layers cannot cover quantity.
    """
    if quantity <= ZERO:
        raise ValueError(f"Consumption quantity must be positive, got {quantity}")

    still_needed = quantity
    consumptions: list[LayerConsumption] = []

    for layer in order_layers(layers, flow):
        if still_needed == ZERO:
            break
        take = min(layer.remaining_quantity, still_needed)
        consumptions.append(
            LayerConsumption(
                layer_id=layer.id,
                quantity=take,
                unit_cost=layer.unit_cost,
                remaining_after=layer.remaining_quantity - take,
            )
        )
        still_needed -= take

        logger.debug(
            "layer_consumed",
            extra={
                "layer_id": str(layer.id),
                "sequence": layer.sequence,
                "consumed": str(take),
                "remaining_after": str(layer.remaining_quantity - take),
            },
        )

    if still_needed > ZERO:
        layered = quantity - still_needed
        logger.error(
            "cost_layers_insufficient",
            extra={
                **key.as_log_fields(),
                "requested": str(quantity),
                "layered_quantity": str(layered),
                "flow": flow.value,
            },
        )
        raise InsufficientCostLayersError(str(key), quantity, layered)

    total_cost = sum((c.cost for c in consumptions), ZERO)
    return ConsumptionResult(
        key=key,
        consumptions=tuple(consumptions),
        total_quantity=quantity,
        total_cost=total_cost,
        unit_cost=weighted_unit_cost(total_cost, quantity),
    )
