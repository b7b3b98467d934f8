"""
Valuation - Pure cost-layer calculations for FIFO/LIFO costing.

The stateful writer that applies these plans lives in
stock_services.inventory_accounting.
"""

from stock_kernel.logging_config import get_logger

logger = get_logger("engines.valuation")

from stock_engines.valuation.cost_layers import (  # noqa: E402
    CostFlow,
    order_layers,
    plan_consumption,
    rolling_average_cost,
    weighted_unit_cost,
)

__all__ = [
    "CostFlow",
    "order_layers",
    "plan_consumption",
    "rolling_average_cost",
    "weighted_unit_cost",
]
