"""
Module: stock_engines
Responsibility:
    Package entrypoint for the pure calculation engines.  This is the
    canonical import surface for stock_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import stock_kernel domain DTOs, db.types helpers and exceptions.
    MUST NOT import stock_services or stock_config.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``; dates arrive on the
      layer snapshots they are given.
    - Decimal-only arithmetic: floats are forbidden.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from stock_engines.valuation import CostFlow, plan_consumption
"""

from stock_engines.tracer import traced_engine
from stock_engines.valuation import (
    CostFlow,
    order_layers,
    plan_consumption,
    rolling_average_cost,
    weighted_unit_cost,
)

__all__ = [
    "traced_engine",
    "CostFlow",
    "order_layers",
    "plan_consumption",
    "rolling_average_cost",
    "weighted_unit_cost",
]
