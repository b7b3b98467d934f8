"""
Pure domain layer.

This module contains frozen data transfer objects and the clock
abstraction with NO dependencies on:
- ORM (SQLAlchemy sessions or models)
- Database
- I/O (except SystemClock)

All domain objects are immutable.
"""

from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.dtos import (
    AdjustmentDirection,
    AuditRecord,
    BalanceStatus,
    ConsistencyReport,
    ConsumptionResult,
    CostLayer,
    DocumentRef,
    InventoryBalance,
    InventoryLevelChanged,
    InventoryTransaction,
    LayerConsumption,
    LedgerQuery,
    MovementResult,
    StockKey,
    TransactionType,
    TransferResult,
)

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # Enums
    "TransactionType",
    "AdjustmentDirection",
    "BalanceStatus",
    # Keys and references
    "StockKey",
    "DocumentRef",
    # Snapshots
    "InventoryBalance",
    "CostLayer",
    "InventoryTransaction",
    # Results
    "LayerConsumption",
    "ConsumptionResult",
    "MovementResult",
    "TransferResult",
    "ConsistencyReport",
    # Payloads and queries
    "InventoryLevelChanged",
    "AuditRecord",
    "LedgerQuery",
]
