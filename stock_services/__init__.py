"""
stock_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure valuation engines
    (stock_engines/) with database sessions, the kernel stores, per-key
    locks and the notification sink.  This is the **only** layer that
    coordinates a whole stock movement.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        stock_services/ -> stock_engines/  (allowed)
        stock_services/ -> stock_kernel/   (allowed)
        stock_services/ -> stock_config/   (allowed)
        stock_engines/  -> stock_services/ (FORBIDDEN)
        stock_kernel/   -> stock_services/ (FORBIDDEN)
"""

from stock_services.inventory_accounting import InventoryAccountingEngine

__all__ = [
    "InventoryAccountingEngine",
]
