"""Selectors for the stock kernel (read side)."""

from stock_kernel.selectors.inventory_selector import InventorySelector, ValuationRow

__all__ = [
    "InventorySelector",
    "ValuationRow",
]
