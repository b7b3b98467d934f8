"""ORM models for the stock kernel."""

from stock_kernel.models.audit_event import AuditAction, InventoryAuditEvent
from stock_kernel.models.balance import InventoryBalanceModel
from stock_kernel.models.cost_layer import CostLayerModel
from stock_kernel.models.transaction import InventoryTransactionModel

__all__ = [
    "AuditAction",
    "InventoryAuditEvent",
    "InventoryBalanceModel",
    "CostLayerModel",
    "InventoryTransactionModel",
]
