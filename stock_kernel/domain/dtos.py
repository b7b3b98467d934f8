"""
Inventory Domain DTOs (``stock_kernel.domain.dtos``).

Responsibility
--------------
Frozen value objects for the nouns of inventory accounting: the stock key,
balances, cost layers, ledger transactions, movement results, notifications
and audit records.  These carry NO database identity semantics and NO I/O;
they are what the stores and the accounting engine hand back to callers.

Invariants
----------
- ``InventoryBalance.available_quantity`` is always ``on_hand - reserved``;
  it is a derived property, never an independent field.
- ``CostLayer.remaining_quantity`` lies in ``[0, original_quantity]``.
- All quantities and costs are ``Decimal`` -- never ``float``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from stock_kernel.db.types import ZERO


class TransactionType(str, Enum):
    """Kinds of stock movement recorded in the ledger."""

    RECEIPT = "receipt"
    ISSUE = "issue"
    ADJUSTMENT_IN = "adjustment_in"
    ADJUSTMENT_OUT = "adjustment_out"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"

    @property
    def is_inbound(self) -> bool:
        return self in _INBOUND

    @property
    def is_outbound(self) -> bool:
        return not self.is_inbound


_INBOUND = frozenset({
    TransactionType.RECEIPT,
    TransactionType.ADJUSTMENT_IN,
    TransactionType.TRANSFER_IN,
})


class AdjustmentDirection(str, Enum):
    """Direction of a manual stock adjustment."""

    IN = "in"
    OUT = "out"


class BalanceStatus(str, Enum):
    """Lifecycle of a balance row (soft delete only)."""

    ACTIVE = "active"
    DELETED = "deleted"


@dataclass(frozen=True, slots=True, order=True)
class StockKey:
    """
    The aggregate key: one product at one (warehouse, location).

    Ordering is lexicographic on (product, warehouse, location) and is what
    lock acquisition sorts by.
    """

    product_id: str
    warehouse_id: str
    location_id: str

    def __str__(self) -> str:
        return f"{self.product_id}@{self.warehouse_id}/{self.location_id}"

    def as_log_fields(self) -> dict[str, str]:
        return {
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "location_id": self.location_id,
        }


@dataclass(frozen=True, slots=True)
class DocumentRef:
    """Originating document of a movement (receipt slip, sales order, ...)."""

    document_id: str
    document_type: str


@dataclass(frozen=True, slots=True)
class InventoryBalance:
    """Snapshot of the aggregate stock record for one key."""

    id: UUID
    key: StockKey
    on_hand_quantity: Decimal
    reserved_quantity: Decimal
    average_unit_cost: Decimal
    status: BalanceStatus
    version: int
    lot_number: str | None = None
    serial_number: str | None = None

    @property
    def available_quantity(self) -> Decimal:
        return self.on_hand_quantity - self.reserved_quantity

    @property
    def is_empty(self) -> bool:
        return self.on_hand_quantity == ZERO and self.reserved_quantity == ZERO

    @property
    def inventory_value(self) -> Decimal:
        return self.on_hand_quantity * self.average_unit_cost

    def as_audit_state(self) -> dict[str, Any]:
        return {
            "on_hand_quantity": str(self.on_hand_quantity),
            "reserved_quantity": str(self.reserved_quantity),
            "available_quantity": str(self.available_quantity),
            "average_unit_cost": str(self.average_unit_cost),
            "status": self.status.value,
            "lot_number": self.lot_number,
            "serial_number": self.serial_number,
        }


@dataclass(frozen=True, slots=True)
class CostLayer:
    """A discrete incoming batch of stock at one unit cost."""

    id: UUID
    key: StockKey
    sequence: int
    original_quantity: Decimal
    remaining_quantity: Decimal
    unit_cost: Decimal
    receipt_date: datetime
    source_transaction_id: UUID | None = None
    lot_number: str | None = None
    serial_number: str | None = None
    reference: DocumentRef | None = None

    @property
    def is_exhausted(self) -> bool:
        return self.remaining_quantity <= ZERO

    @property
    def consumed_quantity(self) -> Decimal:
        return self.original_quantity - self.remaining_quantity

    @property
    def remaining_value(self) -> Decimal:
        return self.remaining_quantity * self.unit_cost


@dataclass(frozen=True, slots=True)
class InventoryTransaction:
    """Immutable ledger record of one stock movement."""

    id: UUID
    key: StockKey
    transaction_type: TransactionType
    quantity: Decimal
    unit_cost: Decimal
    transaction_date: datetime
    actor_id: UUID
    lot_number: str | None = None
    serial_number: str | None = None
    manufacture_date: date | None = None
    expiration_date: date | None = None
    reference: DocumentRef | None = None
    notes: str | None = None
    sequence: int | None = None

    @property
    def total_cost(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True, slots=True)
class LayerConsumption:
    """Quantity taken from one cost layer by an outbound movement."""

    layer_id: UUID
    quantity: Decimal
    unit_cost: Decimal
    remaining_after: Decimal

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True, slots=True)
class ConsumptionResult:
    """Cost-layer consumption applied by one outbound movement."""

    key: StockKey
    consumptions: tuple[LayerConsumption, ...]
    total_quantity: Decimal
    total_cost: Decimal
    unit_cost: Decimal


@dataclass(frozen=True, slots=True)
class MovementResult:
    """Outcome of a receipt, issue or adjustment."""

    transaction: InventoryTransaction | None
    balance: InventoryBalance | None
    consumption: ConsumptionResult | None = None


@dataclass(frozen=True, slots=True)
class TransferResult:
    """Outcome of a transfer: the TRANSFER_OUT and TRANSFER_IN legs."""

    outbound: MovementResult
    inbound: MovementResult

    @property
    def quantity(self) -> Decimal:
        assert self.outbound.transaction is not None
        return self.outbound.transaction.quantity

    @property
    def unit_cost(self) -> Decimal:
        assert self.outbound.transaction is not None
        return self.outbound.transaction.unit_cost


@dataclass(frozen=True, slots=True)
class InventoryLevelChanged:
    """Notification emitted after a committed on-hand change."""

    key: StockKey
    old_quantity: Decimal
    new_quantity: Decimal
    operation: str
    occurred_at: datetime

    @property
    def delta(self) -> Decimal:
        return self.new_quantity - self.old_quantity


@dataclass(frozen=True, slots=True)
class AuditRecord:
    """Structured payload handed to the audit trail after a mutation."""

    actor_id: UUID
    action: str
    entity_type: str
    entity_id: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    note: str | None = None


@dataclass(frozen=True, slots=True)
class LedgerQuery:
    """Filter for ledger queries.  ``None`` fields are not filtered on."""

    product_id: str | None = None
    warehouse_id: str | None = None
    location_id: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    transaction_types: frozenset[TransactionType] = field(default_factory=frozenset)
    reference_document_id: str | None = None
    limit: int | None = None

    @classmethod
    def for_key(cls, key: StockKey, **kwargs: Any) -> LedgerQuery:
        return cls(
            product_id=key.product_id,
            warehouse_id=key.warehouse_id,
            location_id=key.location_id,
            **kwargs,
        )


@dataclass(frozen=True, slots=True)
class ConsistencyReport:
    """On-hand quantity compared with the open cost layers for one key."""

    key: StockKey
    on_hand_quantity: Decimal
    layered_quantity: Decimal
    layered_value: Decimal
    open_layers: int

    @property
    def is_consistent(self) -> bool:
        return self.on_hand_quantity == self.layered_quantity

    @property
    def discrepancy(self) -> Decimal:
        return self.on_hand_quantity - self.layered_quantity
