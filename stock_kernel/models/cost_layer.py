"""
Module: stock_kernel.models.cost_layer
Responsibility: ORM persistence for inventory cost layers.  Each layer is a
    discrete batch received at one unit cost; outbound movements consume
    layers oldest-first (FIFO) or newest-first (LIFO).
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    C1 -- original_quantity > 0 and 0 <= remaining_quantity <= original_quantity
          (CheckConstraints).
    C2 -- original_quantity and unit_cost are frozen after creation and
          remaining_quantity only ever decreases (db/immutability.py).
    C3 -- Deterministic ordering.  (receipt_date, sequence) orders layers for
          a key; sequence breaks ties between layers received at the same
          instant.
    C4 -- Exhausted layers (remaining_quantity = 0) are retained for audit.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString
from stock_kernel.domain.dtos import CostLayer, DocumentRef, StockKey


class CostLayerModel(TrackedBase):
    """
    Persistent storage for one cost layer.

    Guarantees:
        - source_transaction_id traces the layer to the ledger row that
          created it (receipt, adjustment-in or transfer-in).
    """

    __tablename__ = "inventory_cost_layers"

    __table_args__ = (
        CheckConstraint("original_quantity > 0", name="ck_layer_original_positive"),
        CheckConstraint("remaining_quantity >= 0", name="ck_layer_remaining_non_negative"),
        CheckConstraint(
            "remaining_quantity <= original_quantity",
            name="ck_layer_remaining_within_original",
        ),
        CheckConstraint("unit_cost >= 0", name="ck_layer_cost_non_negative"),
        UniqueConstraint(
            "product_id", "warehouse_id", "location_id", "sequence",
            name="uq_cost_layer_key_sequence",
        ),
        # Query: open layers for a key in FIFO/LIFO order
        Index(
            "idx_cost_layer_key_order",
            "product_id", "warehouse_id", "location_id", "receipt_date", "sequence",
        ),
        Index("idx_cost_layer_source", "source_transaction_id"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    warehouse_id: Mapped[str] = mapped_column(String(100), nullable=False)
    location_id: Mapped[str] = mapped_column(String(100), nullable=False)

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    # INVARIANT C2: frozen after creation
    original_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)

    # INVARIANT C2: monotonically decreasing
    remaining_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    receipt_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    source_transaction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reference_document_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference_document_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    @property
    def key(self) -> StockKey:
        return StockKey(self.product_id, self.warehouse_id, self.location_id)

    def to_dto(self) -> CostLayer:
        reference = None
        if self.reference_document_id is not None:
            reference = DocumentRef(
                document_id=self.reference_document_id,
                document_type=self.reference_document_type or "",
            )
        return CostLayer(
            id=self.id,
            key=self.key,
            sequence=self.sequence,
            original_quantity=self.original_quantity,
            remaining_quantity=self.remaining_quantity,
            unit_cost=self.unit_cost,
            receipt_date=self.receipt_date,
            source_transaction_id=self.source_transaction_id,
            lot_number=self.lot_number,
            serial_number=self.serial_number,
            reference=reference,
        )

    def __repr__(self) -> str:
        return (
            f"<CostLayer {self.key}#{self.sequence}: "
            f"{self.remaining_quantity}/{self.original_quantity} @ {self.unit_cost}>"
        )
