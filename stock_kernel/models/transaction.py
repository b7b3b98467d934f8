"""
Module: stock_kernel.models.transaction
Responsibility: ORM persistence for the inventory transaction ledger -- one
    immutable row per stock movement.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    T1 -- Append-only.  UPDATE and DELETE are rejected by the ORM listeners in
          db/immutability.py.
    T2 -- quantity > 0 and unit_cost >= 0 (CheckConstraints).
    T3 -- sequence numbers the rows of one key 1, 2, 3, ... in append order;
          allocated under the key lock, unique per key.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString
from stock_kernel.domain.dtos import (
    DocumentRef,
    InventoryTransaction,
    StockKey,
    TransactionType,
)


class InventoryTransactionModel(Base):
    """
    Persistent ledger row.

    Deliberately NOT a TrackedBase: there is no updated_at/updated_by_id
    because rows are never updated.
    """

    __tablename__ = "inventory_transactions"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_txn_quantity_positive"),
        CheckConstraint("unit_cost >= 0", name="ck_txn_cost_non_negative"),
        UniqueConstraint(
            "product_id", "warehouse_id", "location_id", "sequence",
            name="uq_inv_txn_key_sequence",
        ),
        Index("idx_inv_txn_key", "product_id", "warehouse_id", "location_id"),
        Index("idx_inv_txn_date", "transaction_date"),
        Index("idx_inv_txn_type", "transaction_type"),
        Index("idx_inv_txn_reference", "reference_document_type", "reference_document_id"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    warehouse_id: Mapped[str] = mapped_column(String(100), nullable=False)
    location_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    manufacture_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    reference_document_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference_document_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @property
    def key(self) -> StockKey:
        return StockKey(self.product_id, self.warehouse_id, self.location_id)

    def to_dto(self) -> InventoryTransaction:
        reference = None
        if self.reference_document_id is not None:
            reference = DocumentRef(
                document_id=self.reference_document_id,
                document_type=self.reference_document_type or "",
            )
        return InventoryTransaction(
            id=self.id,
            key=self.key,
            transaction_type=TransactionType(self.transaction_type),
            quantity=self.quantity,
            unit_cost=self.unit_cost,
            transaction_date=self.transaction_date,
            actor_id=self.actor_id,
            lot_number=self.lot_number,
            serial_number=self.serial_number,
            manufacture_date=self.manufacture_date,
            expiration_date=self.expiration_date,
            reference=reference,
            notes=self.notes,
            sequence=self.sequence,
        )

    @classmethod
    def from_dto(
        cls,
        dto: InventoryTransaction,
        sequence: int,
        recorded_at: datetime,
    ) -> InventoryTransactionModel:
        return cls(
            id=dto.id,
            product_id=dto.key.product_id,
            warehouse_id=dto.key.warehouse_id,
            location_id=dto.key.location_id,
            sequence=sequence,
            transaction_type=dto.transaction_type.value,
            quantity=dto.quantity,
            unit_cost=dto.unit_cost,
            transaction_date=dto.transaction_date,
            lot_number=dto.lot_number,
            serial_number=dto.serial_number,
            manufacture_date=dto.manufacture_date,
            expiration_date=dto.expiration_date,
            reference_document_id=dto.reference.document_id if dto.reference else None,
            reference_document_type=dto.reference.document_type if dto.reference else None,
            notes=dto.notes,
            actor_id=dto.actor_id,
            recorded_at=recorded_at,
        )

    def __repr__(self) -> str:
        return (
            f"<InventoryTransaction {self.id} {self.transaction_type} "
            f"{self.key} qty={self.quantity} @ {self.unit_cost}>"
        )
