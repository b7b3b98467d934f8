"""
Module: stock_kernel.models.balance
Responsibility: ORM persistence for inventory balances -- one aggregate row per
    (product, warehouse, location) holding on-hand, reserved and available
    quantities plus the rolling average unit cost.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    B1 -- One row per key.  UniqueConstraint on (product_id, warehouse_id,
          location_id); a lost race on lazy creation surfaces as IntegrityError.
    B2 -- available_quantity is written only by recompute_available(), always
          as on_hand_quantity - reserved_quantity.
    B3 -- on_hand_quantity >= 0 and 0 <= reserved_quantity <= on_hand_quantity.
          CheckConstraints back the store-level validation.
    B4 -- Optimistic concurrency.  ``version`` is the mapper version_id_col;
          an UPDATE that matches zero rows raises StaleDataError.

Failure modes:
    - IntegrityError on duplicate key or CHECK violation.
    - StaleDataError when the row was changed by another transaction.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase
from stock_kernel.domain.dtos import BalanceStatus, InventoryBalance, StockKey


class InventoryBalanceModel(TrackedBase):
    """
    Persistent aggregate stock record for one key.

    Guarantees:
        - The (product_id, warehouse_id, location_id) triple never changes
          after creation.
        - Rows are soft-deleted (status = deleted), never physically removed.
    """

    __tablename__ = "inventory_balances"

    __table_args__ = (
        UniqueConstraint(
            "product_id", "warehouse_id", "location_id",
            name="uq_inventory_balance_key",
        ),
        CheckConstraint("on_hand_quantity >= 0", name="ck_balance_on_hand_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_balance_reserved_non_negative"),
        CheckConstraint(
            "reserved_quantity <= on_hand_quantity",
            name="ck_balance_reserved_within_on_hand",
        ),
        Index("idx_inventory_balance_product", "product_id"),
        Index("idx_inventory_balance_warehouse", "warehouse_id", "location_id"),
        Index("idx_inventory_balance_status", "status"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    warehouse_id: Mapped[str] = mapped_column(String(100), nullable=False)
    location_id: Mapped[str] = mapped_column(String(100), nullable=False)

    on_hand_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    reserved_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    # INVARIANT B2: derived, written only by recompute_available()
    available_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    average_unit_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BalanceStatus.ACTIVE.value,
    )

    # INVARIANT B4
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def key(self) -> StockKey:
        return StockKey(self.product_id, self.warehouse_id, self.location_id)

    @property
    def is_deleted(self) -> bool:
        return self.status == BalanceStatus.DELETED.value

    def recompute_available(self) -> None:
        self.available_quantity = self.on_hand_quantity - self.reserved_quantity

    def to_dto(self) -> InventoryBalance:
        return InventoryBalance(
            id=self.id,
            key=self.key,
            on_hand_quantity=self.on_hand_quantity,
            reserved_quantity=self.reserved_quantity,
            average_unit_cost=self.average_unit_cost,
            status=BalanceStatus(self.status),
            version=self.version,
            lot_number=self.lot_number,
            serial_number=self.serial_number,
        )

    def __repr__(self) -> str:
        return (
            f"<InventoryBalance {self.key}: on_hand={self.on_hand_quantity} "
            f"reserved={self.reserved_quantity} avg={self.average_unit_cost}>"
        )
