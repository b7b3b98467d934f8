"""
Module: stock_kernel.selectors.inventory_selector
Responsibility: Read-only queries over balances, cost layers and the ledger:
    snapshots, listings, the on-hand vs. layer consistency check and a
    per-key valuation report.
Architecture position: Kernel > Selectors.  May import from models/, domain/
    and selectors/base.py.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Layer totals are summed as Decimal over remaining_quantity > 0 rows;
      database-side SUM may return floats on SQLite.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from stock_kernel.db.types import ZERO
from stock_kernel.domain.dtos import (
    BalanceStatus,
    ConsistencyReport,
    CostLayer,
    InventoryBalance,
    InventoryTransaction,
    StockKey,
)
from stock_kernel.models.balance import InventoryBalanceModel
from stock_kernel.models.cost_layer import CostLayerModel
from stock_kernel.models.transaction import InventoryTransactionModel
from stock_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ValuationRow:
    """One line of the inventory valuation report."""

    key: StockKey
    on_hand_quantity: Decimal
    reserved_quantity: Decimal
    average_unit_cost: Decimal
    layered_quantity: Decimal
    layered_value: Decimal

    @property
    def is_consistent(self) -> bool:
        return self.on_hand_quantity == self.layered_quantity


class InventorySelector(BaseSelector[InventoryBalanceModel]):
    """Read-side queries for inventory data."""

    def _balance_stmt(self, key: StockKey):
        return select(InventoryBalanceModel).where(
            InventoryBalanceModel.product_id == key.product_id,
            InventoryBalanceModel.warehouse_id == key.warehouse_id,
            InventoryBalanceModel.location_id == key.location_id,
        )

    def balance(self, key: StockKey, include_deleted: bool = False) -> InventoryBalance | None:
        row = self.session.execute(self._balance_stmt(key)).scalar_one_or_none()
        if row is None or (row.is_deleted and not include_deleted):
            return None
        return row.to_dto()

    def balance_by_id(self, balance_id: UUID) -> InventoryBalance | None:
        row = self.session.get(InventoryBalanceModel, balance_id)
        return row.to_dto() if row is not None else None

    def balances(
        self,
        product_id: str | None = None,
        warehouse_id: str | None = None,
        location_id: str | None = None,
        include_deleted: bool = False,
    ) -> list[InventoryBalance]:
        stmt = select(InventoryBalanceModel)
        if product_id is not None:
            stmt = stmt.where(InventoryBalanceModel.product_id == product_id)
        if warehouse_id is not None:
            stmt = stmt.where(InventoryBalanceModel.warehouse_id == warehouse_id)
        if location_id is not None:
            stmt = stmt.where(InventoryBalanceModel.location_id == location_id)
        if not include_deleted:
            stmt = stmt.where(InventoryBalanceModel.status == BalanceStatus.ACTIVE.value)
        stmt = stmt.order_by(
            InventoryBalanceModel.product_id,
            InventoryBalanceModel.warehouse_id,
            InventoryBalanceModel.location_id,
        )
        return [row.to_dto() for row in self.session.execute(stmt).scalars().all()]

    def cost_layers(self, key: StockKey, include_exhausted: bool = True) -> list[CostLayer]:
        stmt = select(CostLayerModel).where(
            CostLayerModel.product_id == key.product_id,
            CostLayerModel.warehouse_id == key.warehouse_id,
            CostLayerModel.location_id == key.location_id,
        )
        if not include_exhausted:
            stmt = stmt.where(CostLayerModel.remaining_quantity > ZERO)
        stmt = stmt.order_by(CostLayerModel.receipt_date, CostLayerModel.sequence)
        return [row.to_dto() for row in self.session.execute(stmt).scalars().all()]

    def transaction(self, transaction_id: UUID) -> InventoryTransaction | None:
        row = self.session.get(InventoryTransactionModel, transaction_id)
        return row.to_dto() if row is not None else None

    def _layer_totals(self, key: StockKey) -> tuple[Decimal, Decimal, int]:
        quantity = ZERO
        value = ZERO
        layers = self.cost_layers(key, include_exhausted=False)
        for layer in layers:
            quantity += layer.remaining_quantity
            value += layer.remaining_value
        return quantity, value, len(layers)

    def consistency(self, key: StockKey) -> ConsistencyReport:
        """Compare the balance's on-hand quantity with its open layers."""
        row = self.session.execute(self._balance_stmt(key)).scalar_one_or_none()
        on_hand = row.on_hand_quantity if row is not None else ZERO
        quantity, value, count = self._layer_totals(key)
        return ConsistencyReport(
            key=key,
            on_hand_quantity=on_hand,
            layered_quantity=quantity,
            layered_value=value,
            open_layers=count,
        )

    def valuation(
        self,
        product_id: str | None = None,
        warehouse_id: str | None = None,
    ) -> list[ValuationRow]:
        rows = []
        for balance in self.balances(product_id=product_id, warehouse_id=warehouse_id):
            quantity, value, _ = self._layer_totals(balance.key)
            rows.append(
                ValuationRow(
                    key=balance.key,
                    on_hand_quantity=balance.on_hand_quantity,
                    reserved_quantity=balance.reserved_quantity,
                    average_unit_cost=balance.average_unit_cost,
                    layered_quantity=quantity,
                    layered_value=value,
                )
            )
        return rows
