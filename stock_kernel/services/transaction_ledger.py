"""
TransactionLedger -- append-only store of stock movements.

Responsibility:
    append() persists one InventoryTransaction; query() and get() read them
    back.  There is deliberately no update or delete method; corrections are
    new movements.

Architecture position:
    Kernel > Services.  Flush-only; writes happen inside a UnitOfWork that
    holds the key lock.

Invariants enforced:
    - quantity > 0 and unit_cost >= 0 for every appended row.
    - Per-key sequence is max(sequence) + 1, allocated under the key lock.
    - Rows are immutable once flushed (db/immutability.py).

Failure modes:
    - InvalidQuantityError / InvalidCostError on a malformed transaction.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from stock_kernel.db.types import ZERO
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import InventoryTransaction, LedgerQuery, StockKey
from stock_kernel.exceptions import InvalidCostError, InvalidQuantityError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.transaction import InventoryTransactionModel
from stock_kernel.services.base import BaseService

logger = get_logger("services.transaction_ledger")


class TransactionLedger(BaseService[InventoryTransactionModel]):
    """Append-only ledger of InventoryTransaction rows."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _next_sequence(self, key: StockKey) -> int:
        current = self.session.execute(
            select(func.max(InventoryTransactionModel.sequence)).where(
                InventoryTransactionModel.product_id == key.product_id,
                InventoryTransactionModel.warehouse_id == key.warehouse_id,
                InventoryTransactionModel.location_id == key.location_id,
            )
        ).scalar()
        return (current or 0) + 1

    def append(self, transaction: InventoryTransaction) -> InventoryTransaction:
        """
        Persist ``transaction`` and return it with its ledger sequence.

        Raises:
            InvalidQuantityError: If quantity <= 0.
            InvalidCostError: If unit_cost < 0.
        """
        operation = transaction.transaction_type.value
        if transaction.quantity <= ZERO:
            raise InvalidQuantityError(operation, transaction.quantity)
        if transaction.unit_cost < ZERO:
            raise InvalidCostError(operation, transaction.unit_cost)

        row = InventoryTransactionModel.from_dto(
            transaction,
            sequence=self._next_sequence(transaction.key),
            recorded_at=self._clock.now(),
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "ledger_transaction_appended",
            extra={
                **transaction.key.as_log_fields(),
                "transaction_id": str(row.id),
                "transaction_type": operation,
                "sequence": row.sequence,
                "quantity": str(transaction.quantity),
                "unit_cost": str(transaction.unit_cost),
            },
        )
        return row.to_dto()

    def get(self, transaction_id: UUID) -> InventoryTransaction | None:
        row = self.session.get(InventoryTransactionModel, transaction_id)
        return row.to_dto() if row is not None else None

    def query(self, query: LedgerQuery) -> list[InventoryTransaction]:
        """Transactions matching ``query`` in (date, key, sequence) order."""
        model = InventoryTransactionModel
        stmt = select(model)
        if query.product_id is not None:
            stmt = stmt.where(model.product_id == query.product_id)
        if query.warehouse_id is not None:
            stmt = stmt.where(model.warehouse_id == query.warehouse_id)
        if query.location_id is not None:
            stmt = stmt.where(model.location_id == query.location_id)
        if query.date_from is not None:
            stmt = stmt.where(model.transaction_date >= query.date_from)
        if query.date_to is not None:
            stmt = stmt.where(model.transaction_date <= query.date_to)
        if query.transaction_types:
            stmt = stmt.where(
                model.transaction_type.in_(sorted(t.value for t in query.transaction_types))
            )
        if query.reference_document_id is not None:
            stmt = stmt.where(model.reference_document_id == query.reference_document_id)

        stmt = stmt.order_by(
            model.transaction_date,
            model.product_id,
            model.warehouse_id,
            model.location_id,
            model.sequence,
        )
        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        return [row.to_dto() for row in self.session.execute(stmt).scalars().all()]
