"""
CostLayerStore -- persistence of cost layers.

Responsibility:
    Creates cost layers on inbound movements, loads the open layers of a key
    for consumption, and applies a consumption plan computed by
    stock_engines.valuation.

Architecture position:
    Kernel > Services.  Flush-only; called inside a UnitOfWork that holds the
    key lock.

Invariants enforced:
    - sequence is max(sequence) + 1 per key, allocated under the key lock;
      the (key, sequence) unique constraint is the cross-process backstop.
    - apply_consumption() only ever lowers remaining_quantity, and only by
      the planned amount from the remaining quantity the plan was built on.

Failure modes:
    - InvalidStateError if a planned draw no longer matches the layer row.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from stock_kernel.db.types import ZERO
from stock_kernel.domain.dtos import ConsumptionResult, DocumentRef, StockKey
from stock_kernel.exceptions import InvalidStateError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.cost_layer import CostLayerModel
from stock_kernel.services.base import BaseService

logger = get_logger("services.cost_layer_store")


class CostLayerStore(BaseService[CostLayerModel]):
    """Session-bound access to CostLayerModel rows."""

    def _for_key(self, key: StockKey):
        return select(CostLayerModel).where(
            CostLayerModel.product_id == key.product_id,
            CostLayerModel.warehouse_id == key.warehouse_id,
            CostLayerModel.location_id == key.location_id,
        )

    def open_layers_for_update(self, key: StockKey) -> list[CostLayerModel]:
        """Open layers of ``key`` with row locks, refreshed from the database."""
        stmt = (
            self._for_key(key)
            .where(CostLayerModel.remaining_quantity > ZERO)
            .order_by(CostLayerModel.receipt_date, CostLayerModel.sequence)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(self.session.execute(stmt).scalars().all())

    def next_sequence(self, key: StockKey) -> int:
        current = self.session.execute(
            select(func.max(CostLayerModel.sequence)).where(
                CostLayerModel.product_id == key.product_id,
                CostLayerModel.warehouse_id == key.warehouse_id,
                CostLayerModel.location_id == key.location_id,
            )
        ).scalar()
        return (current or 0) + 1

    def add_layer(
        self,
        key: StockKey,
        quantity: Decimal,
        unit_cost: Decimal,
        receipt_date: datetime,
        actor_id: UUID,
        source_transaction_id: UUID | None = None,
        lot_number: str | None = None,
        serial_number: str | None = None,
        reference: DocumentRef | None = None,
    ) -> CostLayerModel:
        layer = CostLayerModel(
            product_id=key.product_id,
            warehouse_id=key.warehouse_id,
            location_id=key.location_id,
            sequence=self.next_sequence(key),
            original_quantity=quantity,
            remaining_quantity=quantity,
            unit_cost=unit_cost,
            receipt_date=receipt_date,
            source_transaction_id=source_transaction_id,
            lot_number=lot_number,
            serial_number=serial_number,
            reference_document_id=reference.document_id if reference else None,
            reference_document_type=reference.document_type if reference else None,
            created_by_id=actor_id,
        )
        self.session.add(layer)
        self.session.flush()

        logger.info(
            "cost_layer_created",
            extra={
                **key.as_log_fields(),
                "layer_id": str(layer.id),
                "sequence": layer.sequence,
                "quantity": str(quantity),
                "unit_cost": str(unit_cost),
            },
        )
        return layer

    def apply_consumption(
        self,
        result: ConsumptionResult,
        layers: list[CostLayerModel],
        actor_id: UUID,
    ) -> None:
        """
        Write the planned remaining quantities back to ``layers``.

        Raises:
            InvalidStateError: If a planned layer is missing from ``layers`` or
                its remaining quantity changed since the plan was built.
        """
        by_id = {layer.id: layer for layer in layers}
        for draw in result.consumptions:
            layer = by_id.get(draw.layer_id)
            if layer is None:
                raise InvalidStateError(str(result.key), f"cost layer {draw.layer_id} not loaded")
            if layer.remaining_quantity - draw.quantity != draw.remaining_after:
                raise InvalidStateError(
                    str(result.key),
                    f"cost layer {draw.layer_id} changed during consumption",
                )
            layer.remaining_quantity = draw.remaining_after
            layer.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "cost_layers_consumed",
            extra={
                **result.key.as_log_fields(),
                "quantity": str(result.total_quantity),
                "total_cost": str(result.total_cost),
                "unit_cost": str(result.unit_cost),
                "layers_touched": len(result.consumptions),
            },
        )
