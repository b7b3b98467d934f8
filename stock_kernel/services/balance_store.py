"""
BalanceStore -- persistence of the inventory balance aggregate.

Responsibility:
    Loads, lazily creates and mutates InventoryBalanceModel rows for one
    (product, warehouse, location) key.  Every quantity change goes through
    apply_quantities(), which validates the balance invariants and
    recomputes the stored available quantity.

Architecture position:
    Kernel > Services.  Flush-only; called by InventoryAccountingEngine
    inside a UnitOfWork that already holds the key lock.

Invariants enforced:
    - on_hand >= 0, 0 <= reserved <= on_hand (checked before flush; the
      CHECK constraints are the backstop).
    - available = on_hand - reserved, recomputed on every write.
    - Rows are read FOR UPDATE so PostgreSQL serializes writers across
      processes.

Failure modes:
    - InvalidStateError if a mutation would break the quantity invariants.
    - OptimisticLockError when a concurrent writer created the same key
      first (unique-constraint race) or bumped the version underneath us.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from stock_kernel.db.types import ZERO
from stock_kernel.domain.dtos import BalanceStatus, StockKey
from stock_kernel.exceptions import InvalidStateError, OptimisticLockError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.balance import InventoryBalanceModel
from stock_kernel.services.base import BaseService

logger = get_logger("services.balance_store")


class BalanceStore(BaseService[InventoryBalanceModel]):
    """Session-bound access to InventoryBalanceModel rows."""

    def _select_key(self, key: StockKey):
        return select(InventoryBalanceModel).where(
            InventoryBalanceModel.product_id == key.product_id,
            InventoryBalanceModel.warehouse_id == key.warehouse_id,
            InventoryBalanceModel.location_id == key.location_id,
        )

    def get_for_update(self, key: StockKey) -> InventoryBalanceModel | None:
        """Read the balance row for ``key`` with a row lock, refreshing any cached copy."""
        return self.session.execute(
            self._select_key(key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_or_create_for_update(
        self,
        key: StockKey,
        actor_id: UUID,
        lot_number: str | None = None,
        serial_number: str | None = None,
    ) -> tuple[InventoryBalanceModel, bool]:
        """
        Load the balance for ``key`` FOR UPDATE, creating an empty one if absent.

        Returns:
            (row, created)

        Raises:
            OptimisticLockError: If another transaction inserted the same key
                between our read and our insert.
        """
        balance = self.get_for_update(key)
        if balance is not None:
            return balance, False

        balance = InventoryBalanceModel(
            product_id=key.product_id,
            warehouse_id=key.warehouse_id,
            location_id=key.location_id,
            on_hand_quantity=ZERO,
            reserved_quantity=ZERO,
            available_quantity=ZERO,
            average_unit_cost=ZERO,
            lot_number=lot_number,
            serial_number=serial_number,
            status=BalanceStatus.ACTIVE.value,
            created_by_id=actor_id,
        )
        self.session.add(balance)
        try:
            self.session.flush()
        except IntegrityError as exc:
            logger.warning(
                "balance_create_conflict",
                extra=key.as_log_fields(),
            )
            raise OptimisticLockError("InventoryBalance", str(key)) from exc

        logger.info("balance_created", extra={**key.as_log_fields(), "balance_id": str(balance.id)})
        return balance, True

    def apply_quantities(
        self,
        balance: InventoryBalanceModel,
        actor_id: UUID,
        *,
        on_hand: Decimal | None = None,
        reserved: Decimal | None = None,
        average_unit_cost: Decimal | None = None,
    ) -> InventoryBalanceModel:
        """
        Set new quantities / average cost on ``balance`` and flush.

        Raises:
            InvalidStateError: If the resulting quantities violate
                on_hand >= 0 or 0 <= reserved <= on_hand.
        """
        new_on_hand = balance.on_hand_quantity if on_hand is None else on_hand
        new_reserved = balance.reserved_quantity if reserved is None else reserved

        if new_on_hand < ZERO:
            raise InvalidStateError(str(balance.key), f"on-hand quantity would be {new_on_hand}")
        if new_reserved < ZERO:
            raise InvalidStateError(str(balance.key), f"reserved quantity would be {new_reserved}")
        if new_reserved > new_on_hand:
            raise InvalidStateError(
                str(balance.key),
                f"reserved {new_reserved} would exceed on-hand {new_on_hand}",
            )
        if average_unit_cost is not None and average_unit_cost < ZERO:
            raise InvalidStateError(
                str(balance.key), f"average unit cost would be {average_unit_cost}",
            )

        balance.on_hand_quantity = new_on_hand
        balance.reserved_quantity = new_reserved
        if average_unit_cost is not None:
            balance.average_unit_cost = average_unit_cost
        balance.recompute_available()
        balance.updated_by_id = actor_id
        self.flush(balance)
        return balance

    def set_status(
        self,
        balance: InventoryBalanceModel,
        status: BalanceStatus,
        actor_id: UUID,
    ) -> InventoryBalanceModel:
        balance.status = status.value
        balance.updated_by_id = actor_id
        self.flush(balance)
        return balance

    def set_attributes(
        self,
        balance: InventoryBalanceModel,
        actor_id: UUID,
        **attributes: str | None,
    ) -> InventoryBalanceModel:
        for name, value in attributes.items():
            setattr(balance, name, value)
        balance.updated_by_id = actor_id
        self.flush(balance)
        return balance

    def flush(self, balance: InventoryBalanceModel) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "balance_version_conflict",
                extra={**balance.key.as_log_fields(), "balance_id": str(balance.id)},
            )
            raise OptimisticLockError("InventoryBalance", str(balance.id)) from exc
