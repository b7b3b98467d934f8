"""
InventoryAccountingEngine -- the sole writer of balances, cost layers and ledger.

Responsibility:
    Validates and applies every stock movement (receipt, issue, adjustment,
    reservation, transfer, soft delete) as one unit of work spanning the
    balance row, the transaction ledger, the cost layers and the audit
    trail.  Also provides the read API over the same data.

Architecture position:
    Services -- stateful orchestration over kernel stores.
    Imports kernel services/selectors, stock_engines.valuation (pure
    consumption planning) and stock_config (settings).

Invariants enforced:
    - All-or-nothing: every mutation runs inside a UnitOfWork; any failure
      rolls back balance, ledger, layers and audit together.
    - Validation first: malformed quantities/costs, unknown references,
      missing balances and insufficient stock are detected before any write.
    - Per-key serialization: the key lock is taken before the balance row is
      read and held until commit.  Transfers lock both keys in sorted order.
    - Conservation: an outbound movement consumes exactly its quantity from
      the open cost layers or fails with InsufficientCostLayersError.
    - reserved <= on_hand and on_hand >= 0 after every movement.
    - Notifications are published only after commit and never affect the
      outcome of the movement.

Failure modes:
    - InvalidQuantityError / InvalidCostError: malformed arguments.
    - InsufficientReferenceDataError: unknown or inactive product,
      warehouse or location.
    - BalanceNotFoundError / NotFoundError: nothing to issue from / unknown id.
    - InsufficientStockError: issue or reserve exceeds on-hand/available.
    - InsufficientCostLayersError: layers and balance have diverged.
    - InvalidStateError: unreserving more than is reserved.
    - OperationNotAllowedError: deleting a non-empty balance, same-key transfer.
    - OptimisticLockError / LockTimeoutError: concurrent writers; retryable.

    Every failure is logged as ``inventory_operation_failed`` before it
    propagates.

Audit relevance:
    Each successful mutation writes one InventoryAuditEvent per affected
    balance (before/after state) in the same transaction.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from stock_config.schema import InventoryConfig
from stock_engines.valuation import CostFlow, plan_consumption, rolling_average_cost
from stock_kernel.db.types import MAX_INTEGER_DIGITS, SCALE, ZERO, integer_digits, round_cost, to_decimal
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    AdjustmentDirection,
    AuditRecord,
    BalanceStatus,
    ConsistencyReport,
    CostLayer,
    DocumentRef,
    InventoryBalance,
    InventoryLevelChanged,
    InventoryTransaction,
    LedgerQuery,
    MovementResult,
    StockKey,
    TransactionType,
    TransferResult,
)
from stock_kernel.exceptions import (
    BalanceNotFoundError,
    InsufficientReferenceDataError,
    InsufficientStockError,
    InvalidCostError,
    InvalidQuantityError,
    InvalidStateError,
    NotFoundError,
    OperationNotAllowedError,
    StockKernelError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.audit_event import AuditAction
from stock_kernel.models.balance import InventoryBalanceModel
from stock_kernel.selectors.inventory_selector import InventorySelector
from stock_kernel.services.auditor_service import AuditorService
from stock_kernel.services.balance_store import BalanceStore
from stock_kernel.services.cost_layer_store import CostLayerStore
from stock_kernel.services.locks import KeyLockRegistry
from stock_kernel.services.notifications import NotificationSink, NullNotificationSink
from stock_kernel.services.reference_directory import ReferenceDirectory
from stock_kernel.services.transaction_ledger import TransactionLedger
from stock_kernel.services.unit_of_work import UnitOfWork

logger = get_logger("services.inventory_accounting")

BALANCE_ENTITY = "InventoryBalance"

_UNSET: Any = object()

_INBOUND_AUDIT = {
    TransactionType.RECEIPT: AuditAction.RECEIPT_RECORDED,
    TransactionType.ADJUSTMENT_IN: AuditAction.ADJUSTED_IN,
    TransactionType.TRANSFER_IN: AuditAction.TRANSFERRED_IN,
}

_OUTBOUND_AUDIT = {
    TransactionType.ISSUE: AuditAction.ISSUE_RECORDED,
    TransactionType.ADJUSTMENT_OUT: AuditAction.ADJUSTED_OUT,
    TransactionType.TRANSFER_OUT: AuditAction.TRANSFERRED_OUT,
}


class InventoryAccountingEngine:
    """
    Orchestrates inventory movements over the kernel stores.

    Contract:
        Every mutation takes a keyword ``actor_id`` (the pre-authorized
        caller) and an optional ``uow``.  Without ``uow`` the call opens,
        commits and closes its own UnitOfWork.  With ``uow`` the call joins
        it and the caller owns commit/rollback; build one with
        ``engine.unit_of_work()`` so it shares this engine's locks and
        notification sink.

    Non-goals:
        - No authorization; callers are trusted.
        - No direct cost-layer creation or consumption outside a movement.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        directory: ReferenceDirectory,
        *,
        config: InventoryConfig | None = None,
        clock: Clock | None = None,
        notifications: NotificationSink | None = None,
        locks: KeyLockRegistry | None = None,
    ):
        self._session_factory = session_factory
        self._directory = directory
        self._config = config or InventoryConfig()
        self._clock = clock or SystemClock()
        self._notifications = notifications or NullNotificationSink()
        self._locks = locks or KeyLockRegistry(default_timeout=self._config.lock_timeout_seconds)
        self._flow = CostFlow(self._config.cost_flow)

    @property
    def cost_flow(self) -> CostFlow:
        return self._flow

    def unit_of_work(self) -> UnitOfWork:
        """A UnitOfWork sharing this engine's locks and notification sink."""
        return UnitOfWork(
            self._session_factory,
            notifications=self._notifications,
            locks=self._locks,
            lock_timeout=self._config.lock_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _joined(self, uow: UnitOfWork | None) -> Iterator[UnitOfWork]:
        if uow is not None:
            if not uow.is_active:
                raise RuntimeError("UnitOfWork passed to the engine is not active")
            yield uow
            return
        with self.unit_of_work() as own:
            yield own

    @contextmanager
    def _operation(
        self,
        operation: str,
        key: StockKey | None,
        quantity: object,
        actor_id: UUID,
        reference: DocumentRef | None = None,
    ) -> Iterator[None]:
        with LogContext.bind(
            key=key,
            operation=operation,
            actor_id=str(actor_id),
            document_id=reference.document_id if reference else None,
        ):
            t0 = time.monotonic()
            try:
                yield
            except StockKernelError as exc:
                logger.warning(
                    "inventory_operation_failed",
                    extra={
                        **(key.as_log_fields() if key else {}),
                        "requested_quantity": str(quantity),
                        "error_code": exc.code,
                        "error": str(exc),
                    },
                )
                raise
            except Exception as exc:
                logger.exception(
                    "inventory_operation_failed",
                    extra={
                        **(key.as_log_fields() if key else {}),
                        "requested_quantity": str(quantity),
                        "error_code": "UNEXPECTED",
                        "error": str(exc),
                    },
                )
                raise
            logger.debug(
                "inventory_operation_completed",
                extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
            )

    @staticmethod
    def _quantity(operation: str, value: object, allow_zero: bool = False) -> Decimal:
        try:
            quantity = to_decimal(value)
        except ValueError:
            raise InvalidQuantityError(operation, value, "not a finite number") from None
        if quantity < ZERO or (quantity == ZERO and not allow_zero):
            raise InvalidQuantityError(
                operation, value, "must be non-negative" if allow_zero else "must be positive",
            )
        if quantity.as_tuple().exponent < -SCALE:
            raise InvalidQuantityError(operation, value, f"more than {SCALE} decimal places")
        if integer_digits(quantity) > MAX_INTEGER_DIGITS:
            raise InvalidQuantityError(operation, value, f"more than {MAX_INTEGER_DIGITS} integer digits")
        return quantity

    @staticmethod
    def _cost(operation: str, value: object) -> Decimal:
        if value is None:
            raise InvalidCostError(operation, value, "unit cost is required")
        try:
            cost = to_decimal(value)
        except ValueError:
            raise InvalidCostError(operation, value, "not a finite number") from None
        if cost < ZERO:
            raise InvalidCostError(operation, value)
        if cost.as_tuple().exponent < -SCALE:
            raise InvalidCostError(operation, value, f"more than {SCALE} decimal places")
        if integer_digits(cost) > MAX_INTEGER_DIGITS:
            raise InvalidCostError(operation, value, f"more than {MAX_INTEGER_DIGITS} integer digits")
        return cost

    def _require_references(self, key: StockKey) -> None:
        if not self._directory.product_is_active(key.product_id):
            raise InsufficientReferenceDataError("Product", key.product_id)
        if not self._directory.warehouse_is_active(key.warehouse_id):
            raise InsufficientReferenceDataError("Warehouse", key.warehouse_id)
        if not self._directory.location_is_active(key.warehouse_id, key.location_id):
            raise InsufficientReferenceDataError(
                "Location",
                key.location_id,
                f"unknown, inactive, or not in warehouse {key.warehouse_id!r}",
            )

    def _audit(
        self,
        uow: UnitOfWork,
        action: AuditAction,
        actor_id: UUID,
        key: StockKey,
        before: InventoryBalance | None,
        after: InventoryBalance,
        transaction_id: UUID | None = None,
        note: str | None = None,
    ) -> None:
        AuditorService(uow.session, self._clock).record(
            AuditRecord(
                actor_id=actor_id,
                action=action.value,
                entity_type=BALANCE_ENTITY,
                entity_id=str(key),
                before=before.as_audit_state() if before else None,
                after=after.as_audit_state(),
                note=note,
            ),
            transaction_id=transaction_id,
        )

    def _notify(
        self,
        uow: UnitOfWork,
        key: StockKey,
        old_quantity: Decimal,
        new_quantity: Decimal,
        operation: str,
    ) -> None:
        uow.defer_notification(
            InventoryLevelChanged(
                key=key,
                old_quantity=old_quantity,
                new_quantity=new_quantity,
                operation=operation,
                occurred_at=self._clock.now(),
            )
        )

    @staticmethod
    def _load_active(store: BalanceStore, key: StockKey) -> InventoryBalanceModel:
        balance = store.get_for_update(key)
        if balance is None or balance.is_deleted:
            raise BalanceNotFoundError(str(key))
        return balance

    # ------------------------------------------------------------------
    # Movement primitives (run inside an active unit of work)
    # ------------------------------------------------------------------

    def _apply_inbound(
        self,
        uow: UnitOfWork,
        key: StockKey,
        transaction_type: TransactionType,
        quantity: Decimal,
        unit_cost: Decimal,
        actor_id: UUID,
        *,
        reference: DocumentRef | None = None,
        lot_number: str | None = None,
        serial_number: str | None = None,
        manufacture_date: date | None = None,
        expiration_date: date | None = None,
        transaction_date: datetime | None = None,
        notes: str | None = None,
    ) -> MovementResult:
        uow.lock(key)
        session = uow.session
        balances = BalanceStore(session)

        balance, created = balances.get_or_create_for_update(
            key, actor_id, lot_number=lot_number, serial_number=serial_number,
        )
        before = None if created else balance.to_dto()
        old_on_hand = balance.on_hand_quantity

        if balance.is_deleted:
            balances.set_status(balance, BalanceStatus.ACTIVE, actor_id)
            logger.info("balance_reactivated", extra=key.as_log_fields())

        when = transaction_date or self._clock.now()
        transaction = TransactionLedger(session, self._clock).append(
            InventoryTransaction(
                id=uuid4(),
                key=key,
                transaction_type=transaction_type,
                quantity=quantity,
                unit_cost=unit_cost,
                transaction_date=when,
                actor_id=actor_id,
                lot_number=lot_number,
                serial_number=serial_number,
                manufacture_date=manufacture_date,
                expiration_date=expiration_date,
                reference=reference,
                notes=notes,
            )
        )

        CostLayerStore(session).add_layer(
            key,
            quantity,
            unit_cost,
            receipt_date=when,
            actor_id=actor_id,
            source_transaction_id=transaction.id,
            lot_number=lot_number,
            serial_number=serial_number,
            reference=reference,
        )

        new_average = rolling_average_cost(
            old_on_hand, balance.average_unit_cost, quantity, unit_cost,
        )
        balances.apply_quantities(
            balance,
            actor_id,
            on_hand=old_on_hand + quantity,
            average_unit_cost=new_average,
        )
        after = balance.to_dto()

        self._audit(
            uow, _INBOUND_AUDIT[transaction_type], actor_id, key, before, after,
            transaction_id=transaction.id, note=notes,
        )
        self._notify(uow, key, old_on_hand, after.on_hand_quantity, transaction_type.value)

        logger.info(
            f"{transaction_type.value}_recorded",
            extra={
                **key.as_log_fields(),
                "transaction_id": str(transaction.id),
                "quantity": str(quantity),
                "unit_cost": str(unit_cost),
                "on_hand_before": str(old_on_hand),
                "on_hand_after": str(after.on_hand_quantity),
                "average_unit_cost": str(after.average_unit_cost),
                "balance_created": created,
            },
        )
        return MovementResult(transaction=transaction, balance=after)

    def _apply_outbound(
        self,
        uow: UnitOfWork,
        key: StockKey,
        transaction_type: TransactionType,
        quantity: Decimal,
        actor_id: UUID,
        *,
        reference: DocumentRef | None = None,
        consume_reservation: bool = False,
        transaction_date: datetime | None = None,
        notes: str | None = None,
    ) -> MovementResult:
        uow.lock(key)
        session = uow.session
        balances = BalanceStore(session)
        layers = CostLayerStore(session)

        balance = self._load_active(balances, key)
        before = balance.to_dto()
        old_on_hand = balance.on_hand_quantity
        reserved = balance.reserved_quantity

        if quantity > old_on_hand:
            raise InsufficientStockError(str(key), quantity, old_on_hand, basis="on_hand")

        released = ZERO
        if consume_reservation:
            released = min(reserved, quantity)
            reserved -= released

        new_on_hand = old_on_hand - quantity
        if reserved > new_on_hand:
            raise InsufficientStockError(
                str(key), quantity, old_on_hand - reserved, basis="available",
            )

        open_layers = layers.open_layers_for_update(key)
        plan = plan_consumption(
            key=key,
            layers=[layer.to_dto() for layer in open_layers],
            quantity=quantity,
            flow=self._flow,
        )

        transaction = TransactionLedger(session, self._clock).append(
            InventoryTransaction(
                id=uuid4(),
                key=key,
                transaction_type=transaction_type,
                quantity=quantity,
                unit_cost=plan.unit_cost,
                transaction_date=transaction_date or self._clock.now(),
                actor_id=actor_id,
                reference=reference,
                notes=notes,
            )
        )
        layers.apply_consumption(plan, open_layers, actor_id)

        remaining_quantity = sum((layer.remaining_quantity for layer in open_layers), ZERO)
        remaining_value = sum(
            (layer.remaining_quantity * layer.unit_cost for layer in open_layers), ZERO,
        )
        new_average = (
            round_cost(remaining_value / remaining_quantity)
            if remaining_quantity > ZERO
            else balance.average_unit_cost
        )

        balances.apply_quantities(
            balance,
            actor_id,
            on_hand=new_on_hand,
            reserved=reserved,
            average_unit_cost=new_average,
        )
        after = balance.to_dto()

        self._audit(
            uow, _OUTBOUND_AUDIT[transaction_type], actor_id, key, before, after,
            transaction_id=transaction.id, note=notes,
        )
        self._notify(uow, key, old_on_hand, new_on_hand, transaction_type.value)

        logger.info(
            f"{transaction_type.value}_recorded",
            extra={
                **key.as_log_fields(),
                "transaction_id": str(transaction.id),
                "quantity": str(quantity),
                "unit_cost": str(plan.unit_cost),
                "total_cost": str(plan.total_cost),
                "layers_consumed": len(plan.consumptions),
                "reservation_released": str(released),
                "on_hand_before": str(old_on_hand),
                "on_hand_after": str(new_on_hand),
            },
        )
        return MovementResult(transaction=transaction, balance=after, consumption=plan)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_receipt(
        self,
        product_id: str,
        warehouse_id: str,
        location_id: str,
        quantity: object,
        unit_cost: object,
        *,
        actor_id: UUID,
        reference: DocumentRef | None = None,
        lot_number: str | None = None,
        serial_number: str | None = None,
        manufacture_date: date | None = None,
        expiration_date: date | None = None,
        transaction_date: datetime | None = None,
        notes: str | None = None,
        uow: UnitOfWork | None = None,
    ) -> MovementResult:
        """
        Receive ``quantity`` units at ``unit_cost``.

        Creates the balance on first receipt (or reactivates a soft-deleted
        one), appends a RECEIPT transaction, opens a new cost layer and
        re-averages the balance's unit cost.
        """
        key = StockKey(product_id, warehouse_id, location_id)
        with self._operation("record_receipt", key, quantity, actor_id, reference):
            qty = self._quantity("record_receipt", quantity)
            cost = self._cost("record_receipt", unit_cost)
            self._require_references(key)
            with self._joined(uow) as active:
                return self._apply_inbound(
                    active, key, TransactionType.RECEIPT, qty, cost, actor_id,
                    reference=reference,
                    lot_number=lot_number,
                    serial_number=serial_number,
                    manufacture_date=manufacture_date,
                    expiration_date=expiration_date,
                    transaction_date=transaction_date,
                    notes=notes,
                )

    def record_issue(
        self,
        product_id: str,
        warehouse_id: str,
        location_id: str,
        quantity: object,
        *,
        actor_id: UUID,
        reference: DocumentRef | None = None,
        consume_reservation: bool = False,
        transaction_date: datetime | None = None,
        notes: str | None = None,
        uow: UnitOfWork | None = None,
    ) -> MovementResult:
        """
        Issue ``quantity`` units, consuming cost layers in the configured flow.

        The ISSUE transaction is priced at the weighted cost of the consumed
        layers.  With ``consume_reservation`` the issue first draws down the
        reservation by up to ``quantity``.
        """
        key = StockKey(product_id, warehouse_id, location_id)
        with self._operation("record_issue", key, quantity, actor_id, reference):
            qty = self._quantity("record_issue", quantity)
            with self._joined(uow) as active:
                return self._apply_outbound(
                    active, key, TransactionType.ISSUE, qty, actor_id,
                    reference=reference,
                    consume_reservation=consume_reservation,
                    transaction_date=transaction_date,
                    notes=notes,
                )

    def adjust(
        self,
        product_id: str,
        warehouse_id: str,
        location_id: str,
        quantity: object,
        direction: AdjustmentDirection | str,
        *,
        actor_id: UUID,
        unit_cost: object = None,
        reference: DocumentRef | None = None,
        notes: str | None = None,
        uow: UnitOfWork | None = None,
    ) -> MovementResult:
        """
        Manual stock correction.

        IN behaves like a receipt (new layer at ``unit_cost``, required);
        OUT behaves like an issue and requires an existing balance, even for a
        zero quantity.  A zero quantity otherwise changes nothing and returns
        ``transaction=None``.
        """
        key = StockKey(product_id, warehouse_id, location_id)
        with self._operation("adjust", key, quantity, actor_id, reference):
            try:
                direction = AdjustmentDirection(direction)
            except ValueError:
                raise OperationNotAllowedError(
                    "adjust", f"unknown direction {direction!r}",
                ) from None
            qty = self._quantity("adjust", quantity, allow_zero=True)

            if direction is AdjustmentDirection.IN:
                cost = self._cost("adjust", unit_cost)
                self._require_references(key)
            if qty == ZERO:
                logger.info("adjustment_skipped_zero_quantity", extra=key.as_log_fields())
                if uow is not None:
                    current = InventorySelector(uow.session).balance(key)
                else:
                    current = self.get_balance(key.product_id, key.warehouse_id, key.location_id)
                if current is None and direction is AdjustmentDirection.OUT:
                    raise BalanceNotFoundError(str(key))
                return MovementResult(transaction=None, balance=current)

            with self._joined(uow) as active:
                if direction is AdjustmentDirection.IN:
                    return self._apply_inbound(
                        active, key, TransactionType.ADJUSTMENT_IN, qty, cost, actor_id,
                        reference=reference, notes=notes,
                    )
                return self._apply_outbound(
                    active, key, TransactionType.ADJUSTMENT_OUT, qty, actor_id,
                    reference=reference, notes=notes,
                )

    def reserve(
        self,
        product_id: str,
        warehouse_id: str,
        location_id: str,
        quantity: object,
        *,
        actor_id: UUID,
        reference: DocumentRef | None = None,
        uow: UnitOfWork | None = None,
    ) -> InventoryBalance:
        """Set aside ``quantity`` of the available stock.  No ledger effect."""
        key = StockKey(product_id, warehouse_id, location_id)
        with self._operation("reserve", key, quantity, actor_id, reference):
            qty = self._quantity("reserve", quantity)
            with self._joined(uow) as active:
                active.lock(key)
                balances = BalanceStore(active.session)
                balance = self._load_active(balances, key)
                before = balance.to_dto()
                if qty > before.available_quantity:
                    raise InsufficientStockError(
                        str(key), qty, before.available_quantity, basis="available",
                    )
                balances.apply_quantities(
                    balance, actor_id, reserved=balance.reserved_quantity + qty,
                )
                after = balance.to_dto()
                self._audit(
                    active, AuditAction.RESERVED, actor_id, key, before, after,
                    note=reference.document_id if reference else None,
                )
                logger.info(
                    "stock_reserved",
                    extra={
                        **key.as_log_fields(),
                        "quantity": str(qty),
                        "reserved_after": str(after.reserved_quantity),
                        "available_after": str(after.available_quantity),
                    },
                )
                return after

    def unreserve(
        self,
        product_id: str,
        warehouse_id: str,
        location_id: str,
        quantity: object,
        *,
        actor_id: UUID,
        reference: DocumentRef | None = None,
        uow: UnitOfWork | None = None,
    ) -> InventoryBalance:
        """Release ``quantity`` of the reservation.  No ledger effect."""
        key = StockKey(product_id, warehouse_id, location_id)
        with self._operation("unreserve", key, quantity, actor_id, reference):
            qty = self._quantity("unreserve", quantity)
            with self._joined(uow) as active:
                active.lock(key)
                balances = BalanceStore(active.session)
                balance = self._load_active(balances, key)
                before = balance.to_dto()
                if qty > before.reserved_quantity:
                    raise InvalidStateError(
                        str(key),
                        f"cannot unreserve {qty}; only {before.reserved_quantity} reserved",
                    )
                balances.apply_quantities(
                    balance, actor_id, reserved=balance.reserved_quantity - qty,
                )
                after = balance.to_dto()
                self._audit(
                    active, AuditAction.UNRESERVED, actor_id, key, before, after,
                    note=reference.document_id if reference else None,
                )
                logger.info(
                    "stock_unreserved",
                    extra={
                        **key.as_log_fields(),
                        "quantity": str(qty),
                        "reserved_after": str(after.reserved_quantity),
                    },
                )
                return after

    def transfer(
        self,
        product_id: str,
        source_warehouse_id: str,
        source_location_id: str,
        destination_warehouse_id: str,
        destination_location_id: str,
        quantity: object,
        *,
        actor_id: UUID,
        reference: DocumentRef | None = None,
        notes: str | None = None,
        uow: UnitOfWork | None = None,
    ) -> TransferResult:
        """
        Move stock between locations at the source's consumed layer cost.

        Both legs (TRANSFER_OUT at the source, TRANSFER_IN at the
        destination) commit together; a failure in either leaves both
        locations untouched.
        """
        source = StockKey(product_id, source_warehouse_id, source_location_id)
        destination = StockKey(product_id, destination_warehouse_id, destination_location_id)
        with self._operation("transfer", source, quantity, actor_id, reference):
            ids = (
                product_id, source_warehouse_id, source_location_id,
                destination_warehouse_id, destination_location_id,
            )
            if not all(ids):
                raise OperationNotAllowedError(
                    "transfer", "product, source and destination ids are all required",
                )
            if source == destination:
                raise OperationNotAllowedError(
                    "transfer", f"source and destination are the same location ({source})",
                )
            qty = self._quantity("transfer", quantity)
            self._require_references(destination)

            note = notes or f"Transferred {qty} from {source} to {destination}"
            with self._joined(uow) as active:
                active.lock(source, destination)
                outbound = self._apply_outbound(
                    active, source, TransactionType.TRANSFER_OUT, qty, actor_id,
                    reference=reference, notes=note,
                )
                assert outbound.transaction is not None
                inbound = self._apply_inbound(
                    active, destination, TransactionType.TRANSFER_IN, qty,
                    outbound.transaction.unit_cost, actor_id,
                    reference=reference,
                    transaction_date=outbound.transaction.transaction_date,
                    notes=note,
                )
                logger.info(
                    "transfer_recorded",
                    extra={
                        "product_id": product_id,
                        "source": str(source),
                        "destination": str(destination),
                        "quantity": str(qty),
                        "unit_cost": str(outbound.transaction.unit_cost),
                    },
                )
                return TransferResult(outbound=outbound, inbound=inbound)

    def delete_balance(
        self,
        product_id: str,
        warehouse_id: str,
        location_id: str,
        *,
        actor_id: UUID,
        uow: UnitOfWork | None = None,
    ) -> InventoryBalance:
        """Soft-delete an empty balance (on-hand and reserved both zero)."""
        key = StockKey(product_id, warehouse_id, location_id)
        with self._operation("delete_balance", key, ZERO, actor_id):
            with self._joined(uow) as active:
                active.lock(key)
                balances = BalanceStore(active.session)
                balance = self._load_active(balances, key)
                before = balance.to_dto()
                if not before.is_empty:
                    raise OperationNotAllowedError(
                        "delete_balance",
                        f"{key} still holds on-hand {before.on_hand_quantity} "
                        f"and reserved {before.reserved_quantity}",
                    )
                balances.set_status(balance, BalanceStatus.DELETED, actor_id)
                after = balance.to_dto()
                self._audit(active, AuditAction.BALANCE_DELETED, actor_id, key, before, after)
                logger.info("balance_deleted", extra=key.as_log_fields())
                return after

    def update_balance_attributes(
        self,
        product_id: str,
        warehouse_id: str,
        location_id: str,
        *,
        actor_id: UUID,
        lot_number: str | None = _UNSET,
        serial_number: str | None = _UNSET,
        uow: UnitOfWork | None = None,
    ) -> InventoryBalance:
        """
        Change a balance's descriptive attributes.

        Only lot and serial numbers are editable; the key and all quantities
        change only through movements.
        """
        key = StockKey(product_id, warehouse_id, location_id)
        with self._operation("update_balance_attributes", key, ZERO, actor_id):
            changes = {
                name: value
                for name, value in (("lot_number", lot_number), ("serial_number", serial_number))
                if value is not _UNSET
            }
            with self._joined(uow) as active:
                active.lock(key)
                balances = BalanceStore(active.session)
                balance = self._load_active(balances, key)
                before = balance.to_dto()
                if not changes:
                    return before
                balances.set_attributes(balance, actor_id, **changes)
                after = balance.to_dto()
                self._audit(active, AuditAction.BALANCE_UPDATED, actor_id, key, before, after)
                logger.info(
                    "balance_attributes_updated",
                    extra={**key.as_log_fields(), "fields": sorted(changes)},
                )
                return after

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @contextmanager
    def _reader(self) -> Iterator[InventorySelector]:
        with self._session_factory() as session:
            yield InventorySelector(session)

    def get_balance(
        self, product_id: str, warehouse_id: str, location_id: str,
    ) -> InventoryBalance | None:
        """Active balance for the key, or None."""
        with self._reader() as selector:
            return selector.balance(StockKey(product_id, warehouse_id, location_id))

    def get_balance_by_id(self, balance_id: UUID) -> InventoryBalance:
        with self._reader() as selector:
            balance = selector.balance_by_id(balance_id)
        if balance is None:
            raise NotFoundError(BALANCE_ENTITY, str(balance_id))
        return balance

    def list_balances(
        self,
        product_id: str | None = None,
        warehouse_id: str | None = None,
        location_id: str | None = None,
        include_deleted: bool = False,
    ) -> list[InventoryBalance]:
        with self._reader() as selector:
            return selector.balances(
                product_id=product_id,
                warehouse_id=warehouse_id,
                location_id=location_id,
                include_deleted=include_deleted,
            )

    def cost_layers(
        self,
        product_id: str,
        warehouse_id: str,
        location_id: str,
        include_exhausted: bool = True,
    ) -> list[CostLayer]:
        with self._reader() as selector:
            return selector.cost_layers(
                StockKey(product_id, warehouse_id, location_id),
                include_exhausted=include_exhausted,
            )

    def transactions(self, query: LedgerQuery | None = None) -> list[InventoryTransaction]:
        with self._session_factory() as session:
            return TransactionLedger(session, self._clock).query(query or LedgerQuery())

    def get_transaction(self, transaction_id: UUID) -> InventoryTransaction:
        with self._reader() as selector:
            transaction = selector.transaction(transaction_id)
        if transaction is None:
            raise NotFoundError("InventoryTransaction", str(transaction_id))
        return transaction

    def default_location_for_warehouse(self, warehouse_id: str) -> str | None:
        """
        The warehouse's default location id.

        Prefers the active location named ``config.default_location_name``,
        then the first active location, else None.
        """
        locations = self._directory.locations_for_warehouse(warehouse_id)
        preferred = self._config.default_location_name
        if preferred is not None:
            for location in locations:
                if location.name == preferred:
                    return location.id
        if locations:
            return locations[0].id
        logger.warning("default_location_not_found", extra={"warehouse_id": warehouse_id})
        return None

    def verify_consistency(
        self, product_id: str, warehouse_id: str, location_id: str,
    ) -> ConsistencyReport:
        """Compare on-hand quantity with the sum of open cost-layer quantity."""
        key = StockKey(product_id, warehouse_id, location_id)
        with self._reader() as selector:
            report = selector.consistency(key)
        if not report.is_consistent:
            logger.error(
                "cost_layer_divergence_detected",
                extra={
                    **key.as_log_fields(),
                    "on_hand_quantity": str(report.on_hand_quantity),
                    "layered_quantity": str(report.layered_quantity),
                    "discrepancy": str(report.discrepancy),
                },
            )
        return report
