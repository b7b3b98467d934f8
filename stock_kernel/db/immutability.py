"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The transaction ledger is the history of every stock movement.  Correcting a
mistake means recording a compensating movement (an adjustment), never
editing or deleting the original row.  Cost layers are consumed, never
refilled: a layer's remaining quantity only goes down, and its original
quantity and unit cost are fixed at receipt time.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, ImmutabilityViolationError aborts the flush and the unit of
work rolls back.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                      | Rule
----------------------------|---------------------------------------------------
InventoryTransactionModel   | ALWAYS immutable; never deleted
InventoryAuditEvent         | ALWAYS immutable; never deleted
CostLayerModel              | original_quantity / unit_cost / key / receipt_date
                            | frozen; remaining_quantity never increases;
                            | never deleted (exhausted layers are retained)
InventoryBalanceModel       | key fields frozen; never physically deleted
                            | (soft delete via status only)

===============================================================================
USAGE
===============================================================================

Called automatically by init_engine_from_url():

    from stock_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    from stock_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

KEY_FIELDS = frozenset({"product_id", "warehouse_id", "location_id"})

COST_LAYER_FROZEN_FIELDS = KEY_FIELDS | frozenset({
    "original_quantity",
    "unit_cost",
    "receipt_date",
    "sequence",
    "source_transaction_id",
})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **fields):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **fields,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key for attr in insp.attrs
        if attr.key not in ("updated_at", "updated_by_id") and attr.history.has_changes()
    ]


def _check_transaction_immutability(mapper, connection, target):
    """Ledger rows are never updated."""
    _blocked(
        "InventoryTransaction", target.id, "UPDATE",
        "Ledger transactions are append-only",
        fields=_changed_fields(target),
    )


def _check_transaction_delete(mapper, connection, target):
    """Ledger rows are never deleted."""
    _blocked(
        "InventoryTransaction", target.id, "DELETE",
        "Ledger transactions cannot be deleted",
    )


def _check_audit_event_immutability(mapper, connection, target):
    _blocked(
        "InventoryAuditEvent", target.id, "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    _blocked(
        "InventoryAuditEvent", target.id, "DELETE",
        "Audit events cannot be deleted",
    )


def _check_cost_layer_immutability(mapper, connection, target):
    """
    Freeze a cost layer's identity and cost; allow only consumption.

    remaining_quantity may move down (consumption) but never up.  A layer is
    replenished by creating a new layer, not by editing an old one.
    """
    from sqlalchemy.orm.attributes import get_history

    for field in _changed_fields(target):
        if field in COST_LAYER_FROZEN_FIELDS:
            _blocked(
                "CostLayer", target.id, "UPDATE",
                f"Cannot modify field '{field}' on a cost layer",
                field=field,
            )

    history = get_history(target, "remaining_quantity")
    if history.deleted and history.added:
        old, new = history.deleted[0], history.added[0]
        if old is not None and new is not None and new > old:
            _blocked(
                "CostLayer", target.id, "UPDATE",
                f"remaining_quantity cannot increase ({old} -> {new})",
                field="remaining_quantity",
            )


def _check_cost_layer_delete(mapper, connection, target):
    _blocked(
        "CostLayer", target.id, "DELETE",
        "Cost layers are retained for audit, including exhausted ones",
    )


def _check_balance_key_immutability(mapper, connection, target):
    for field in _changed_fields(target):
        if field in KEY_FIELDS:
            _blocked(
                "InventoryBalance", target.id, "UPDATE",
                f"Cannot modify key field '{field}' on an inventory balance",
                field=field,
            )


def _check_balance_delete(mapper, connection, target):
    _blocked(
        "InventoryBalance", target.id, "DELETE",
        "Inventory balances are soft-deleted only",
    )


def _listeners():
    from stock_kernel.models.audit_event import InventoryAuditEvent
    from stock_kernel.models.balance import InventoryBalanceModel
    from stock_kernel.models.cost_layer import CostLayerModel
    from stock_kernel.models.transaction import InventoryTransactionModel

    return (
        (InventoryTransactionModel, "before_update", _check_transaction_immutability),
        (InventoryTransactionModel, "before_delete", _check_transaction_delete),
        (InventoryAuditEvent, "before_update", _check_audit_event_immutability),
        (InventoryAuditEvent, "before_delete", _check_audit_event_delete),
        (CostLayerModel, "before_update", _check_cost_layer_immutability),
        (CostLayerModel, "before_delete", _check_cost_layer_delete),
        (InventoryBalanceModel, "before_update", _check_balance_key_immutability),
        (InventoryBalanceModel, "before_delete", _check_balance_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; already-registered listeners are skipped.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
