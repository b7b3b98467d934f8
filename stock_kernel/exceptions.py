"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the accounting engine (document processors, UI adapters, batch
jobs) must react to failures precisely: re-check stock and retry, surface a
message to the end user, or page someone because balance and cost-layer data
have diverged.  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        engine.record_issue("P1", "W1", "L1", Decimal("60"), actor_id=actor)
    except InsufficientStockError as e:
        notify_user(f"Only {e.available} left at {e.key}")
    except StockKernelError as e:
        api_response(code=e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- QuantityError
    |   +-- InvalidQuantityError
    |   +-- InvalidCostError
    |
    +-- NotFoundError
    |   +-- BalanceNotFoundError
    |   +-- InsufficientReferenceDataError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- InsufficientCostLayersError
    |
    +-- InvalidStateError
    |
    +-- OperationNotAllowedError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |   +-- LockTimeoutError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                         | When Raised
--------------|------------------------------|-----------------------------------------
Quantity      | INVALID_QUANTITY             | Non-positive / malformed quantity
              | INVALID_COST                 | Negative / missing / malformed unit cost
--------------|------------------------------|-----------------------------------------
Lookup        | NOT_FOUND                    | Balance / transaction id doesn't exist
              | BALANCE_NOT_FOUND            | No balance row for (product, wh, loc)
              | INSUFFICIENT_REFERENCE_DATA  | Unknown or inactive product/wh/location
--------------|------------------------------|-----------------------------------------
Stock         | INSUFFICIENT_STOCK           | Issue / reserve exceeds on-hand/available
              | INSUFFICIENT_COST_LAYERS     | Balance and cost layers have diverged
--------------|------------------------------|-----------------------------------------
State         | INVALID_STATE                | Unreserving more than is reserved
              | OPERATION_NOT_ALLOWED        | Deleting a non-empty balance, etc.
--------------|------------------------------|-----------------------------------------
Concurrency   | OPTIMISTIC_LOCK_CONFLICT     | Balance row changed under us
              | LOCK_TIMEOUT                 | Per-key lock not acquired in time
--------------|------------------------------|-----------------------------------------
Immutability  | IMMUTABILITY_VIOLATION       | Update/delete of ledger or audit rows
--------------|------------------------------|-----------------------------------------
Config        | CONFIGURATION_ERROR          | Invalid configuration value

===============================================================================
HANDLING PATTERNS
===============================================================================

1. VALIDATION ERRORS HAVE NO SIDE EFFECTS.  QuantityError, NotFoundError,
   InsufficientStockError, InvalidStateError and OperationNotAllowedError are
   raised before any row is written.  The caller may fix input and retry.

2. CONCURRENCY ERRORS ARE RETRYABLE.  The whole unit of work was rolled back.

3. INSUFFICIENT_COST_LAYERS IS A DATA FAULT.  The unit of work was rolled
   back, but retrying will not help; investigate with
   InventoryAccountingEngine.verify_consistency().
===============================================================================
"""

from decimal import Decimal


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Quantity / cost argument errors


class QuantityError(StockKernelError):
    """Base exception for malformed quantity or cost arguments."""

    code: str = "QUANTITY_ERROR"


class InvalidQuantityError(QuantityError):
    """Quantity argument is non-positive, negative, or not a finite number."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, operation: str, quantity: object, reason: str = "must be positive"):
        self.operation = operation
        self.quantity = str(quantity)
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity!s} for {operation}: {reason}")


class InvalidCostError(QuantityError):
    """Unit cost argument is negative, missing, or not a finite number."""

    code: str = "INVALID_COST"

    def __init__(self, operation: str, unit_cost: object, reason: str = "must be non-negative"):
        self.operation = operation
        self.unit_cost = str(unit_cost)
        self.reason = reason
        super().__init__(f"Invalid unit cost {unit_cost!s} for {operation}: {reason}")


# Lookup errors


class NotFoundError(StockKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class BalanceNotFoundError(NotFoundError):
    """No inventory balance exists for the (product, warehouse, location) key."""

    code: str = "BALANCE_NOT_FOUND"

    def __init__(self, key: str):
        self.key = key
        super().__init__("InventoryBalance", key)


class InsufficientReferenceDataError(NotFoundError):
    """Product, warehouse or location is unknown or inactive."""

    code: str = "INSUFFICIENT_REFERENCE_DATA"

    def __init__(self, reference_type: str, reference_id: str, reason: str = "unknown or inactive"):
        self.reference_type = reference_type
        self.reference_id = reference_id
        self.reason = reason
        super().__init__(reference_type, reference_id)
        self.args = (f"{reference_type} {reference_id!r} is {reason}",)


# Stock errors


class StockError(StockKernelError):
    """Base exception for stock-level failures."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Requested quantity exceeds the on-hand or available quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, key: str, requested: Decimal, available: Decimal, basis: str = "on_hand"):
        self.key = key
        self.requested = str(requested)
        self.available = str(available)
        self.basis = basis
        super().__init__(
            f"Insufficient stock at {key}: requested {requested}, "
            f"{basis} {available}"
        )


class InsufficientCostLayersError(StockError):
    """
    Open cost layers cannot cover the quantity being consumed.

    Balance and cost-layer data have diverged.  This is a structural
    invariant violation, never a normal out-of-stock condition.
    """

    code: str = "INSUFFICIENT_COST_LAYERS"

    def __init__(self, key: str, requested: Decimal, layered_quantity: Decimal):
        self.key = key
        self.requested = str(requested)
        self.layered_quantity = str(layered_quantity)
        super().__init__(
            f"Cost layers at {key} hold {layered_quantity}, "
            f"cannot consume {requested}"
        )


# State errors


class InvalidStateError(StockKernelError):
    """Operation is inconsistent with the current state of the balance."""

    code: str = "INVALID_STATE"

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"{message} ({key})")


class OperationNotAllowedError(StockKernelError):
    """Operation is forbidden for this balance or these arguments."""

    code: str = "OPERATION_NOT_ALLOWED"

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} not allowed: {message}")


# Concurrency errors


class ConcurrencyError(StockKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class LockTimeoutError(ConcurrencyError):
    """Per-key lock could not be acquired within the configured timeout."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, key: str, timeout_seconds: float):
        self.key = key
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Timed out after {timeout_seconds}s waiting for lock on {key}")


# Immutability errors


class ImmutabilityError(StockKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Ledger transactions and audit events are append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )


# Configuration errors


class ConfigurationError(StockKernelError):
    """Configuration value is missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid configuration for {field}: {message}")
