"""
Typed Exception Hierarchy for the Costing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the costing engine sit at a transaction boundary (a sale or a
purchase) and must decide whether to retry, abort, or surface a warning.
That decision is made by exception TYPE, never by parsing messages:

    try:
        engine.consume(product_id, qty, sale_line_id)
    except InsufficientStockError as e:
        block_sale(available=e.available, requested=e.requested)
    except ConcurrencyConflictError:
        retry_whole_consume()

Every exception has:
  1. A class-level ``code`` (machine-readable, API-safe)
  2. Structured attributes (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CostingError (base)
    |
    +-- ValidationError
    +-- InsufficientStockError
    +-- DataIntegrityError
    |   +-- ImmutabilityViolationError
    +-- ConcurrencyConflictError
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- LayerNotFoundError
    |   +-- SaleLineNotFoundError
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                        | When Raised
----------------------------|---------------------------------------------------
VALIDATION_ERROR            | Non-positive quantity, negative cost, bad input
INSUFFICIENT_STOCK          | Consumption exceeds open layer quantity (strict)
DATA_INTEGRITY_VIOLATION    | Decrement below zero, double-costed sale line
IMMUTABILITY_VIOLATION      | Update/delete of a write-once ledger row
CONCURRENCY_CONFLICT        | Optimistic version check failed on a layer
PRODUCT_NOT_FOUND           | Unknown product id
LAYER_NOT_FOUND             | Unknown layer id
SALE_LINE_NOT_FOUND         | Unknown sale line id
CONFIGURATION_ERROR         | Malformed or inconsistent costing configuration

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ValidationError is raised before any mutation; fix the input and resubmit.

2. InsufficientStockError is fatal to the sale under the strict policy.  Under
   the degrade policy it is not raised; the shortfall is carried in the
   consumption result instead.

3. DataIntegrityError is always fatal.  The engine fails closed and never
   clamps a value, because clamping would silently corrupt the audit trail.

4. ConcurrencyConflictError means another writer changed the same layer first.
   Retry the WHOLE consume call against fresh state (see
   costing_services.retry.retry_on_conflict).
"""

from decimal import Decimal


class CostingError(Exception):
    """
    Base exception for all costing engine errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "COSTING_ERROR"


class ValidationError(CostingError):
    """Malformed input rejected before any mutation."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class InsufficientStockError(CostingError):
    """
    Requested consumption exceeds total open layer quantity.

    Fatal to the enclosing sale transaction under the strict shortage policy.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: int, available: Decimal, requested: Decimal):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {format(requested, 'f')}, available {format(available, 'f')}"
        )


class DataIntegrityError(CostingError):
    """An invariant of the layer ledger would be violated."""

    code: str = "DATA_INTEGRITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: object, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Data integrity violation on {entity_type} {entity_id}: {reason}"
        )


class ImmutabilityViolationError(DataIntegrityError):
    """
    Attempted to modify or delete a write-once ledger row.

    Inventory layers may only have remaining_qty decreased; consumption
    records may never change.
    """

    code: str = "IMMUTABILITY_VIOLATION"


class ConcurrencyConflictError(CostingError):
    """Optimistic concurrency check failed; another writer got there first."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: object):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrency conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class NotFoundError(CostingError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    """Product with given ID does not exist."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: object):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class LayerNotFoundError(NotFoundError):
    """Inventory layer with given ID does not exist."""

    code: str = "LAYER_NOT_FOUND"

    def __init__(self, layer_id: object):
        self.layer_id = layer_id
        super().__init__(f"Inventory layer not found: {layer_id}")


class SaleLineNotFoundError(NotFoundError):
    """Sale line with given ID does not exist."""

    code: str = "SALE_LINE_NOT_FOUND"

    def __init__(self, sale_line_id: object):
        self.sale_line_id = sale_line_id
        super().__init__(f"Sale line not found: {sale_line_id}")


class ConfigurationError(CostingError):
    """Costing configuration is malformed or inconsistent."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration '{key}': {reason}")
