"""
Every costing exception carries a stable machine-readable code.
"""

from decimal import Decimal

import pytest

from costing_kernel.exceptions import (
    ConcurrencyConflictError,
    ConfigurationError,
    CostingError,
    DataIntegrityError,
    ImmutabilityViolationError,
    InsufficientStockError,
    LayerNotFoundError,
    NotFoundError,
    ProductNotFoundError,
    SaleLineNotFoundError,
    ValidationError,
)


@pytest.mark.parametrize(
    "exc,code",
    [
        (ValidationError("quantity", 0, "must be positive"), "VALIDATION_ERROR"),
        (InsufficientStockError(1, Decimal("3"), Decimal("5")), "INSUFFICIENT_STOCK"),
        (DataIntegrityError("InventoryLayer", 1, "below zero"), "DATA_INTEGRITY_VIOLATION"),
        (ImmutabilityViolationError("ConsumptionRecord", 1, "write-once"), "IMMUTABILITY_VIOLATION"),
        (ConcurrencyConflictError("InventoryLayer", 1), "CONCURRENCY_CONFLICT"),
        (ProductNotFoundError(1), "PRODUCT_NOT_FOUND"),
        (LayerNotFoundError(1), "LAYER_NOT_FOUND"),
        (SaleLineNotFoundError(1), "SALE_LINE_NOT_FOUND"),
        (ConfigurationError("abc", "bad"), "CONFIGURATION_ERROR"),
    ],
)
def test_codes(exc, code):
    assert exc.code == code
    assert isinstance(exc, CostingError)


def test_hierarchy():
    assert issubclass(ImmutabilityViolationError, DataIntegrityError)
    assert issubclass(LayerNotFoundError, NotFoundError)


def test_insufficient_stock_message_is_fixed_point():
    exc = InsufficientStockError(7, Decimal("1E+1"), Decimal("12.50"))

    assert "requested 12.50, available 10" in str(exc)
    assert exc.available == Decimal("10")
