"""
costing_kernel.domain.dtos -- Immutable value objects for the layer ledger.

Responsibility:
    Frozen dataclasses that carry ledger state across the service boundary.
    Services convert ORM rows into these before returning them, so callers
    (report views in particular) never share mutable ORM objects.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - All value objects are frozen.
    - Quantities and costs are Decimal; floats are never accepted.
    - DateRange rejects an end date before its start date.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from costing_kernel.exceptions import ValidationError

ZERO = Decimal("0")


class ShortagePolicy(str, Enum):
    """What consume() does when open layers cannot cover the request."""

    STRICT = "strict"    # abort, mutate nothing, raise InsufficientStockError
    DEGRADE = "degrade"  # estimate the shortfall at the product fallback cost


class ProfitMetric(str, Enum):
    """Metric used to rank products for ABC classification."""

    REVENUE = "revenue"
    PROFIT = "profit"


class AbcClass(str, Enum):
    """Pareto tier of a product."""

    A = "A"
    B = "B"
    C = "C"


class LayerState(str, Enum):
    """Monotonic lifecycle of an inventory layer."""

    OPEN = "open"
    PARTIALLY_CONSUMED = "partially_consumed"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True, slots=True)
class Product:
    """Product master data as seen by the costing engine."""

    id: int
    sku: str
    name: str
    fallback_unit_cost: Decimal | None
    layer_version: int


@dataclass(frozen=True, slots=True)
class InventoryLayer:
    """
    A cost layer: a batch received on ``entry_date`` at ``unit_cost``.

    FIFO precedence is ``(entry_date, id)``; the id breaks same-date ties in
    insertion order.
    """

    id: int
    product_id: int
    entry_date: date
    original_qty: Decimal
    remaining_qty: Decimal
    unit_cost: Decimal
    source_ref: str | None = None

    @property
    def fifo_key(self) -> tuple[date, int]:
        return (self.entry_date, self.id)

    @property
    def value(self) -> Decimal:
        """Current value of the unconsumed quantity."""
        return self.remaining_qty * self.unit_cost

    @property
    def consumed_qty(self) -> Decimal:
        return self.original_qty - self.remaining_qty

    @property
    def is_open(self) -> bool:
        return self.remaining_qty > 0

    @property
    def state(self) -> LayerState:
        if self.remaining_qty == 0:
            return LayerState.EXHAUSTED
        if self.remaining_qty < self.original_qty:
            return LayerState.PARTIALLY_CONSUMED
        return LayerState.OPEN


@dataclass(frozen=True, slots=True)
class ConsumptionRecord:
    """Write-once record of quantity taken from one layer for one sale line."""

    id: int
    sale_line_id: int
    layer_id: int | None
    product_id: int
    quantity_consumed: Decimal
    unit_cost_at_consumption: Decimal
    consumed_at: datetime
    estimated: bool = False

    @property
    def cost(self) -> Decimal:
        return self.quantity_consumed * self.unit_cost_at_consumption


@dataclass(frozen=True, slots=True)
class ConsumptionResult:
    """
    Outcome of one consume() call.

    ``shortfall_qty`` is non-zero only under the degrade policy, in which
    case the last record is flagged ``estimated``.
    """

    product_id: int
    sale_line_id: int
    requested_qty: Decimal
    records: tuple[ConsumptionRecord, ...]
    total_cost: Decimal
    shortfall_qty: Decimal = ZERO

    @property
    def is_estimated(self) -> bool:
        return self.shortfall_qty > 0

    @property
    def layer_ids(self) -> tuple[int, ...]:
        return tuple(r.layer_id for r in self.records if r.layer_id is not None)

    @property
    def average_unit_cost(self) -> Decimal:
        if self.requested_qty == 0:
            return ZERO
        return self.total_cost / self.requested_qty


@dataclass(frozen=True, slots=True)
class SaleLine:
    """A finalized sale line; immutable input to the profitability side."""

    id: int
    sale_id: str
    product_id: int
    quantity_sold: Decimal
    unit_price_sold: Decimal
    discount_per_unit: Decimal
    sale_date: date
    customer_segment: str | None = None

    @property
    def revenue(self) -> Decimal:
        return (
            self.quantity_sold * self.unit_price_sold
            - self.discount_per_unit * self.quantity_sold
        )


@dataclass(frozen=True, slots=True)
class ProductCostSnapshot:
    """On-hand position derived from open layers at ``as_of_version``."""

    product_id: int
    on_hand_qty: Decimal
    on_hand_value: Decimal
    avg_cost: Decimal
    as_of_version: int


@dataclass(frozen=True, slots=True)
class DateRange:
    """Inclusive calendar date range."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValidationError(
                "date_range",
                (self.start.isoformat(), self.end.isoformat()),
                "end date is before start date",
            )

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    @property
    def days(self) -> int:
        """Number of calendar days covered, both ends included."""
        return (self.end - self.start).days + 1
