"""
Module: costing_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for
    costing_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import costing_kernel/domain, exceptions and logging.
    MUST NOT import costing_services.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      Dates are passed in by the calling service.
    - Decimal-only arithmetic for quantities and costs.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``costing_engines.tracer``), emitting COSTING_ENGINE_TRACE records.
"""

from costing_engines.aging import (
    INVENTORY_BUCKETS,
    AgeBucket,
    AgedLayer,
    AgingCalculator,
    AgingReport,
    validate_buckets,
)
from costing_engines.fifo import FifoAllocation, LayerSlice, allocate_fifo, fifo_order
from costing_engines.profitability import (
    LineProfit,
    ProductProfitRow,
    ProductTotals,
    ProfitTotals,
    margin_pct,
    rank_and_classify,
)
from costing_engines.tracer import traced_engine
from costing_engines.velocity import (
    ProductMovement,
    PurchaseSuggestion,
    Urgency,
    VelocityClass,
    VelocityItem,
    VelocityReport,
    classify_velocity,
    suggest_purchases,
)

__all__ = [
    "INVENTORY_BUCKETS",
    "AgeBucket",
    "AgedLayer",
    "AgingCalculator",
    "AgingReport",
    "validate_buckets",
    "FifoAllocation",
    "LayerSlice",
    "allocate_fifo",
    "fifo_order",
    "LineProfit",
    "ProductProfitRow",
    "ProductTotals",
    "ProfitTotals",
    "margin_pct",
    "rank_and_classify",
    "traced_engine",
    "ProductMovement",
    "PurchaseSuggestion",
    "Urgency",
    "VelocityClass",
    "VelocityItem",
    "VelocityReport",
    "classify_velocity",
    "suggest_purchases",
]
