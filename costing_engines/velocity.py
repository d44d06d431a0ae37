"""
Module: costing_engines.velocity
Responsibility:
    Sales-velocity classification and reorder suggestions.  Turns
    per-product units sold over a lookback window plus on-hand quantity into
    hot/normal/stale tiers and purchase suggestions.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - sales_per_day = units_sold / lookback_days.
    - hot when sales_per_day >= hot threshold, stale when <= stale
      threshold, otherwise normal.  Hot is checked first.
    - A suggestion is produced only when sales_per_day > 0 and
      days_of_stock_left < coverage_days; its quantity is at least 1.

Failure modes:
    - ValidationError if lookback_days or coverage_days is not positive.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Sequence

from costing_engines.tracer import traced_engine
from costing_kernel.exceptions import ValidationError
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.velocity")

ONE_DP = Decimal("0.1")
TWO_DP = Decimal("0.01")


class VelocityClass(str, Enum):
    HOT = "hot"
    NORMAL = "normal"
    STALE = "stale"


class Urgency(str, Enum):
    URGENT = "urgent"
    SOON = "soon"
    NORMAL = "normal"


@dataclass(frozen=True, slots=True)
class ProductMovement:
    """Units sold in the lookback window and current on-hand quantity."""

    product_id: int
    name: str
    units_sold: Decimal
    on_hand_qty: Decimal


@dataclass(frozen=True, slots=True)
class VelocityItem:
    product_id: int
    name: str
    sales_per_day: Decimal
    on_hand_qty: Decimal
    classification: VelocityClass


@dataclass(frozen=True, slots=True)
class VelocityReport:
    """Hot items fastest first, stale items slowest first."""

    hot: tuple[VelocityItem, ...]
    normal: tuple[VelocityItem, ...]
    stale: tuple[VelocityItem, ...]


@dataclass(frozen=True, slots=True)
class PurchaseSuggestion:
    product_id: int
    name: str
    on_hand_qty: Decimal
    sales_per_day: Decimal
    days_of_stock_left: Decimal
    suggested_qty: int
    urgency: Urgency


def _require_positive(field: str, value: int) -> None:
    if value <= 0:
        raise ValidationError(field, value, "must be positive")


def sales_per_day(units_sold: Decimal, lookback_days: int) -> Decimal:
    _require_positive("lookback_days", lookback_days)
    return units_sold / Decimal(lookback_days)


@traced_engine(
    "velocity",
    "1.0",
    fingerprint_fields=("movements", "lookback_days", "hot_threshold", "stale_threshold"),
)
def classify_velocity(
    *,
    movements: Sequence[ProductMovement],
    lookback_days: int,
    hot_threshold: Decimal,
    stale_threshold: Decimal,
) -> VelocityReport:
    """
    Split products into hot, normal and stale by sales per day.

    Postconditions:
        - hot sorted by sales_per_day descending, stale ascending, normal
          by product id; ties by product id.
    """
    _require_positive("lookback_days", lookback_days)

    hot: list[VelocityItem] = []
    normal: list[VelocityItem] = []
    stale: list[VelocityItem] = []
    for m in movements:
        rate = sales_per_day(m.units_sold, lookback_days)
        if rate >= hot_threshold:
            cls, bucket = VelocityClass.HOT, hot
        elif rate <= stale_threshold:
            cls, bucket = VelocityClass.STALE, stale
        else:
            cls, bucket = VelocityClass.NORMAL, normal
        bucket.append(
            VelocityItem(
                product_id=m.product_id,
                name=m.name,
                sales_per_day=rate,
                on_hand_qty=m.on_hand_qty,
                classification=cls,
            )
        )

    hot.sort(key=lambda i: (-i.sales_per_day, i.product_id))
    stale.sort(key=lambda i: (i.sales_per_day, i.product_id))
    normal.sort(key=lambda i: i.product_id)

    logger.info("velocity_classified", extra={
        "lookback_days": lookback_days,
        "hot_count": len(hot),
        "normal_count": len(normal),
        "stale_count": len(stale),
    })

    return VelocityReport(hot=tuple(hot), normal=tuple(normal), stale=tuple(stale))


def _urgency(days_left: Decimal, urgent_days: int, soon_days: int) -> Urgency:
    if days_left <= urgent_days:
        return Urgency.URGENT
    if days_left <= soon_days:
        return Urgency.SOON
    return Urgency.NORMAL


@traced_engine(
    "purchase_suggestions",
    "1.0",
    fingerprint_fields=("movements", "lookback_days", "coverage_days"),
)
def suggest_purchases(
    *,
    movements: Sequence[ProductMovement],
    lookback_days: int,
    coverage_days: int,
    urgent_days: int = 7,
    soon_days: int = 14,
) -> tuple[PurchaseSuggestion, ...]:
    """
    Suggest reorder quantities for products that will run out within
    ``coverage_days`` at their recent sales rate.

    suggested_qty = max(1, ceil(sales_per_day * coverage_days - on_hand)).

    Postconditions:
        - Sorted by days_of_stock_left ascending, then product id.
    """
    _require_positive("lookback_days", lookback_days)
    _require_positive("coverage_days", coverage_days)

    suggestions: list[PurchaseSuggestion] = []
    for m in movements:
        rate = sales_per_day(m.units_sold, lookback_days)
        if rate <= 0:
            continue
        on_hand = max(m.on_hand_qty, Decimal("0"))
        days_left = on_hand / rate
        if days_left >= coverage_days:
            continue

        shortfall = (rate * coverage_days - on_hand).to_integral_value(
            rounding=ROUND_CEILING
        )
        suggestions.append(
            PurchaseSuggestion(
                product_id=m.product_id,
                name=m.name,
                on_hand_qty=on_hand,
                sales_per_day=rate.quantize(TWO_DP, rounding=ROUND_HALF_UP),
                days_of_stock_left=days_left.quantize(ONE_DP, rounding=ROUND_HALF_UP),
                suggested_qty=max(1, int(shortfall)),
                urgency=_urgency(days_left, urgent_days, soon_days),
            )
        )

    suggestions.sort(key=lambda s: (s.days_of_stock_left, s.product_id))

    logger.info("purchase_suggestions_computed", extra={
        "candidate_count": len(movements),
        "suggestion_count": len(suggestions),
        "coverage_days": coverage_days,
    })

    return tuple(suggestions)
