"""
Module: costing_engines.profitability
Responsibility:
    Pure profit arithmetic and ABC (Pareto) classification.  Given revenue
    and COGS totals this module derives profit, margin, average prices,
    revenue shares, cumulative shares and the A/B/C tier.  It never reads
    the database; the ProfitabilityAggregator service feeds it totals.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Decimal-only arithmetic.
    - margin_pct = profit / revenue * 100 when revenue > 0, else 0.
    - Ranking is total: descending by metric, ties broken by product id.
    - cum_share is computed from the running metric sum (not by adding
      rounded shares), so the last contributing row is exactly 1.
    - A while cum_share <= a_threshold, B while <= b_threshold, else C.
      Rows whose metric is <= 0 contribute nothing and are tagged C.

Failure modes:
    - ValidationError on thresholds outside 0 < a < b <= 1.

Audit relevance:
    Report totals are sums of the same per-product figures the rows show,
    so a report always reconciles with its own rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from costing_engines.tracer import traced_engine
from costing_kernel.domain.dtos import ZERO, AbcClass, ProfitMetric
from costing_kernel.exceptions import ValidationError
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.profitability")

HUNDRED = Decimal("100")


def margin_pct(profit: Decimal, revenue: Decimal) -> Decimal:
    """Profit as a percentage of revenue; 0 when there is no revenue."""
    if revenue > 0:
        return profit / revenue * HUNDRED
    return ZERO


def safe_div(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == 0:
        return ZERO
    return numerator / denominator


@dataclass(frozen=True, slots=True)
class LineProfit:
    """Profit figures for one sale line."""

    revenue: Decimal
    cogs: Decimal

    @property
    def profit(self) -> Decimal:
        return self.revenue - self.cogs

    @property
    def margin_pct(self) -> Decimal:
        return margin_pct(self.profit, self.revenue)


@dataclass(frozen=True, slots=True)
class ProfitTotals:
    """
    Accumulated quantity, revenue and COGS for one grouping key.

    ``estimated`` is true if any contributing line was costed (in part)
    at a fallback price rather than from real layers.
    """

    qty: Decimal = ZERO
    revenue: Decimal = ZERO
    cogs: Decimal = ZERO
    estimated: bool = False

    def add(self, qty: Decimal, line: LineProfit, estimated: bool = False) -> ProfitTotals:
        return ProfitTotals(
            qty=self.qty + qty,
            revenue=self.revenue + line.revenue,
            cogs=self.cogs + line.cogs,
            estimated=self.estimated or estimated,
        )

    @property
    def profit(self) -> Decimal:
        return self.revenue - self.cogs

    @property
    def margin_pct(self) -> Decimal:
        return margin_pct(self.profit, self.revenue)

    @property
    def avg_buy_price(self) -> Decimal:
        return safe_div(self.cogs, self.qty)

    @property
    def avg_sell_price(self) -> Decimal:
        return safe_div(self.revenue, self.qty)


@dataclass(frozen=True, slots=True)
class ProductTotals:
    """Per-product input to ABC ranking."""

    product_id: int
    name: str
    totals: ProfitTotals


@dataclass(frozen=True, slots=True)
class ProductProfitRow:
    """One ranked, classified row of a per-product profitability report."""

    product_id: int
    name: str
    qty: Decimal
    revenue: Decimal
    cogs: Decimal
    profit: Decimal
    margin_pct: Decimal
    share_of_revenue: Decimal
    cum_share: Decimal
    bucket: AbcClass
    avg_buy_price: Decimal
    avg_sell_price: Decimal
    estimated: bool = False


def validate_thresholds(a_threshold: Decimal, b_threshold: Decimal) -> None:
    if not (0 < a_threshold < b_threshold <= 1):
        raise ValidationError(
            "abc_thresholds",
            (a_threshold, b_threshold),
            "must satisfy 0 < a_threshold < b_threshold <= 1",
        )


def _metric_value(totals: ProfitTotals, metric: ProfitMetric) -> Decimal:
    if metric is ProfitMetric.PROFIT:
        return totals.profit
    return totals.revenue


def _tier(cum_share: Decimal, a_threshold: Decimal, b_threshold: Decimal) -> AbcClass:
    if cum_share <= a_threshold:
        return AbcClass.A
    if cum_share <= b_threshold:
        return AbcClass.B
    return AbcClass.C


@traced_engine(
    "abc_classification",
    "1.0",
    fingerprint_fields=("products", "metric", "a_threshold", "b_threshold"),
)
def rank_and_classify(
    *,
    products: Sequence[ProductTotals],
    metric: ProfitMetric = ProfitMetric.REVENUE,
    a_threshold: Decimal = Decimal("0.80"),
    b_threshold: Decimal = Decimal("0.95"),
) -> tuple[ProductProfitRow, ...]:
    """
    Rank products by ``metric`` and tag each with its ABC tier.

    Preconditions:
        0 < a_threshold < b_threshold <= 1.

    Postconditions:
        - Rows sorted descending by metric, ascending product id on ties.
        - share_of_revenue = revenue / total revenue (0 when total <= 0).
        - cum_share is the running share of the positive metric total.

    Raises:
        ValidationError: On inconsistent thresholds.
    """
    validate_thresholds(a_threshold, b_threshold)

    ordered = sorted(
        products,
        key=lambda p: (-_metric_value(p.totals, metric), p.product_id),
    )
    total_revenue = sum((p.totals.revenue for p in ordered), ZERO)
    metric_total = sum(
        (max(_metric_value(p.totals, metric), ZERO) for p in ordered),
        ZERO,
    )

    rows: list[ProductProfitRow] = []
    running = ZERO
    for p in ordered:
        t = p.totals
        value = _metric_value(t, metric)
        if metric_total > 0 and value > 0:
            running += value
            cum_share = running / metric_total
            bucket = _tier(cum_share, a_threshold, b_threshold)
        else:
            cum_share = running / metric_total if metric_total > 0 else ZERO
            bucket = AbcClass.C

        rows.append(
            ProductProfitRow(
                product_id=p.product_id,
                name=p.name,
                qty=t.qty,
                revenue=t.revenue,
                cogs=t.cogs,
                profit=t.profit,
                margin_pct=t.margin_pct,
                share_of_revenue=(
                    t.revenue / total_revenue if total_revenue > 0 else ZERO
                ),
                cum_share=cum_share,
                bucket=bucket,
                avg_buy_price=t.avg_buy_price,
                avg_sell_price=t.avg_sell_price,
                estimated=t.estimated,
            )
        )

    logger.info("abc_classification_completed", extra={
        "metric": metric.value,
        "product_count": len(rows),
        "a_count": sum(1 for r in rows if r.bucket is AbcClass.A),
        "b_count": sum(1 for r in rows if r.bucket is AbcClass.B),
        "c_count": sum(1 for r in rows if r.bucket is AbcClass.C),
    })

    return tuple(rows)
