"""
costing_services.reporting -- Read-only façade for report views.

Responsibility:
    Adapt service results to the plain-dict contracts report views consume
    (camelCase keys).  Holds no logic beyond field mapping; every number
    comes from the valuation, profitability and analysis services.

Architecture position:
    Services -- outermost read adapter.  HTTP routing, JSON envelopes and
    number formatting belong to the caller.

Invariants enforced:
    - Values stay Decimal; dates are rendered as ISO-8601 strings.
    - Percentages and shares are passed through unrounded.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from costing_config.schema import CostingConfig
from costing_engines.aging import AgedLayer
from costing_engines.profitability import ProductProfitRow, ProfitTotals
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import DateRange, ProfitMetric
from costing_services.inventory_analysis import InventoryAnalysisService
from costing_services.profitability_service import (
    ProfitabilityAggregator,
    SaleLineProfitRow,
    SkippedRow,
)
from costing_services.report_cache import ReportCache
from costing_services.valuation_service import ValuationCalculator


def _totals(t: ProfitTotals) -> dict[str, Any]:
    return {
        "totalQty": t.qty,
        "totalRevenue": t.revenue,
        "totalCogs": t.cogs,
        "totalProfit": t.profit,
        "marginPct": t.margin_pct,
    }


def _skipped(rows: tuple[SkippedRow, ...]) -> list[dict[str, Any]]:
    return [
        {"saleLineId": s.sale_line_id, "productId": s.product_id, "reason": s.reason}
        for s in rows
    ]


def _layer(l: AgedLayer) -> dict[str, Any]:
    return {
        "layerId": l.layer_id,
        "entryDate": l.entry_date.isoformat(),
        "remainingQty": l.remaining_qty,
        "unitCost": l.unit_cost,
        "value": l.value,
        "ageDays": l.age_days,
    }


def _product_row(r: ProductProfitRow) -> dict[str, Any]:
    return {
        "productId": r.product_id,
        "name": r.name,
        "qty": r.qty,
        "revenue": r.revenue,
        "cogs": r.cogs,
        "profit": r.profit,
        "marginPct": r.margin_pct,
        "shareOfRevenue": r.share_of_revenue,
        "cumShare": r.cum_share,
        "bucket": r.bucket.value,
        "avgBuyPrice": r.avg_buy_price,
        "avgSellPrice": r.avg_sell_price,
        "estimated": r.estimated,
    }


def _sale_line_row(r: SaleLineProfitRow) -> dict[str, Any]:
    return {
        "saleLineId": r.sale_line_id,
        "saleId": r.sale_id,
        "date": r.sale_date.isoformat(),
        "productId": r.product_id,
        "name": r.name,
        "qty": r.qty,
        "revenue": r.revenue,
        "cogs": r.cogs,
        "profit": r.profit,
        "marginPct": r.margin_pct,
        "estimated": r.estimated,
    }


class CostingReports:
    """
    Dict-returning adapters over the read services.

    Contract:
        One instance per session.  Pass the application's shared
        ReportCache so repeated views are served from it.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: CostingConfig | None = None,
        cache: ReportCache | None = None,
    ):
        self._clock = clock or SystemClock()
        self._config = config or CostingConfig()
        self._valuation = ValuationCalculator(
            session, clock=self._clock, config=self._config, cache=cache
        )
        self._profitability = ProfitabilityAggregator(
            session, clock=self._clock, config=self._config, cache=cache
        )
        self._analysis = InventoryAnalysisService(session, self._clock, self._config)

    # =========================================================================
    # Inventory
    # =========================================================================

    def inventory_view(self, as_of_date: date | None = None) -> list[dict[str, Any]]:
        return [
            {
                "productId": p.product_id,
                "name": p.name,
                "onHandQty": p.on_hand_qty,
                "onHandValue": p.on_hand_value,
                "avgCost": p.avg_cost,
                "layers": [_layer(l) for l in p.layers],
            }
            for p in self._valuation.inventory_positions(as_of_date)
        ]

    def inventory_aging(
        self,
        product_id: int | None = None,
        as_of_date: date | None = None,
    ) -> dict[str, Any]:
        report = self._valuation.aging_buckets(product_id, as_of_date)
        return {
            "productId": product_id,
            "asOfDate": report.as_of_date.isoformat(),
            "buckets": [
                {"name": name, "value": value}
                for name, value in report.total_by_bucket().items()
            ],
            "totalValue": report.total_value,
        }

    def product_snapshot(self, product_id: int) -> dict[str, Any]:
        s = self._valuation.snapshot(product_id)
        return {
            "productId": s.product_id,
            "onHandQty": s.on_hand_qty,
            "onHandValue": s.on_hand_value,
            "avgCost": s.avg_cost,
            "asOfVersion": s.as_of_version,
        }

    # =========================================================================
    # Profitability
    # =========================================================================

    def profitability_view(
        self,
        date_range: DateRange | None = None,
        metric: ProfitMetric | None = None,
    ) -> dict[str, Any]:
        report = self._profitability.by_product(date_range, metric)
        return {
            "metric": report.metric.value,
            "rows": [_product_row(r) for r in report.rows],
            **_totals(report.totals),
            "skipped": _skipped(report.skipped),
        }

    def sales_profit_view(self, date_range: DateRange | None = None) -> dict[str, Any]:
        report = self._profitability.sales_profit(date_range)
        return {
            "rows": [_sale_line_row(r) for r in report.lines],
            **_totals(report.totals),
            "skipped": _skipped(report.skipped),
        }

    def sale_view(self, sale_id: str) -> dict[str, Any]:
        report = self._profitability.by_sale(sale_id)
        return {
            "saleId": sale_id,
            "lines": [_sale_line_row(r) for r in report.lines],
            **_totals(report.totals),
            "skipped": _skipped(report.skipped),
        }

    def product_margins_view(
        self,
        months_back: int = 6,
        product_id: int | None = None,
        as_of_date: date | None = None,
    ) -> dict[str, Any]:
        report = self._profitability.product_margins(months_back, product_id, as_of_date)
        return {
            "monthsBack": months_back,
            "rows": [
                {
                    "month": r.month,
                    "productId": r.product_id,
                    "name": r.name,
                    "qty": r.totals.qty,
                    "revenue": r.totals.revenue,
                    "cogs": r.totals.cogs,
                    "profit": r.totals.profit,
                    "marginPct": r.totals.margin_pct,
                    "estimated": r.totals.estimated,
                }
                for r in report.rows
            ],
            **_totals(report.totals),
            "skipped": _skipped(report.skipped),
        }

    def segment_view(self, date_range: DateRange | None = None) -> dict[str, Any]:
        report = self._profitability.by_segment(date_range)
        return {
            "rows": [
                {
                    "segment": r.segment,
                    "lineCount": r.line_count,
                    "qty": r.totals.qty,
                    "revenue": r.totals.revenue,
                    "cogs": r.totals.cogs,
                    "profit": r.totals.profit,
                    "marginPct": r.totals.margin_pct,
                }
                for r in report.rows
            ],
            **_totals(report.totals),
            "skipped": _skipped(report.skipped),
        }

    def summary_view(self, date_range: DateRange | None = None) -> dict[str, Any]:
        s = self._profitability.summary(date_range)
        return {**_totals(s.totals), "lineCount": s.line_count, "skipped": _skipped(s.skipped)}

    # =========================================================================
    # Analysis
    # =========================================================================

    def purchase_suggestions_view(self, as_of_date: date | None = None) -> list[dict[str, Any]]:
        return [
            {
                "productId": s.product_id,
                "name": s.name,
                "currentStock": s.on_hand_qty,
                "salesPerDay": s.sales_per_day,
                "daysOfStockLeft": s.days_of_stock_left,
                "suggestedPurchaseQuantity": s.suggested_qty,
                "urgency": s.urgency.value,
            }
            for s in self._analysis.purchase_suggestions(as_of_date)
        ]

    def inventory_velocity_view(self, as_of_date: date | None = None) -> dict[str, Any]:
        report = self._analysis.velocity(as_of_date)

        def items(group):
            return [
                {
                    "productId": i.product_id,
                    "name": i.name,
                    "salesPerDay": i.sales_per_day,
                    "onHandQty": i.on_hand_qty,
                    "classification": i.classification.value,
                }
                for i in group
            ]

        return {
            "hotItems": items(report.hot),
            "normalItems": items(report.normal),
            "staleItems": items(report.stale),
        }
