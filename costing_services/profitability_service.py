"""
costing_services.profitability_service -- COGS, profit and margin rollups.

Responsibility:
    Join consumption records with sale-line revenue and roll the result up
    by product (with ABC classification), by month, by sale, by customer
    segment, and per sale line.

Architecture position:
    Services -- read-only orchestration over kernel models +
    costing_engines.profitability.  Never writes and never locks.

Invariants enforced:
    - revenue = qty * unit_price - discount_per_unit * qty.
    - cogs = Σ quantity_consumed * unit_cost_at_consumption over the
      line's consumption records.
    - Every report's totals equal the sum of its rows.
    - A line whose records do not add up to its quantity sold is never
      reported with a partial COGS.

Failure modes:
    - Row-level problems never abort a report.  The line is left out,
      listed in the report's ``skipped`` tuple with a reason, and a warning
      is logged.  Reasons: ``product_missing`` (no product master),
      ``not_costed`` (no consumption records), ``quantity_mismatch``
      (records do not cover the quantity sold).
    - SaleLineNotFoundError from ``sale_line_profit`` for an unknown id.

Audit relevance:
    Rows costed partly at a fallback price carry ``estimated=True`` so an
    estimated margin is never mistaken for a real one.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_config.schema import CostingConfig
from costing_engines.profitability import (
    LineProfit,
    ProductProfitRow,
    ProductTotals,
    ProfitTotals,
    rank_and_classify,
)
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import ZERO, DateRange, ProfitMetric, SaleLine
from costing_kernel.exceptions import SaleLineNotFoundError
from costing_kernel.logging_config import get_logger
from costing_kernel.models.consumption_record import ConsumptionRecordModel
from costing_kernel.models.product import ProductModel
from costing_kernel.models.sale_line import SaleLineModel
from costing_services.report_cache import ReportCache

logger = get_logger("services.profitability")

UNASSIGNED_SEGMENT = "unassigned"


# =============================================================================
# Report types
# =============================================================================


@dataclass(frozen=True, slots=True)
class SkippedRow:
    """A sale line left out of a report, and why."""

    sale_line_id: int
    product_id: int
    reason: str


@dataclass(frozen=True, slots=True)
class CostedLine:
    """A sale line joined with its COGS."""

    line: SaleLine
    name: str
    profit: LineProfit
    estimated: bool


@dataclass(frozen=True, slots=True)
class ProfitabilityReport:
    """Per-product rows ranked by ``metric`` with ABC tiers."""

    date_range: DateRange | None
    metric: ProfitMetric
    rows: tuple[ProductProfitRow, ...]
    totals: ProfitTotals
    skipped: tuple[SkippedRow, ...]

    @property
    def total_revenue(self) -> Decimal:
        return self.totals.revenue


@dataclass(frozen=True, slots=True)
class MonthlyProfitRow:
    month: str  # "YYYY-MM"
    product_id: int
    name: str
    totals: ProfitTotals


@dataclass(frozen=True, slots=True)
class MonthlyProfitReport:
    rows: tuple[MonthlyProfitRow, ...]
    totals: ProfitTotals
    skipped: tuple[SkippedRow, ...]


@dataclass(frozen=True, slots=True)
class SaleLineProfitRow:
    sale_line_id: int
    sale_id: str
    sale_date: date
    product_id: int
    name: str
    qty: Decimal
    revenue: Decimal
    cogs: Decimal
    profit: Decimal
    margin_pct: Decimal
    estimated: bool


@dataclass(frozen=True, slots=True)
class SaleProfitReport:
    """Lines of one sale (or of a date range) with their totals."""

    lines: tuple[SaleLineProfitRow, ...]
    totals: ProfitTotals
    skipped: tuple[SkippedRow, ...]


@dataclass(frozen=True, slots=True)
class SegmentProfitRow:
    segment: str
    line_count: int
    totals: ProfitTotals


@dataclass(frozen=True, slots=True)
class SegmentProfitReport:
    rows: tuple[SegmentProfitRow, ...]
    totals: ProfitTotals
    skipped: tuple[SkippedRow, ...]


@dataclass(frozen=True, slots=True)
class ProfitSummary:
    totals: ProfitTotals
    line_count: int
    skipped: tuple[SkippedRow, ...]


def _month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def months_back_start(as_of_date: date, months_back: int) -> date:
    """First day of the month ``months_back - 1`` months before as_of_date."""
    index = as_of_date.year * 12 + (as_of_date.month - 1) - (months_back - 1)
    return date(index // 12, index % 12 + 1, 1)


# =============================================================================
# Aggregator
# =============================================================================


class ProfitabilityAggregator:
    """
    Read-side profitability over consumption records and sale lines.

    Contract:
        Receives Session via constructor injection; optional shared
        ReportCache.  Results are frozen and safe to share.

    Guarantees:
        - Rows are ordered deterministically (see each method).
        - Cached results are dropped when a layer append or consumption
          touching a product they cover commits.
        - A session with uncommitted ledger writes bypasses the cache.

    Non-goals:
        - Does not cost uncosted lines; they are skipped.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: CostingConfig | None = None,
        cache: ReportCache | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or CostingConfig()
        self._cache = cache if self._config.report_cache.enabled else None

    # =========================================================================
    # Single line
    # =========================================================================

    def get_sale_line(self, sale_line_id: int) -> SaleLine:
        model = self._session.get(SaleLineModel, sale_line_id)
        if model is None:
            raise SaleLineNotFoundError(sale_line_id)
        return self._line_to_domain(model)

    def sale_line_profit(self, sale_line: SaleLine | int) -> LineProfit:
        """
        Revenue, COGS, profit and margin for one sale line.

        An uncosted line reports zero COGS here; aggregate reports skip it.
        """
        if isinstance(sale_line, int):
            sale_line = self.get_sale_line(sale_line)
        stmt = select(ConsumptionRecordModel).where(
            ConsumptionRecordModel.sale_line_id == sale_line.id
        )
        cogs = sum(
            (r.line_cost for r in self._session.execute(stmt).scalars()),
            ZERO,
        )
        return LineProfit(revenue=sale_line.revenue, cogs=cogs)

    # =========================================================================
    # Rollups
    # =========================================================================

    def by_product(
        self,
        date_range: DateRange | None = None,
        metric: ProfitMetric | None = None,
    ) -> ProfitabilityReport:
        """
        Per-product rows sorted descending by ``metric`` (ties by product
        id), each tagged A/B/C by cumulative share.
        """
        metric = metric or self._config.abc.metric
        key = ReportCache.report_key(None, date_range, metric)
        cached, token = self._cached(key)
        if cached is not None:
            return cached

        t0 = time.monotonic()
        costed, skipped = self._costed_lines(date_range=date_range)

        per_product: dict[int, ProfitTotals] = defaultdict(ProfitTotals)
        names: dict[int, str] = {}
        for c in costed:
            pid = c.line.product_id
            per_product[pid] = per_product[pid].add(c.line.quantity_sold, c.profit, c.estimated)
            names[pid] = c.name

        rows = rank_and_classify(
            products=[
                ProductTotals(product_id=pid, name=names[pid], totals=t)
                for pid, t in per_product.items()
            ],
            metric=metric,
            a_threshold=self._config.abc.a_threshold,
            b_threshold=self._config.abc.b_threshold,
        )
        report = ProfitabilityReport(
            date_range=date_range,
            metric=metric,
            rows=rows,
            totals=self._sum(costed),
            skipped=skipped,
        )

        logger.info("profitability_by_product_computed", extra={
            "metric": metric.value,
            "row_count": len(rows),
            "skipped_count": len(skipped),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return self._store(key, report, token)

    def by_month(
        self,
        product_id: int | None = None,
        date_range: DateRange | None = None,
    ) -> MonthlyProfitReport:
        """Rows per ``(month, product)`` ordered by month then product id."""
        key = ReportCache.report_key(product_id, date_range, "month")
        cached, token = self._cached(key)
        if cached is not None:
            return cached

        costed, skipped = self._costed_lines(date_range=date_range, product_id=product_id)

        buckets: dict[tuple[str, int], ProfitTotals] = defaultdict(ProfitTotals)
        names: dict[int, str] = {}
        for c in costed:
            k = (_month_key(c.line.sale_date), c.line.product_id)
            buckets[k] = buckets[k].add(c.line.quantity_sold, c.profit, c.estimated)
            names[c.line.product_id] = c.name

        rows = tuple(
            MonthlyProfitRow(month=month, product_id=pid, name=names[pid], totals=t)
            for (month, pid), t in sorted(buckets.items())
        )
        report = MonthlyProfitReport(rows=rows, totals=self._sum(costed), skipped=skipped)
        return self._store(key, report, token)

    def product_margins(
        self,
        months_back: int = 6,
        product_id: int | None = None,
        as_of_date: date | None = None,
    ) -> MonthlyProfitReport:
        """``by_month`` over the last ``months_back`` calendar months."""
        as_of_date = as_of_date or self._clock.today()
        if months_back < 1:
            months_back = 1
        window = DateRange(months_back_start(as_of_date, months_back), as_of_date)
        return self.by_month(product_id=product_id, date_range=window)

    def by_sale(self, sale_id: str) -> SaleProfitReport:
        """All lines of one sale, in line id order, with totals."""
        costed, skipped = self._costed_lines(sale_id=sale_id)
        return SaleProfitReport(
            lines=tuple(self._line_row(c) for c in costed),
            totals=self._sum(costed),
            skipped=skipped,
        )

    def by_segment(self, date_range: DateRange | None = None) -> SegmentProfitReport:
        """Rollup by customer segment; lines without one go to "unassigned"."""
        key = ReportCache.report_key(None, date_range, "segment")
        cached, token = self._cached(key)
        if cached is not None:
            return cached

        costed, skipped = self._costed_lines(date_range=date_range)
        totals: dict[str, ProfitTotals] = defaultdict(ProfitTotals)
        counts: dict[str, int] = defaultdict(int)
        for c in costed:
            seg = c.line.customer_segment or UNASSIGNED_SEGMENT
            totals[seg] = totals[seg].add(c.line.quantity_sold, c.profit, c.estimated)
            counts[seg] += 1

        rows = tuple(
            SegmentProfitRow(segment=seg, line_count=counts[seg], totals=t)
            for seg, t in sorted(totals.items(), key=lambda kv: (-kv[1].revenue, kv[0]))
        )
        report = SegmentProfitReport(rows=rows, totals=self._sum(costed), skipped=skipped)
        return self._store(key, report, token)

    def sales_profit(self, date_range: DateRange | None = None) -> SaleProfitReport:
        """One row per costed sale line, by sale date then line id."""
        key = ReportCache.report_key(None, date_range, "sales")
        cached, token = self._cached(key)
        if cached is not None:
            return cached

        costed, skipped = self._costed_lines(date_range=date_range)
        ordered = sorted(costed, key=lambda c: (c.line.sale_date, c.line.id))
        report = SaleProfitReport(
            lines=tuple(self._line_row(c) for c in ordered),
            totals=self._sum(costed),
            skipped=skipped,
        )
        return self._store(key, report, token)

    def summary(self, date_range: DateRange | None = None) -> ProfitSummary:
        key = ReportCache.report_key(None, date_range, "summary")
        cached, token = self._cached(key)
        if cached is not None:
            return cached

        costed, skipped = self._costed_lines(date_range=date_range)
        report = ProfitSummary(
            totals=self._sum(costed),
            line_count=len(costed),
            skipped=skipped,
        )
        return self._store(key, report, token)

    def units_sold_by_product(self, date_range: DateRange) -> dict[int, Decimal]:
        """Σ quantity_sold per product over the range, costed or not."""
        stmt = select(SaleLineModel.product_id, SaleLineModel.quantity_sold).where(
            SaleLineModel.sale_date >= date_range.start,
            SaleLineModel.sale_date <= date_range.end,
        )
        result: dict[int, Decimal] = defaultdict(lambda: ZERO)
        for pid, qty in self._session.execute(stmt):
            result[pid] += qty
        return dict(result)

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _costed_lines(
        self,
        date_range: DateRange | None = None,
        product_id: int | None = None,
        sale_id: str | None = None,
    ) -> tuple[list[CostedLine], tuple[SkippedRow, ...]]:
        """
        Load matching sale lines with their consumption records and split
        them into costed lines and skipped rows.
        """
        conditions = []
        if date_range is not None:
            conditions.append(SaleLineModel.sale_date >= date_range.start)
            conditions.append(SaleLineModel.sale_date <= date_range.end)
        if product_id is not None:
            conditions.append(SaleLineModel.product_id == product_id)
        if sale_id is not None:
            conditions.append(SaleLineModel.sale_id == sale_id)

        line_stmt = (
            select(SaleLineModel, ProductModel.name)
            .outerjoin(ProductModel, ProductModel.id == SaleLineModel.product_id)
            .where(*conditions)
            .order_by(SaleLineModel.id)
        )
        rows = self._session.execute(line_stmt).all()
        if not rows:
            return [], ()

        record_stmt = (
            select(ConsumptionRecordModel)
            .join(SaleLineModel, SaleLineModel.id == ConsumptionRecordModel.sale_line_id)
            .where(*conditions)
        )
        records: dict[int, list[ConsumptionRecordModel]] = defaultdict(list)
        for rec in self._session.execute(record_stmt).scalars():
            records[rec.sale_line_id].append(rec)

        costed: list[CostedLine] = []
        skipped: list[SkippedRow] = []
        for model, name in rows:
            line = self._line_to_domain(model)
            recs = records.get(line.id, [])
            reason = None
            if name is None:
                reason = "product_missing"
            elif not recs:
                reason = "not_costed"
            elif sum((r.quantity_consumed for r in recs), ZERO) != line.quantity_sold:
                reason = "quantity_mismatch"

            if reason is not None:
                logger.warning("profitability_row_skipped", extra={
                    "sale_line_id": line.id,
                    "product_id": line.product_id,
                    "reason": reason,
                })
                skipped.append(SkippedRow(line.id, line.product_id, reason))
                continue

            costed.append(
                CostedLine(
                    line=line,
                    name=name,
                    profit=LineProfit(
                        revenue=line.revenue,
                        cogs=sum((r.line_cost for r in recs), ZERO),
                    ),
                    estimated=any(r.estimated for r in recs),
                )
            )
        return costed, tuple(skipped)

    @staticmethod
    def _sum(costed: list[CostedLine]) -> ProfitTotals:
        totals = ProfitTotals()
        for c in costed:
            totals = totals.add(c.line.quantity_sold, c.profit, c.estimated)
        return totals

    @staticmethod
    def _line_row(c: CostedLine) -> SaleLineProfitRow:
        return SaleLineProfitRow(
            sale_line_id=c.line.id,
            sale_id=c.line.sale_id,
            sale_date=c.line.sale_date,
            product_id=c.line.product_id,
            name=c.name,
            qty=c.line.quantity_sold,
            revenue=c.profit.revenue,
            cogs=c.profit.cogs,
            profit=c.profit.profit,
            margin_pct=c.profit.margin_pct,
            estimated=c.estimated,
        )

    def _cached(self, key):
        """Cached report plus fill token; ``(None, None)`` bypasses the cache."""
        if self._cache is None:
            return None, None
        token = self._cache.fill_token(self._session)
        if token is None:
            return None, None
        return self._cache.get_report(key), token

    def _store(self, key, report, token):
        if token is not None:
            self._cache.put_report(key, report, generation=token)
        return report

    @staticmethod
    def _line_to_domain(model: SaleLineModel) -> SaleLine:
        return SaleLine(
            id=model.id,
            sale_id=model.sale_id,
            product_id=model.product_id,
            quantity_sold=model.quantity_sold,
            unit_price_sold=model.unit_price_sold,
            discount_per_unit=model.discount_per_unit,
            sale_date=model.sale_date,
            customer_segment=model.customer_segment,
        )
