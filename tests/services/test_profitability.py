"""
Tests for ProfitabilityAggregator.

Covers:
- Single line revenue / COGS / margin
- Per-product ranking with ABC tiers, report totals reconciling with rows
- Monthly, per-sale, per-segment and per-line rollups
- Skipped rows (uncosted, partially costed)
- Estimated flag propagation
- Cache reuse and invalidation on new consumption
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from costing_config.schema import AbcConfig, CostingConfig
from costing_kernel.domain.dtos import AbcClass, DateRange, ProfitMetric, ShortagePolicy
from costing_kernel.exceptions import SaleLineNotFoundError
from costing_services.profitability_service import (
    UNASSIGNED_SEGMENT,
    ProfitabilityAggregator,
    months_back_start,
)

DAY0 = date(2024, 1, 1)


@pytest.fixture
def sales(sale_posting, layer_store, product, make_product, scenario_layers):
    """
    Phone case: 12 @ 150 on Jan 11 (COGS 1240), segment "retail".
    Cable: 10 @ 10 less 1 discount on Feb 10 (COGS 50), no segment.
    """
    cable = make_product("Cable")
    layer_store.append_layer(cable.id, Decimal("20"), Decimal("5"), DAY0)

    phone_sale = sale_posting.post_sale_line(
        "S-1", product.id, Decimal("12"), Decimal("150"), DAY0 + timedelta(days=10),
        customer_segment="retail",
    )
    cable_sale = sale_posting.post_sale_line(
        "S-2", cable.id, Decimal("10"), Decimal("10"), DAY0 + timedelta(days=40),
        discount_per_unit=Decimal("1"),
    )
    return product, cable, phone_sale, cable_sale


class TestSaleLineProfit:
    """Single-line figures."""

    def test_scenario_line(self, profitability, sales):
        """Revenue 1800, COGS 1240, profit 560."""
        _, _, phone_sale, _ = sales

        line = profitability.sale_line_profit(phone_sale.sale_line.id)

        assert line.revenue == Decimal("1800")
        assert line.cogs == Decimal("1240")
        assert line.profit == Decimal("560")
        assert line.margin_pct == Decimal("560") / Decimal("1800") * 100

    def test_discount_reduces_revenue(self, profitability, sales):
        _, _, _, cable_sale = sales

        assert profitability.sale_line_profit(cable_sale.sale_line).revenue == Decimal("90")

    def test_unknown_line(self, profitability):
        with pytest.raises(SaleLineNotFoundError):
            profitability.sale_line_profit(123456)


class TestByProduct:
    """Per-product ranking."""

    def test_rows_and_totals(self, profitability, sales):
        product, cable, _, _ = sales

        report = profitability.by_product()

        assert [r.product_id for r in report.rows] == [product.id, cable.id]
        assert report.metric is ProfitMetric.REVENUE
        assert report.totals.revenue == sum(r.revenue for r in report.rows) == Decimal("1890")
        assert report.totals.cogs == sum(r.cogs for r in report.rows) == Decimal("1290")
        assert report.rows[-1].cum_share == 1
        assert report.skipped == ()

    def test_average_prices(self, profitability, sales):
        report = profitability.by_product()
        phone = report.rows[0]

        assert phone.avg_sell_price == Decimal("150")
        assert phone.avg_buy_price == Decimal("1240") / Decimal("12")

    def test_abc_from_config(self, session, clock, cache, sales):
        """Thresholds come from config."""
        config = CostingConfig(abc=AbcConfig(a_threshold=Decimal("0.96"), b_threshold=Decimal("0.99")))
        report = ProfitabilityAggregator(session, clock, config, cache).by_product()

        assert [r.bucket for r in report.rows] == [AbcClass.A, AbcClass.C]

    def test_date_range_filters(self, profitability, sales):
        product, _, _, _ = sales

        report = profitability.by_product(DateRange(DAY0, date(2024, 1, 31)))

        assert [r.product_id for r in report.rows] == [product.id]

    def test_rank_by_profit(self, profitability, sales):
        report = profitability.by_product(metric=ProfitMetric.PROFIT)

        assert report.metric is ProfitMetric.PROFIT
        assert report.rows[0].profit == Decimal("560")


class TestSkippedRows:
    """Lines that cannot be reported are skipped with a reason."""

    def test_uncosted_line_skipped(self, profitability, product, scenario_layers, make_sale_line, captured_logs):
        line = make_sale_line(product.id, Decimal("1"))

        report = profitability.by_product()

        assert report.rows == ()
        assert [(s.sale_line_id, s.reason) for s in report.skipped] == [(line, "not_costed")]
        assert any(r["message"] == "profitability_row_skipped" for r in captured_logs())

    def test_uncosted_line_has_zero_cogs(self, profitability, product, make_sale_line):
        line = make_sale_line(product.id, Decimal("2"))

        assert profitability.sale_line_profit(line).cogs == 0


class TestEstimated:
    """Estimated COGS surfaces in reports."""

    def test_estimated_flag(self, profitability, catalog, sale_posting, product, scenario_layers):
        catalog.set_fallback_cost(product.id, Decimal("130"))
        sale_posting.post_sale_line(
            "S-9", product.id, Decimal("20"), Decimal("150"), DAY0, policy=ShortagePolicy.DEGRADE,
        )

        report = profitability.by_product()

        assert report.rows[0].estimated
        assert report.rows[0].cogs == Decimal("2250")
        assert report.totals.estimated


class TestOtherRollups:
    """Month, sale, segment, line and summary views."""

    def test_by_month(self, profitability, sales):
        product, cable, _, _ = sales

        report = profitability.by_month()

        assert [(r.month, r.product_id) for r in report.rows] == [
            ("2024-01", product.id),
            ("2024-02", cable.id),
        ]
        assert report.rows[0].totals.profit == Decimal("560")

    def test_by_month_for_one_product(self, profitability, sales):
        _, cable, _, _ = sales

        report = profitability.by_month(product_id=cable.id)

        assert [r.product_id for r in report.rows] == [cable.id]
        assert report.totals.revenue == Decimal("90")

    def test_product_margins_window(self, profitability, sales):
        """One month back from Feb 15 covers only February."""
        _, cable, _, _ = sales

        report = profitability.product_margins(months_back=1, as_of_date=date(2024, 2, 15))

        assert [r.product_id for r in report.rows] == [cable.id]

    def test_months_back_start(self):
        assert months_back_start(date(2024, 3, 17), 6) == date(2023, 10, 1)
        assert months_back_start(date(2024, 3, 17), 1) == date(2024, 3, 1)

    def test_by_sale(self, profitability, sales):
        report = profitability.by_sale("S-1")

        assert len(report.lines) == 1
        assert report.totals.profit == Decimal("560")
        assert profitability.by_sale("missing").lines == ()

    def test_by_segment(self, profitability, sales):
        report = profitability.by_segment()

        assert [r.segment for r in report.rows] == ["retail", UNASSIGNED_SEGMENT]
        assert report.rows[0].line_count == 1

    def test_sales_profit_ordered_by_date(self, profitability, sales):
        report = profitability.sales_profit()

        assert [l.sale_id for l in report.lines] == ["S-1", "S-2"]
        assert report.lines[1].margin_pct == Decimal("40") / Decimal("90") * 100

    def test_summary(self, profitability, sales):
        summary = profitability.summary()

        assert summary.line_count == 2
        assert summary.totals.profit == Decimal("600")

    def test_units_sold(self, profitability, sales):
        product, cable, _, _ = sales

        units = profitability.units_sold_by_product(DateRange(DAY0, date(2024, 12, 31)))

        assert units == {product.id: Decimal("12"), cable.id: Decimal("10")}


class TestCaching:
    """Reports are cached from committed state and dropped when the ledger moves."""

    def test_cached_report_reused(self, session, profitability, cache, sales):
        session.commit()
        first = profitability.by_product()

        assert profitability.by_product() is first
        assert cache.hits >= 1

    def test_uncommitted_session_bypasses_cache(self, profitability, cache, sales):
        """Reads next to pending ledger writes are neither served nor stored."""
        first = profitability.by_product()

        assert profitability.by_product() is not first
        assert len(cache) == 0

    def test_consumption_invalidates(self, session, profitability, sale_posting, layer_store, sales):
        product, _, _, _ = sales
        session.commit()
        first = profitability.by_product()

        sale_posting.post_sale_line("S-3", product.id, Decimal("1"), Decimal("200"), DAY0 + timedelta(days=12))
        second = profitability.by_product()

        assert second is not first
        assert second.totals.revenue == first.totals.revenue + Decimal("200")

        session.commit()
        third = profitability.by_product()

        assert third is not first
        assert third.totals.revenue == second.totals.revenue
        # Stored COGS does not change for earlier lines
        assert profitability.sale_line_profit(sales[2].sale_line.id).cogs == Decimal("1240")
