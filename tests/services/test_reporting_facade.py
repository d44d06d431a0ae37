"""
Tests for the CostingReports dict views.

The views are thin adapters; these tests pin the field names and the
value rendering (Decimals kept, dates as ISO strings).
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from costing_kernel.domain.dtos import DateRange

DAY0 = date(2024, 1, 1)


@pytest.fixture
def sold(sale_posting, product, scenario_layers):
    sale_posting.post_sale_line(
        "S-1", product.id, Decimal("12"), Decimal("150"), DAY0 + timedelta(days=10),
        customer_segment="retail",
    )
    return product


class TestInventoryViews:
    def test_inventory_view(self, reports, sold):
        (row,) = reports.inventory_view(DAY0 + timedelta(days=100))

        assert row["productId"] == sold.id
        assert row["onHandQty"] == Decimal("3")
        assert row["onHandValue"] == Decimal("360")
        assert row["layers"] == [
            {
                "layerId": row["layers"][0]["layerId"],
                "entryDate": "2024-01-06",
                "remainingQty": Decimal("3"),
                "unitCost": Decimal("120"),
                "value": Decimal("360"),
                "ageDays": 95,
            }
        ]

    def test_inventory_aging(self, reports, sold):
        view = reports.inventory_aging(sold.id, DAY0 + timedelta(days=100))

        assert view["asOfDate"] == "2024-04-10"
        assert {b["name"]: b["value"] for b in view["buckets"]}["91-180"] == Decimal("360")
        assert view["totalValue"] == Decimal("360")

    def test_product_snapshot(self, reports, sold):
        view = reports.product_snapshot(sold.id)

        assert view["avgCost"] == Decimal("120")
        assert view["asOfVersion"] == 3


class TestProfitViews:
    def test_profitability_view(self, reports, sold):
        view = reports.profitability_view()

        assert view["metric"] == "revenue"
        (row,) = view["rows"]
        # A lone product holds 100% of revenue, past the B cut point
        assert row["bucket"] == "C"
        assert row["profit"] == Decimal("560")
        assert view["totalRevenue"] == Decimal("1800")
        assert view["skipped"] == []

    def test_sales_and_sale_views(self, reports, sold):
        rows = reports.sales_profit_view(DateRange(DAY0, DAY0 + timedelta(days=30)))["rows"]
        sale = reports.sale_view("S-1")

        assert rows[0]["date"] == "2024-01-11"
        assert sale["lines"] == rows
        assert sale["totalCogs"] == Decimal("1240")

    def test_margins_segment_summary(self, reports, sold):
        margins = reports.product_margins_view(months_back=3, as_of_date=date(2024, 1, 31))
        segments = reports.segment_view()
        summary = reports.summary_view()

        assert margins["rows"][0]["month"] == "2024-01"
        assert segments["rows"][0]["segment"] == "retail"
        assert summary["lineCount"] == 1
        assert summary["totalProfit"] == Decimal("560")


class TestAnalysisViews:
    def test_purchase_suggestions_view(self, reports, sold):
        """12 sold in 30 days with 3 left -> 7.5 days of stock."""
        (row,) = reports.purchase_suggestions_view(DAY0 + timedelta(days=20))

        assert row["currentStock"] == Decimal("3")
        assert row["salesPerDay"] == Decimal("0.40")
        assert row["daysOfStockLeft"] == Decimal("7.5")
        assert row["suggestedPurchaseQuantity"] == 9
        assert row["urgency"] == "soon"

    def test_velocity_view(self, reports, sold):
        view = reports.inventory_velocity_view(DAY0 + timedelta(days=20))

        assert set(view) == {"hotItems", "normalItems", "staleItems"}
        assert view["normalItems"][0]["classification"] == "normal"
