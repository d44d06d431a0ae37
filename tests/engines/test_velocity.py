"""
Tests for velocity classification and purchase suggestions.
"""

from decimal import Decimal

import pytest

from costing_engines.velocity import (
    ProductMovement,
    Urgency,
    VelocityClass,
    classify_velocity,
    suggest_purchases,
)
from costing_kernel.exceptions import ValidationError


def move(pid, sold, on_hand):
    return ProductMovement(
        product_id=pid,
        name=f"P{pid}",
        units_sold=Decimal(sold),
        on_hand_qty=Decimal(on_hand),
    )


class TestVelocity:
    """Hot / normal / stale tiers."""

    def test_classification_and_sorting(self):
        """Hot sorted fastest first, stale slowest first."""
        report = classify_velocity(
            movements=[
                move(1, "30", "5"),   # 1.0/day  hot
                move(2, "90", "5"),   # 3.0/day  hot
                move(3, "9", "5"),    # 0.3/day  normal
                move(4, "3", "5"),    # 0.1/day  stale
                move(5, "0", "5"),    # 0/day    stale
            ],
            lookback_days=30,
            hot_threshold=Decimal("1"),
            stale_threshold=Decimal("0.1"),
        )

        assert [i.product_id for i in report.hot] == [2, 1]
        assert [i.product_id for i in report.normal] == [3]
        assert [i.product_id for i in report.stale] == [5, 4]
        assert report.hot[0].classification is VelocityClass.HOT

    def test_lookback_must_be_positive(self):
        with pytest.raises(ValidationError):
            classify_velocity(
                movements=[], lookback_days=0,
                hot_threshold=Decimal("1"), stale_threshold=Decimal("0"),
            )


class TestPurchaseSuggestions:
    """Reorder quantities and urgency."""

    def test_suggestion_quantity_and_rounding(self):
        """2/day over 30 days with 10 on hand -> 5 days left, buy 50."""
        (s,) = suggest_purchases(
            movements=[move(1, "60", "10")],
            lookback_days=30,
            coverage_days=30,
        )

        assert s.sales_per_day == Decimal("2.00")
        assert s.days_of_stock_left == Decimal("5.0")
        assert s.suggested_qty == 50
        assert s.urgency is Urgency.URGENT

    def test_well_stocked_products_skipped(self):
        """Stock lasting the coverage window or longer is not suggested."""
        assert suggest_purchases(
            movements=[move(1, "30", "30"), move(2, "0", "0")],
            lookback_days=30,
            coverage_days=30,
        ) == ()

    def test_minimum_one_unit(self):
        """Fractional shortfall still suggests at least one unit."""
        (s,) = suggest_purchases(
            movements=[move(1, "1", "0.9")],
            lookback_days=30,
            coverage_days=30,
        )

        assert s.suggested_qty == 1

    @pytest.mark.parametrize(
        "on_hand,expected",
        [("7", Urgency.URGENT), ("10", Urgency.SOON), ("14", Urgency.SOON), ("20", Urgency.NORMAL)],
    )
    def test_urgency(self, on_hand, expected):
        """urgent <= 7 days, soon <= 14 days, else normal (1 unit/day)."""
        (s,) = suggest_purchases(
            movements=[move(1, "30", on_hand)],
            lookback_days=30,
            coverage_days=30,
        )

        assert s.urgency is expected

    def test_sorted_by_days_left(self):
        suggestions = suggest_purchases(
            movements=[move(1, "30", "20"), move(2, "30", "2")],
            lookback_days=30,
            coverage_days=30,
        )

        assert [s.product_id for s in suggestions] == [2, 1]
