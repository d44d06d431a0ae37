"""
Tests for ValuationCalculator: snapshots, aging, inventory positions.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from costing_config.schema import CostingConfig, ReportCacheConfig
from costing_kernel.exceptions import ProductNotFoundError
from costing_services.valuation_service import ValuationCalculator

DAY0 = date(2024, 1, 1)


class TestSnapshot:
    """On-hand position of one product."""

    def test_snapshot_after_partial_consumption(self, valuation, layer_store, product, scenario_layers):
        """12 of 15 consumed leaves 3 @ 120."""
        l1, l2 = scenario_layers
        layer_store.decrement_layer(l1, Decimal("10"))
        layer_store.decrement_layer(l2, Decimal("2"))
        layer_store.record_change(product.id)

        snap = valuation.snapshot(product.id)

        assert snap.on_hand_qty == Decimal("3")
        assert snap.on_hand_value == Decimal("360")
        assert snap.avg_cost == Decimal("120")

    def test_empty_product(self, valuation, product):
        """No layers -> zero quantity, zero value, zero average cost."""
        snap = valuation.snapshot(product.id)

        assert (snap.on_hand_qty, snap.on_hand_value, snap.avg_cost) == (0, 0, 0)

    def test_weighted_average(self, valuation, product, scenario_layers):
        """(10*100 + 5*120) / 15."""
        assert valuation.snapshot(product.id).avg_cost == Decimal("1600") / Decimal("15")

    def test_unknown_product(self, valuation):
        with pytest.raises(ProductNotFoundError):
            valuation.snapshot(31337)


class TestSnapshotCache:
    """Snapshots are cached per layer_version."""

    def test_cached_until_layers_change(self, session, valuation, layer_store, cache, product, scenario_layers):
        session.commit()
        first = valuation.snapshot(product.id)
        assert valuation.snapshot(product.id) is first
        assert cache.hits == 1

        layer_store.append_layer(product.id, Decimal("1"), Decimal("50"), DAY0)
        refreshed = valuation.snapshot(product.id)

        assert refreshed.as_of_version == first.as_of_version + 1
        assert refreshed.on_hand_qty == Decimal("16")
        assert cache.get_snapshot(product.id, refreshed.as_of_version) is None

        session.commit()

        assert cache.get_snapshot(product.id, first.as_of_version) is None
        assert valuation.snapshot(product.id) is not refreshed
        assert valuation.snapshot(product.id).on_hand_qty == Decimal("16")

    def test_cache_disabled(self, session, layer_store, clock, cache, product, scenario_layers):
        config = CostingConfig(report_cache=ReportCacheConfig(enabled=False))
        calc = ValuationCalculator(session, layer_store, clock, config, cache)

        calc.snapshot(product.id)
        calc.snapshot(product.id)

        assert cache.hits == 0
        assert len(cache) == 0


class TestAging:
    """Aging through the service."""

    def test_scenario_as_of_day_100(self, valuation, layer_store, product, scenario_layers):
        """Remaining 3 @ 120 from day 5 is 95 days old -> 91-180."""
        l1, l2 = scenario_layers
        layer_store.decrement_layer(l1, Decimal("10"))
        layer_store.decrement_layer(l2, Decimal("2"))

        report = valuation.aging_buckets(product.id, DAY0 + timedelta(days=100))

        assert report.total_by_bucket()["91-180"] == Decimal("360")
        assert report.total_value == Decimal("360")

    def test_defaults_to_clock_today(self, valuation, product, scenario_layers, clock):
        report = valuation.aging_buckets(product.id)

        assert report.as_of_date == clock.today()

    def test_all_products(self, valuation, layer_store, product, make_product, scenario_layers):
        other = make_product("Other")
        layer_store.append_layer(other.id, Decimal("2"), Decimal("10"), DAY0)

        report = valuation.aging_buckets(as_of_date=DAY0)

        assert report.total_value == Decimal("1600") + Decimal("20")

    def test_unknown_product(self, valuation):
        with pytest.raises(ProductNotFoundError):
            valuation.aging_buckets(999)


class TestInventoryPositions:
    """Per-product positions."""

    def test_sorted_by_value(self, valuation, layer_store, product, make_product, scenario_layers):
        small = make_product("Small")
        layer_store.append_layer(small.id, Decimal("1"), Decimal("5"), DAY0)

        positions = valuation.inventory_positions(DAY0 + timedelta(days=10))

        assert [p.product_id for p in positions] == [product.id, small.id]
        top = positions[0]
        assert top.name == "Phone case"
        assert top.on_hand_value == Decimal("1600")
        assert [l.age_days for l in top.layers] == [10, 5]

    def test_exhausted_products_absent(self, valuation, layer_store, product, scenario_layers):
        l1, l2 = scenario_layers
        layer_store.decrement_layer(l1, Decimal("10"))
        layer_store.decrement_layer(l2, Decimal("5"))

        assert valuation.inventory_positions(DAY0) == []
