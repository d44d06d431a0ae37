"""
Report cache isolation across real transactions.

A shared ReportCache must only ever hold reports built from committed
ledger state:

- A report read inside a sale transaction that later rolls back is never
  served to anyone.
- A report computed before another transaction's sale commits is not
  stored after that commit.
- Committing a sale drops reports cached before it.
"""

from datetime import date
from decimal import Decimal

import pytest

from costing_services.catalog import ProductCatalog
from costing_services.consumption_service import FifoConsumptionEngine
from costing_services.layer_store import LayerStore
from costing_services.profitability_service import ProfitabilityAggregator
from costing_services.report_cache import ReportCache
from costing_services.sale_posting import SalePostingService

DAY0 = date(2024, 1, 1)


@pytest.fixture
def shared_cache() -> ReportCache:
    return ReportCache()


@pytest.fixture
def product_id(committing_factory):
    """One product with a committed layer of 10 @ 100."""
    with committing_factory() as s:
        product = ProductCatalog(s).add_product("SKU-I", "Isolated")
        LayerStore(s).append_layer(product.id, Decimal("10"), Decimal("100"), DAY0)
        s.commit()
    return product.id


def _post_sale(session, cache, product_id, sale_id="S-1"):
    """4 @ 150 costed against the shared cache."""
    store = LayerStore(session, cache=cache)
    posting = SalePostingService(session, FifoConsumptionEngine(session, store))
    return posting.post_sale_line(sale_id, product_id, Decimal("4"), Decimal("150"), DAY0)


def _revenue(factory, cache) -> Decimal:
    with factory() as s:
        return ProfitabilityAggregator(s, cache=cache).by_product().total_revenue


class TestRolledBackSale:
    def test_report_read_inside_sale_not_served_after_rollback(
        self, committing_factory, shared_cache, product_id
    ):
        with committing_factory() as s:
            _post_sale(s, shared_cache, product_id)
            inside = ProfitabilityAggregator(s, cache=shared_cache).by_product()
            summary = ProfitabilityAggregator(s, cache=shared_cache).summary()
            s.rollback()

        assert inside.total_revenue == Decimal("600")
        assert summary.totals.revenue == Decimal("600")
        assert _revenue(committing_factory, shared_cache) == 0
        with committing_factory() as s:
            assert ProfitabilityAggregator(s, cache=shared_cache).summary().line_count == 0

    def test_rollback_keeps_committed_reports(self, committing_factory, shared_cache, product_id):
        with committing_factory() as s:
            before = ProfitabilityAggregator(s, cache=shared_cache).by_product()

        with committing_factory() as s:
            _post_sale(s, shared_cache, product_id)
            s.rollback()

        with committing_factory() as s:
            assert ProfitabilityAggregator(s, cache=shared_cache).by_product() is before


class TestCommittedSale:
    def test_commit_drops_earlier_reports(self, committing_factory, shared_cache, product_id):
        assert _revenue(committing_factory, shared_cache) == 0

        with committing_factory() as s:
            _post_sale(s, shared_cache, product_id)
            s.commit()

        assert _revenue(committing_factory, shared_cache) == Decimal("600")

    def test_report_computed_before_commit_not_stored(
        self, committing_factory, shared_cache, product_id, monkeypatch
    ):
        """A read that straddles another transaction's commit is not cached."""
        original = ProfitabilityAggregator._costed_lines

        def costed_then_competing_commit(self, *args, **kwargs):
            result = original(self, *args, **kwargs)
            with committing_factory() as writer:
                _post_sale(writer, shared_cache, product_id, sale_id="S-RACE")
                writer.commit()
            return result

        with committing_factory() as s:
            monkeypatch.setattr(
                ProfitabilityAggregator, "_costed_lines", costed_then_competing_commit
            )
            straddling = ProfitabilityAggregator(s, cache=shared_cache).by_product()
            monkeypatch.undo()

        assert straddling.total_revenue == 0
        assert len(shared_cache) == 0
        assert _revenue(committing_factory, shared_cache) == Decimal("600")
