"""
Optimistic concurrency on inventory layers.

Two sessions over the same file-backed database load the same layer;
the one that commits second must fail with ConcurrencyConflictError
instead of silently overwriting the first decrement.
"""

from datetime import date
from decimal import Decimal

import pytest

from costing_kernel.exceptions import ConcurrencyConflictError
from costing_services.catalog import ProductCatalog
from costing_services.layer_store import LayerStore

DAY0 = date(2024, 1, 1)


@pytest.fixture
def seeded(committing_factory):
    with committing_factory() as s:
        product = ProductCatalog(s).add_product("SKU-C", "Contended")
        layer_id = LayerStore(s).append_layer(product.id, Decimal("10"), Decimal("100"), DAY0)
        s.commit()
    return product.id, layer_id


class TestStaleLayer:
    def test_second_writer_conflicts(self, committing_factory, seeded):
        _, layer_id = seeded
        session_a = committing_factory()
        session_b = committing_factory()
        try:
            store_a = LayerStore(session_a)
            store_b = LayerStore(session_b)
            store_a.get_layer(layer_id)
            store_b.get_layer(layer_id)

            store_b.decrement_layer(layer_id, Decimal("4"))
            session_b.commit()

            with pytest.raises(ConcurrencyConflictError) as exc_info:
                store_a.decrement_layer(layer_id, Decimal("4"))
            session_a.rollback()

            assert exc_info.value.entity_id == layer_id
            assert exc_info.value.code == "CONCURRENCY_CONFLICT"
        finally:
            session_a.close()
            session_b.close()

        with committing_factory() as s:
            assert LayerStore(s).get_layer(layer_id).remaining_qty == Decimal("6")

    def test_conflict_logged(self, committing_factory, seeded, captured_logs):
        _, layer_id = seeded
        session_a = committing_factory()
        session_b = committing_factory()
        try:
            LayerStore(session_a).get_layer(layer_id)
            LayerStore(session_b).decrement_layer(layer_id, Decimal("1"))
            session_b.commit()

            with pytest.raises(ConcurrencyConflictError):
                LayerStore(session_a).decrement_layer(layer_id, Decimal("1"))
            session_a.rollback()
        finally:
            session_a.close()
            session_b.close()

        assert any(r["message"] == "layer_version_conflict" for r in captured_logs())
