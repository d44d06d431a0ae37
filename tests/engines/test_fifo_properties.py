"""
Property-based tests for FIFO allocation.

Generates arbitrary layer sets and requests and checks the conservation,
ordering and bound properties that every allocation must satisfy.
"""

from datetime import date, timedelta
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from costing_engines.fifo import allocate_fifo, fifo_order
from costing_kernel.domain.dtos import InventoryLayer

DAY0 = date(2024, 1, 1)

quantities = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("1000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
requests = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("5000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
costs = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("500"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
)


@st.composite
def layer_sets(draw):
    n = draw(st.integers(min_value=0, max_value=8))
    layers = []
    for i in range(n):
        remaining = draw(quantities)
        layers.append(
            InventoryLayer(
                id=i + 1,
                product_id=1,
                entry_date=DAY0 + timedelta(days=draw(st.integers(0, 20))),
                original_qty=remaining + draw(quantities),
                remaining_qty=remaining,
                unit_cost=draw(costs),
            )
        )
    return draw(st.permutations(layers))


class TestFifoProperties:
    """Allocation invariants over random inputs."""

    @settings(max_examples=200)
    @given(layers=layer_sets(), qty=requests)
    def test_conservation(self, layers, qty):
        """allocated + shortfall == requested, allocated <= available."""
        result = allocate_fifo(layers=layers, quantity=qty)

        assert result.allocated_qty + result.shortfall_qty == qty
        assert result.allocated_qty <= result.available_qty
        assert result.shortfall_qty >= 0
        assert result.total_cost == sum((s.cost for s in result.slices), Decimal("0"))

    @settings(max_examples=200)
    @given(layers=layer_sets(), qty=requests)
    def test_slices_within_layer_bounds(self, layers, qty):
        """No slice exceeds its layer's remaining quantity."""
        by_id = {l.id: l for l in layers}
        result = allocate_fifo(layers=layers, quantity=qty)

        for s in result.slices:
            assert 0 < s.quantity <= by_id[s.layer_id].remaining_qty
            assert s.remaining_after == by_id[s.layer_id].remaining_qty - s.quantity
            assert s.unit_cost == by_id[s.layer_id].unit_cost

    @settings(max_examples=200)
    @given(layers=layer_sets(), qty=requests)
    def test_fifo_precedence(self, layers, qty):
        """Slices follow (entry_date, id) and only the last may be partial."""
        result = allocate_fifo(layers=layers, quantity=qty)
        keys = [(s.entry_date, s.layer_id) for s in result.slices]

        assert keys == sorted(keys)
        assert all(s.remaining_after == 0 for s in result.slices[:-1])

        # Nothing newer than the last drawn layer is touched while older stock is open
        ordered = fifo_order(layers)
        assert [s.layer_id for s in result.slices] == [l.id for l in ordered[: len(result.slices)]]

    @settings(max_examples=100)
    @given(layers=layer_sets(), qty=requests)
    def test_deterministic(self, layers, qty):
        """Same input, same output, regardless of input order."""
        a = allocate_fifo(layers=layers, quantity=qty)
        b = allocate_fifo(layers=list(reversed(layers)), quantity=qty)

        assert a == b
