"""
costing_engines.fifo -- Pure FIFO allocation across cost layers.

Responsibility:
    Given a product's layers and a quantity to sell, decide how much to take
    from each layer, oldest first.  This is the calculation half of
    consumption; the stateful half (decrementing layers, writing records)
    lives in costing_services.consumption_service.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import costing_kernel/domain and costing_kernel/exceptions.

Invariants enforced:
    - FIFO ordering: a layer is never drawn while an older open layer
      (by ``(entry_date, id)``) still has quantity.
    - Determinism: the input order of ``layers`` does not matter; identical
      layer sets and quantity always yield identical slices and total cost.
    - Conservation: sum of slice quantities + shortfall == requested.
    - Bounds: no slice exceeds its layer's remaining quantity.

Failure modes:
    - ValidationError if quantity <= 0.

Audit relevance:
    The allocation is computed in full BEFORE any layer is touched, so the
    strict policy can refuse a short consumption without mutating anything.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from costing_engines.tracer import traced_engine
from costing_kernel.domain.dtos import ZERO, InventoryLayer
from costing_kernel.exceptions import ValidationError
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.fifo")


@dataclass(frozen=True, slots=True)
class LayerSlice:
    """Quantity taken from a single layer."""

    layer_id: int
    entry_date: date
    quantity: Decimal
    unit_cost: Decimal
    remaining_after: Decimal

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True, slots=True)
class FifoAllocation:
    """
    Full allocation plan for one consumption.

    ``shortfall_qty`` is the part of the request no open layer could cover.
    """

    requested_qty: Decimal
    available_qty: Decimal
    slices: tuple[LayerSlice, ...]
    shortfall_qty: Decimal

    @property
    def allocated_qty(self) -> Decimal:
        return sum((s.quantity for s in self.slices), ZERO)

    @property
    def total_cost(self) -> Decimal:
        return sum((s.cost for s in self.slices), ZERO)

    @property
    def is_complete(self) -> bool:
        return self.shortfall_qty == 0


def fifo_order(layers: Sequence[InventoryLayer]) -> list[InventoryLayer]:
    """Open layers sorted oldest first, layer id breaking same-date ties."""
    return sorted((l for l in layers if l.is_open), key=lambda l: l.fifo_key)


@traced_engine("fifo", "1.0", fingerprint_fields=("layers", "quantity"))
def allocate_fifo(
    *,
    layers: Sequence[InventoryLayer],
    quantity: Decimal,
) -> FifoAllocation:
    """
    Allocate ``quantity`` across ``layers`` oldest first.

    Preconditions:
        quantity > 0.  ``layers`` belong to a single product.

    Postconditions:
        - slices follow ``(entry_date, id)`` order.
        - sum(slice.quantity) + shortfall_qty == quantity.
        - shortfall_qty > 0 only if every open layer is fully drawn.

    Raises:
        ValidationError: If quantity <= 0.
    """
    if quantity <= 0:
        raise ValidationError("quantity", quantity, "must be positive")

    ordered = fifo_order(layers)
    available = sum((l.remaining_qty for l in ordered), ZERO)

    slices: list[LayerSlice] = []
    needed = quantity
    for layer in ordered:
        if needed <= 0:
            break
        take = min(layer.remaining_qty, needed)
        slices.append(
            LayerSlice(
                layer_id=layer.id,
                entry_date=layer.entry_date,
                quantity=take,
                unit_cost=layer.unit_cost,
                remaining_after=layer.remaining_qty - take,
            )
        )
        needed -= take

    shortfall = needed if needed > 0 else ZERO

    logger.debug("fifo_allocation_computed", extra={
        "requested_qty": quantity,
        "available_qty": available,
        "layers_touched": len(slices),
        "shortfall_qty": shortfall,
    })

    return FifoAllocation(
        requested_qty=quantity,
        available_qty=available,
        slices=tuple(slices),
        shortfall_qty=shortfall,
    )
