"""
costing_services.valuation_service -- On-hand valuation and inventory aging.

Responsibility:
    Derive on-hand quantity, value and average cost per product from open
    layers, bucket on-hand value by age, and build the per-product inventory
    positions the inventory report shows.

Architecture position:
    Services -- read-only orchestration over LayerStore + AgingCalculator.
    Never writes and never locks; safe to run alongside consumption.

Invariants enforced:
    - on_hand_qty = Σ remaining_qty, on_hand_value = Σ remaining_qty *
      unit_cost over open layers; avg_cost = value / qty, or 0 when qty is 0.
    - Snapshots are cached only under ``(product_id, layer_version)``, and
      only from sessions without uncommitted ledger writes.
    - Aging is recomputed on every call.

Failure modes:
    - ProductNotFoundError for an unknown product id.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_config.schema import CostingConfig
from costing_engines.aging import AgedLayer, AgingCalculator, AgingReport
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import ZERO, InventoryLayer, ProductCostSnapshot
from costing_kernel.exceptions import ProductNotFoundError
from costing_kernel.logging_config import get_logger
from costing_kernel.models.product import ProductModel
from costing_services.layer_store import LayerStore
from costing_services.report_cache import ReportCache

logger = get_logger("services.valuation")


@dataclass(frozen=True, slots=True)
class InventoryPosition:
    """One product's on-hand position with its aged open layers."""

    product_id: int
    name: str
    on_hand_qty: Decimal
    on_hand_value: Decimal
    avg_cost: Decimal
    layers: tuple[AgedLayer, ...]


def _summarize(layers: list[InventoryLayer]) -> tuple[Decimal, Decimal, Decimal]:
    qty = sum((l.remaining_qty for l in layers), ZERO)
    value = sum((l.value for l in layers), ZERO)
    avg = value / qty if qty > 0 else ZERO
    return qty, value, avg


class ValuationCalculator:
    """
    Valuation and aging over the current layer ledger.

    Contract:
        Receives Session via constructor injection; optional shared
        ReportCache for snapshots.
    """

    def __init__(
        self,
        session: Session,
        layer_store: LayerStore | None = None,
        clock: Clock | None = None,
        config: CostingConfig | None = None,
        cache: ReportCache | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._store = layer_store or LayerStore(session, self._clock, cache)
        self._config = config or CostingConfig()
        self._cache = cache if self._config.report_cache.enabled else None
        self._aging = AgingCalculator(self._config.aging_buckets)

    def snapshot(self, product_id: int) -> ProductCostSnapshot:
        """On-hand quantity, value and average cost for one product."""
        product = self._session.get(ProductModel, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        version = product.layer_version
        token = self._cache.fill_token(self._session) if self._cache is not None else None
        if token is not None:
            cached = self._cache.get_snapshot(product_id, version)
            if cached is not None:
                return cached

        qty, value, avg = _summarize(self._store.open_layers(product_id))
        snap = ProductCostSnapshot(
            product_id=product_id,
            on_hand_qty=qty,
            on_hand_value=value,
            avg_cost=avg,
            as_of_version=version,
        )
        if token is not None:
            self._cache.put_snapshot(snap, generation=token)

        logger.debug("snapshot_computed", extra={
            "product_id": product_id,
            "on_hand_qty": qty,
            "on_hand_value": value,
            "as_of_version": version,
        })
        return snap

    def aging_buckets(
        self,
        product_id: int | None = None,
        as_of_date: date | None = None,
    ) -> AgingReport:
        """
        On-hand value per age bucket, for one product or all products.

        Raises:
            ProductNotFoundError: if ``product_id`` is given and unknown.
        """
        as_of_date = as_of_date or self._clock.today()
        if product_id is None:
            layers = self._store.all_open_layers()
        else:
            if self._session.get(ProductModel, product_id) is None:
                raise ProductNotFoundError(product_id)
            layers = self._store.open_layers(product_id)
        return self._aging.build_report(layers=layers, as_of_date=as_of_date)

    def inventory_positions(self, as_of_date: date | None = None) -> list[InventoryPosition]:
        """
        Products with stock on hand, highest on-hand value first.

        Ties on value are ordered by product id.
        """
        as_of_date = as_of_date or self._clock.today()

        by_product: dict[int, list[InventoryLayer]] = defaultdict(list)
        for layer in self._store.all_open_layers():
            by_product[layer.product_id].append(layer)

        names: dict[int, str] = {}
        if by_product:
            stmt = select(ProductModel.id, ProductModel.name).where(
                ProductModel.id.in_(list(by_product))
            )
            names = {pid: name for pid, name in self._session.execute(stmt)}

        positions: list[InventoryPosition] = []
        for pid, layers in by_product.items():
            qty, value, avg = _summarize(layers)
            positions.append(
                InventoryPosition(
                    product_id=pid,
                    name=names.get(pid, ""),
                    on_hand_qty=qty,
                    on_hand_value=value,
                    avg_cost=avg,
                    layers=tuple(self._aging.age_layer(l, as_of_date) for l in layers),
                )
            )

        positions.sort(key=lambda p: (-p.on_hand_value, p.product_id))
        logger.info("inventory_positions_computed", extra={
            "as_of_date": as_of_date.isoformat(),
            "product_count": len(positions),
        })
        return positions
