"""
costing_services.inventory_analysis -- Sales velocity and reorder advice.

Responsibility:
    Combine units sold over a lookback window with current on-hand
    quantity and hand them to the pure velocity engine to classify products
    as hot, normal or stale and to produce purchase suggestions.

Architecture position:
    Services -- read-only orchestration over the profitability and
    valuation services + costing_engines.velocity.

Invariants enforced:
    - The lookback window ends on ``as_of_date`` and covers exactly
      ``lookback_days`` calendar days.
    - Only products with stock on hand or sales in the window are
      considered.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_config.schema import CostingConfig
from costing_engines.velocity import (
    ProductMovement,
    PurchaseSuggestion,
    VelocityReport,
    classify_velocity,
    suggest_purchases,
)
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import ZERO, DateRange
from costing_kernel.logging_config import get_logger
from costing_kernel.models.product import ProductModel
from costing_services.layer_store import LayerStore
from costing_services.profitability_service import ProfitabilityAggregator

logger = get_logger("services.inventory_analysis")


class InventoryAnalysisService:
    """Velocity and purchase suggestions as of a date."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: CostingConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or CostingConfig()
        self._store = LayerStore(session, self._clock)
        self._profitability = ProfitabilityAggregator(session, self._clock, self._config)

    def velocity(self, as_of_date: date | None = None) -> VelocityReport:
        cfg = self._config.velocity
        return classify_velocity(
            movements=self._movements(cfg.lookback_days, as_of_date),
            lookback_days=cfg.lookback_days,
            hot_threshold=cfg.hot_sales_per_day,
            stale_threshold=cfg.stale_sales_per_day,
        )

    def purchase_suggestions(self, as_of_date: date | None = None) -> tuple[PurchaseSuggestion, ...]:
        cfg = self._config.reorder
        return suggest_purchases(
            movements=self._movements(cfg.lookback_days, as_of_date),
            lookback_days=cfg.lookback_days,
            coverage_days=cfg.coverage_days,
            urgent_days=cfg.urgent_days,
            soon_days=cfg.soon_days,
        )

    def _movements(self, lookback_days: int, as_of_date: date | None) -> list[ProductMovement]:
        as_of_date = as_of_date or self._clock.today()
        window = DateRange(as_of_date - timedelta(days=lookback_days - 1), as_of_date)

        sold = self._profitability.units_sold_by_product(window)
        on_hand: dict[int, Decimal] = {}
        for layer in self._store.all_open_layers():
            on_hand[layer.product_id] = on_hand.get(layer.product_id, ZERO) + layer.remaining_qty

        product_ids = sorted(set(sold) | set(on_hand))
        if not product_ids:
            return []
        stmt = select(ProductModel.id, ProductModel.name).where(
            ProductModel.id.in_(product_ids)
        )
        names = {pid: name for pid, name in self._session.execute(stmt)}

        logger.debug("inventory_movements_loaded", extra={
            "window_start": window.start.isoformat(),
            "window_end": window.end.isoformat(),
            "product_count": len(product_ids),
        })
        return [
            ProductMovement(
                product_id=pid,
                name=names.get(pid, ""),
                units_sold=sold.get(pid, ZERO),
                on_hand_qty=on_hand.get(pid, ZERO),
            )
            for pid in product_ids
        ]
