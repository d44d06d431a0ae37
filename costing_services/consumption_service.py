"""
costing_services.consumption_service -- FIFO consumption of inventory layers.

Responsibility:
    Cost one sale line: lock the product, plan a FIFO allocation across its
    open layers, then apply the decrements and write one consumption record
    per layer touched.  Optionally estimate a shortfall at the product's
    fallback cost.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Planning is delegated to the pure ``costing_engines.fifo.allocate_fifo``;
    all writes go through LayerStore.

Invariants enforced:
    - FIFO ordering by ``(entry_date, id)``.
    - Allocation is computed in full before the first write, so a strict
      shortage never mutates anything.
    - Records are written once per sale line; a second consume for the same
      sale line is refused.
    - Σ record quantities == requested quantity, with the estimated record
      (layer_id NULL) carrying any degrade-mode shortfall.
    - Determinism: same state + same inputs -> same layers, same total_cost.

Failure modes:
    - ValidationError: quantity <= 0, or the sale line is for another product.
    - ProductNotFoundError / SaleLineNotFoundError: unknown ids.
    - InsufficientStockError: strict policy with a shortfall, or degrade
      policy with no fallback cost on the product.
    - DataIntegrityError: the sale line already has consumption records,
      or a decrement would go negative.  Logged at error level.
    - ConcurrencyConflictError: another transaction changed a layer first.
      The caller rolls back and retries the whole call.

Audit relevance:
    Every unit sold is traceable to the layer it came from and the cost it
    carried at the time of sale.  Estimated costs are flagged on the record
    and surface as ``estimated`` in profitability reports.
"""

from __future__ import annotations

import time
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_config.schema import CostingConfig
from costing_engines.fifo import allocate_fifo
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import (
    ConsumptionRecord,
    ConsumptionResult,
    ShortagePolicy,
)
from costing_kernel.exceptions import (
    DataIntegrityError,
    InsufficientStockError,
    SaleLineNotFoundError,
    ValidationError,
)
from costing_kernel.logging_config import LogContext, get_logger
from costing_kernel.models.consumption_record import ConsumptionRecordModel
from costing_kernel.models.sale_line import SaleLineModel
from costing_services.layer_store import LayerStore

logger = get_logger("services.consumption")


class FifoConsumptionEngine:
    """
    Consumes inventory layers oldest-first for a sale line.

    Contract:
        Receives Session, LayerStore and config via constructor injection.
        Runs inside the caller's sale transaction and never commits; a
        rollback undoes every decrement and record together.

    Guarantees:
        - Strict policy: either the full quantity is costed from real layers
          or nothing is written.
        - Degrade policy: all open layers are drained, then one estimated
          record covers the shortfall.

    Non-goals:
        - Does not record the sale line itself (see SalePostingService).
        - Does not retry on conflicts (see costing_services.retry).
    """

    def __init__(
        self,
        session: Session,
        layer_store: LayerStore | None = None,
        clock: Clock | None = None,
        config: CostingConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._store = layer_store or LayerStore(session, self._clock)
        self._config = config or CostingConfig()

    def consume(
        self,
        product_id: int,
        quantity: Decimal,
        sale_line_id: int,
        as_of: datetime | None = None,
        policy: ShortagePolicy | None = None,
    ) -> ConsumptionResult:
        """
        Cost ``quantity`` of ``product_id`` for ``sale_line_id``.

        Args:
            as_of: Timestamp stored on the records; defaults to clock.now().
            policy: Overrides the configured shortage policy for this call.

        Raises:
            See module docstring.
        """
        if quantity <= 0:
            raise ValidationError("quantity", quantity, "must be positive")

        policy = policy or self._config.shortage_policy
        consumed_at = as_of or self._clock.now()

        with LogContext.bind(product_id=product_id):
            t0 = time.monotonic()
            logger.info("consume_started", extra={
                "sale_line_id": sale_line_id,
                "quantity": quantity,
                "policy": policy.value,
            })

            product = self._store.lock_product(product_id)
            self._check_sale_line(sale_line_id, product_id)

            allocation = allocate_fifo(
                layers=self._store.open_layers(product_id),
                quantity=quantity,
            )

            estimate_cost: Decimal | None = None
            if not allocation.is_complete:
                if policy is ShortagePolicy.STRICT or product.fallback_unit_cost is None:
                    logger.warning("consume_insufficient_stock", extra={
                        "sale_line_id": sale_line_id,
                        "requested_qty": quantity,
                        "available_qty": allocation.available_qty,
                        "policy": policy.value,
                        "has_fallback_cost": product.fallback_unit_cost is not None,
                    })
                    raise InsufficientStockError(
                        product_id=product_id,
                        available=allocation.available_qty,
                        requested=quantity,
                    )
                estimate_cost = product.fallback_unit_cost

            models: list[ConsumptionRecordModel] = []
            for s in allocation.slices:
                self._store.decrement_layer(s.layer_id, s.quantity)
                models.append(
                    ConsumptionRecordModel(
                        sale_line_id=sale_line_id,
                        layer_id=s.layer_id,
                        product_id=product_id,
                        quantity_consumed=s.quantity,
                        unit_cost_at_consumption=s.unit_cost,
                        consumed_at=consumed_at,
                        estimated=False,
                    )
                )

            if estimate_cost is not None:
                models.append(
                    ConsumptionRecordModel(
                        sale_line_id=sale_line_id,
                        layer_id=None,
                        product_id=product_id,
                        quantity_consumed=allocation.shortfall_qty,
                        unit_cost_at_consumption=estimate_cost,
                        consumed_at=consumed_at,
                        estimated=True,
                    )
                )

            self._session.add_all(models)
            self._session.flush()
            self._store.record_change(product_id)

            records = tuple(self._model_to_domain(m) for m in models)
            total_cost = sum((r.cost for r in records), Decimal("0"))
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            if estimate_cost is not None:
                logger.warning("consume_shortfall_estimated", extra={
                    "sale_line_id": sale_line_id,
                    "shortfall_qty": allocation.shortfall_qty,
                    "fallback_unit_cost": estimate_cost,
                })
            logger.info("consume_completed", extra={
                "sale_line_id": sale_line_id,
                "layers_consumed": len(allocation.slices),
                "total_cost": total_cost,
                "shortfall_qty": allocation.shortfall_qty,
                "duration_ms": duration_ms,
            })

        return ConsumptionResult(
            product_id=product_id,
            sale_line_id=sale_line_id,
            requested_qty=quantity,
            records=records,
            total_cost=total_cost,
            shortfall_qty=allocation.shortfall_qty,
        )

    def records_for_sale_line(self, sale_line_id: int) -> list[ConsumptionRecord]:
        stmt = (
            select(ConsumptionRecordModel)
            .where(ConsumptionRecordModel.sale_line_id == sale_line_id)
            .order_by(ConsumptionRecordModel.id)
        )
        return [self._model_to_domain(m) for m in self._session.execute(stmt).scalars()]

    def consumed_qty_for_layer(self, layer_id: int) -> Decimal:
        """Σ quantity_consumed over every record that drew on the layer."""
        stmt = select(ConsumptionRecordModel.quantity_consumed).where(
            ConsumptionRecordModel.layer_id == layer_id
        )
        return sum(self._session.execute(stmt).scalars(), Decimal("0"))

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _check_sale_line(self, sale_line_id: int, product_id: int) -> None:
        line = self._session.get(SaleLineModel, sale_line_id)
        if line is None:
            raise SaleLineNotFoundError(sale_line_id)
        if line.product_id != product_id:
            raise ValidationError(
                "product_id",
                product_id,
                f"sale line {sale_line_id} is for product {line.product_id}",
            )

        stmt = select(ConsumptionRecordModel.id).where(
            ConsumptionRecordModel.sale_line_id == sale_line_id
        ).limit(1)
        if self._session.execute(stmt).first() is not None:
            reason = "sale line already has consumption records"
            logger.error("consume_duplicate_sale_line", extra={
                "sale_line_id": sale_line_id,
                "reason": reason,
            })
            raise DataIntegrityError("SaleLine", sale_line_id, reason)

    @staticmethod
    def _model_to_domain(model: ConsumptionRecordModel) -> ConsumptionRecord:
        return ConsumptionRecord(
            id=model.id,
            sale_line_id=model.sale_line_id,
            layer_id=model.layer_id,
            product_id=model.product_id,
            quantity_consumed=model.quantity_consumed,
            unit_cost_at_consumption=model.unit_cost_at_consumption,
            consumed_at=model.consumed_at,
            estimated=model.estimated,
        )
