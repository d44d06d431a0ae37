"""
costing_services.layer_store -- Durable ledger of inventory cost layers.

Responsibility:
    Append purchase layers, list open layers in FIFO order, and apply the
    decrements the consumption engine decides on.  This is the only
    component that owns mutable inventory state.

Architecture position:
    Services -- stateful orchestration over kernel models.
    Called by purchasing (append_layer) and by FifoConsumptionEngine
    (lock_product, open_layers, decrement_layer, record_change).

Invariants enforced:
    - 0 <= remaining_qty <= original_qty on every layer, checked here
      before each write and again by database check constraints.
    - Layers are never deleted; remaining_qty only decreases (ORM
      immutability listeners).
    - FIFO order is ``(entry_date, id)``; id is assigned in insertion order.
    - Every append and every consumption bumps the product's
      ``layer_version`` and queues invalidation of the product's cached
      reports, applied when the caller's transaction commits.

Failure modes:
    - ValidationError: append with quantity <= 0 or unit_cost < 0.
    - ProductNotFoundError / LayerNotFoundError: unknown ids.
    - DataIntegrityError: a decrement of <= 0 or below zero.  Logged at
      error level; the store fails closed and never clamps.
    - ConcurrencyConflictError: optimistic version check failed because
      another transaction decremented the layer first.

Audit relevance:
    The store never deduplicates appends.  Purchasing deduplicates through
    ``find_by_source_ref`` using its own stable reference.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import InventoryLayer, Product
from costing_kernel.exceptions import (
    ConcurrencyConflictError,
    DataIntegrityError,
    LayerNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from costing_kernel.logging_config import get_logger
from costing_kernel.models.inventory_layer import InventoryLayerModel
from costing_kernel.models.product import ProductModel
from costing_services.report_cache import ReportCache

logger = get_logger("services.layer_store")


class LayerStore:
    """
    Append-mostly ledger of purchase layers per product.

    Contract:
        Receives Session via constructor injection.  Never commits; the
        caller's transaction owns every write.

    Guarantees:
        - ``append_layer`` returns the new layer id after flush.
        - ``open_layers`` returns only layers with remaining_qty > 0, oldest
          first.
        - ``decrement_layer`` either applies the full decrement or raises.

    Non-goals:
        - Does not choose which layers to consume; that is
          FifoConsumptionEngine's job.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        cache: ReportCache | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._cache = cache

    # =========================================================================
    # Writes
    # =========================================================================

    def append_layer(
        self,
        product_id: int,
        quantity: Decimal,
        unit_cost: Decimal,
        entry_date: date,
        source_ref: str | None = None,
    ) -> int:
        """
        Record a purchase (or upward adjustment / return) as a new layer.

        Raises:
            ValidationError: quantity <= 0 or unit_cost < 0.
            ProductNotFoundError: unknown product.
        """
        if quantity <= 0:
            raise ValidationError("quantity", quantity, "must be positive")
        if unit_cost < 0:
            raise ValidationError("unit_cost", unit_cost, "must not be negative")

        product = self._load_product(product_id)

        model = InventoryLayerModel(
            product_id=product_id,
            entry_date=entry_date,
            original_qty=quantity,
            remaining_qty=quantity,
            unit_cost=unit_cost,
            source_ref=source_ref,
            created_at=self._clock.now(),
        )
        self._session.add(model)
        self._session.flush()
        self._bump(product)

        logger.info("layer_appended", extra={
            "layer_id": model.id,
            "product_id": product_id,
            "quantity": quantity,
            "unit_cost": unit_cost,
            "entry_date": entry_date.isoformat(),
            "source_ref": source_ref,
        })
        return model.id

    def decrement_layer(self, layer_id: int, quantity: Decimal) -> InventoryLayer:
        """
        Reduce a layer's remaining quantity.  Internal to consumption.

        Raises:
            DataIntegrityError: quantity <= 0 or remaining would go negative.
            LayerNotFoundError: unknown layer.
            ConcurrencyConflictError: the layer changed under us.
        """
        if quantity <= 0:
            self._integrity_failure(layer_id, f"decrement must be positive (got {quantity})")

        model = self._session.get(InventoryLayerModel, layer_id)
        if model is None:
            raise LayerNotFoundError(layer_id)

        new_remaining = model.remaining_qty - quantity
        if new_remaining < 0:
            self._integrity_failure(
                layer_id,
                f"decrement of {quantity} exceeds remaining {model.remaining_qty}",
            )

        model.remaining_qty = new_remaining
        try:
            self._session.flush()
        except StaleDataError as exc:
            logger.warning("layer_version_conflict", extra={
                "layer_id": layer_id,
                "product_id": model.product_id,
            })
            raise ConcurrencyConflictError("InventoryLayer", layer_id) from exc

        logger.debug("layer_decremented", extra={
            "layer_id": layer_id,
            "quantity": quantity,
            "remaining_qty": new_remaining,
        })
        return self._model_to_domain(model)

    def record_change(self, product_id: int) -> int:
        """
        Bump the product's layer_version after a consumption and queue its
        cached reports for invalidation at commit.  Returns the new version.
        """
        return self._bump(self._load_product(product_id))

    def lock_product(self, product_id: int) -> Product:
        """
        Take a row lock on the product for the rest of the transaction.

        Serializes consumers of the same product on backends that support
        SELECT ... FOR UPDATE; SQLite serializes writers at the database
        level instead.
        """
        stmt = (
            select(ProductModel)
            .where(ProductModel.id == product_id)
            .with_for_update()
        )
        model = self._session.execute(stmt).scalars().first()
        if model is None:
            raise ProductNotFoundError(product_id)
        return Product(
            id=model.id,
            sku=model.sku,
            name=model.name,
            fallback_unit_cost=model.fallback_unit_cost,
            layer_version=model.layer_version,
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def open_layers(self, product_id: int) -> list[InventoryLayer]:
        """Layers with remaining_qty > 0 in FIFO order."""
        stmt = (
            select(InventoryLayerModel)
            .where(
                InventoryLayerModel.product_id == product_id,
                InventoryLayerModel.remaining_qty > 0,
            )
            .order_by(InventoryLayerModel.entry_date, InventoryLayerModel.id)
        )
        return [self._model_to_domain(m) for m in self._session.execute(stmt).scalars()]

    def layers_for_product(self, product_id: int) -> list[InventoryLayer]:
        """Every layer of the product, exhausted ones included, FIFO order."""
        stmt = (
            select(InventoryLayerModel)
            .where(InventoryLayerModel.product_id == product_id)
            .order_by(InventoryLayerModel.entry_date, InventoryLayerModel.id)
        )
        return [self._model_to_domain(m) for m in self._session.execute(stmt).scalars()]

    def all_open_layers(self) -> list[InventoryLayer]:
        """Open layers of every product, by product then FIFO order."""
        stmt = (
            select(InventoryLayerModel)
            .where(InventoryLayerModel.remaining_qty > 0)
            .order_by(
                InventoryLayerModel.product_id,
                InventoryLayerModel.entry_date,
                InventoryLayerModel.id,
            )
        )
        return [self._model_to_domain(m) for m in self._session.execute(stmt).scalars()]

    def get_layer(self, layer_id: int) -> InventoryLayer:
        model = self._session.get(InventoryLayerModel, layer_id)
        if model is None:
            raise LayerNotFoundError(layer_id)
        return self._model_to_domain(model)

    def find_by_source_ref(self, product_id: int, source_ref: str) -> list[InventoryLayer]:
        """Layers previously appended for this product under ``source_ref``."""
        stmt = (
            select(InventoryLayerModel)
            .where(
                InventoryLayerModel.product_id == product_id,
                InventoryLayerModel.source_ref == source_ref,
            )
            .order_by(InventoryLayerModel.id)
        )
        return [self._model_to_domain(m) for m in self._session.execute(stmt).scalars()]

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _load_product(self, product_id: int) -> ProductModel:
        model = self._session.get(ProductModel, product_id)
        if model is None:
            raise ProductNotFoundError(product_id)
        return model

    def _bump(self, product: ProductModel) -> int:
        product.layer_version = product.layer_version + 1
        self._session.flush()
        if self._cache is not None:
            self._cache.queue_invalidation(self._session, product.id)
        return product.layer_version

    @staticmethod
    def _integrity_failure(layer_id: int, reason: str) -> None:
        logger.error("layer_integrity_violation", extra={
            "layer_id": layer_id,
            "reason": reason,
        })
        raise DataIntegrityError("InventoryLayer", layer_id, reason)

    @staticmethod
    def _model_to_domain(model: InventoryLayerModel) -> InventoryLayer:
        return InventoryLayer(
            id=model.id,
            product_id=model.product_id,
            entry_date=model.entry_date,
            original_qty=model.original_qty,
            remaining_qty=model.remaining_qty,
            unit_cost=model.unit_cost,
            source_ref=model.source_ref,
        )
