"""
costing_services.catalog -- Product master records used by the engine.

Responsibility:
    Create and read products and maintain the fallback (list) unit cost
    that the degrade shortage policy prices shortfalls at.

Architecture position:
    Services -- stateful orchestration over kernel models.

Invariants enforced:
    - sku is unique; a duplicate is rejected before insert.
    - fallback_unit_cost is None or >= 0.

Failure modes:
    - ValidationError on blank sku/name, duplicate sku, negative cost.
    - ProductNotFoundError for an unknown id.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_kernel.domain.dtos import Product
from costing_kernel.exceptions import ProductNotFoundError, ValidationError
from costing_kernel.logging_config import get_logger
from costing_kernel.models.product import ProductModel

logger = get_logger("services.catalog")


class ProductCatalog:
    """
    Product master maintenance.

    Contract:
        Receives Session via constructor injection.  Never commits.
    """

    def __init__(self, session: Session):
        self._session = session

    def add_product(
        self,
        sku: str,
        name: str,
        fallback_unit_cost: Decimal | None = None,
    ) -> Product:
        if not sku or not sku.strip():
            raise ValidationError("sku", sku, "must not be blank")
        if not name or not name.strip():
            raise ValidationError("name", name, "must not be blank")
        self._check_cost(fallback_unit_cost)
        if self.get_by_sku(sku) is not None:
            raise ValidationError("sku", sku, "already exists")

        model = ProductModel(
            sku=sku,
            name=name,
            fallback_unit_cost=fallback_unit_cost,
            layer_version=0,
        )
        self._session.add(model)
        self._session.flush()

        logger.info("product_added", extra={
            "product_id": model.id,
            "sku": sku,
            "has_fallback_cost": fallback_unit_cost is not None,
        })
        return self._model_to_domain(model)

    def get_product(self, product_id: int) -> Product:
        """
        Raises:
            ProductNotFoundError: If no product has this id.
        """
        return self._model_to_domain(self._load(product_id))

    def get_by_sku(self, sku: str) -> Product | None:
        stmt = select(ProductModel).where(ProductModel.sku == sku)
        model = self._session.execute(stmt).scalars().first()
        return self._model_to_domain(model) if model is not None else None

    def list_products(self) -> list[Product]:
        stmt = select(ProductModel).order_by(ProductModel.id)
        return [self._model_to_domain(m) for m in self._session.execute(stmt).scalars()]

    def set_fallback_cost(self, product_id: int, unit_cost: Decimal | None) -> Product:
        """Set or clear the price used for degrade-mode shortfalls."""
        self._check_cost(unit_cost)
        model = self._load(product_id)
        previous = model.fallback_unit_cost
        model.fallback_unit_cost = unit_cost
        self._session.flush()

        logger.info("product_fallback_cost_set", extra={
            "product_id": product_id,
            "previous": previous,
            "fallback_unit_cost": unit_cost,
        })
        return self._model_to_domain(model)

    def _load(self, product_id: int) -> ProductModel:
        model = self._session.get(ProductModel, product_id)
        if model is None:
            raise ProductNotFoundError(product_id)
        return model

    @staticmethod
    def _check_cost(unit_cost: Decimal | None) -> None:
        if unit_cost is not None and unit_cost < 0:
            raise ValidationError("fallback_unit_cost", unit_cost, "must not be negative")

    @staticmethod
    def _model_to_domain(model: ProductModel) -> Product:
        return Product(
            id=model.id,
            sku=model.sku,
            name=model.name,
            fallback_unit_cost=model.fallback_unit_cost,
            layer_version=model.layer_version,
        )
