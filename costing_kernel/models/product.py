"""
Module: costing_kernel.models.product
Responsibility: ORM persistence for the product master record the costing
    engine needs: display name, the fallback (list) purchase price used by the
    degrade shortage policy, and the per-product layer version counter.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - sku is unique.
    - layer_version only increases.  It is bumped on every layer append and
      every consumption for the product and is the invalidation key for
      cached cost snapshots.

Audit relevance:
    The product row is also the lock target that serializes concurrent
    consumption of the same product (SELECT ... FOR UPDATE).
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import Base


class ProductModel(Base):
    """
    Product master data consumed by the costing engine.

    Contract:
        Owned by the catalog; the costing engine only reads it, except for
        bumping layer_version.

    Non-goals:
        - Does NOT store on-hand quantity.  On-hand is always derived from
          open inventory layers.
    """

    __tablename__ = "products"

    __table_args__ = (
        CheckConstraint(
            "fallback_unit_cost IS NULL OR fallback_unit_cost >= 0",
            name="ck_product_fallback_cost_non_negative",
        ),
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # List/reference purchase price; only used for degrade-mode shortfalls
    fallback_unit_cost: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9),
        nullable=True,
    )

    layer_version: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<Product {self.id}: {self.sku} v{self.layer_version}>"
