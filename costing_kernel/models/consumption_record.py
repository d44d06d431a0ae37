"""
Module: costing_kernel.models.consumption_record
Responsibility: ORM persistence for consumption records, the write-once
    journal that makes COGS reconstructible.  One row per (sale line, layer)
    pair touched by a FIFO consumption.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity_consumed > 0 and unit_cost_at_consumption >= 0.
    - (sale_line_id, layer_id) is unique: a sale line touches a layer once.
    - Write-once: no updates, no deletes (ORM listeners in db/immutability.py).
    - layer_id IS NULL exactly when estimated is true (degrade-mode shortfall
      priced at the product's fallback cost).  Enforced by the consumption
      engine, which is the only writer.

Audit relevance:
    For every layer, SUM(quantity_consumed) == original_qty - remaining_qty.
    That identity is what reconciliation checks rely on.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import Base, IdentityKey


class ConsumptionRecordModel(Base):
    """Immutable record of quantity taken from one layer for one sale line."""

    __tablename__ = "consumption_records"

    __table_args__ = (
        CheckConstraint("quantity_consumed > 0", name="ck_consumption_qty_positive"),
        CheckConstraint(
            "unit_cost_at_consumption >= 0",
            name="ck_consumption_cost_non_negative",
        ),
        UniqueConstraint("sale_line_id", "layer_id", name="uq_consumption_sale_line_layer"),
        Index("idx_consumption_layer", "layer_id"),
        Index("idx_consumption_product_time", "product_id", "consumed_at"),
    )

    sale_line_id: Mapped[int] = mapped_column(
        IdentityKey,
        ForeignKey("sale_lines.id"),
        nullable=False,
    )

    layer_id: Mapped[int | None] = mapped_column(
        IdentityKey,
        ForeignKey("inventory_layers.id"),
        nullable=True,
    )

    # Denormalized for per-product COGS queries without a layer join
    product_id: Mapped[int] = mapped_column(
        IdentityKey,
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity_consumed: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost_at_consumption: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
    )

    consumed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    estimated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @property
    def line_cost(self) -> Decimal:
        return self.quantity_consumed * self.unit_cost_at_consumption

    def __repr__(self) -> str:
        return (
            f"<ConsumptionRecord {self.id}: sale_line={self.sale_line_id} "
            f"layer={self.layer_id} {self.quantity_consumed} @ "
            f"{self.unit_cost_at_consumption}>"
        )
