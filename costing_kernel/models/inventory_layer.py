"""
Module: costing_kernel.models.inventory_layer
Responsibility: ORM persistence for inventory cost layers.  Each layer is a
    discrete batch of inventory received at a given date and unit cost.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/ or outer layers.

Invariants enforced:
    - original_qty > 0 and unit_cost >= 0 (check constraints; also validated
      by the layer store before insert).
    - 0 <= remaining_qty <= original_qty (check constraints).
    - Immutable except remaining_qty, which only decreases (ORM listeners in
      db/immutability.py).
    - FIFO ordering support: (product_id, entry_date, id) composite index.
    - Optimistic concurrency: ``version`` is the mapper's version_id_col, so an
      UPDATE against a stale row matches zero rows and raises StaleDataError.

Failure modes:
    - IntegrityError if a raw write violates a check constraint.
    - StaleDataError on flush when another transaction decremented first.

Audit relevance:
    Layers are never deleted.  Exhausted layers (remaining_qty == 0) are
    retained so aging history and COGS reconciliation stay possible.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import Base, IdentityKey


class InventoryLayerModel(Base):
    """
    Persistent storage for one purchase (or upward adjustment) cost layer.

    Contract:
        Created by LayerStore.append_layer; mutated only by
        LayerStore.decrement_layer on behalf of the consumption engine.

    Guarantees:
        - Open (remaining == original) -> PartiallyConsumed -> Exhausted,
          never back.
    """

    __tablename__ = "inventory_layers"

    __table_args__ = (
        CheckConstraint("original_qty > 0", name="ck_layer_original_qty_positive"),
        CheckConstraint("unit_cost >= 0", name="ck_layer_unit_cost_non_negative"),
        CheckConstraint("remaining_qty >= 0", name="ck_layer_remaining_non_negative"),
        CheckConstraint(
            "remaining_qty <= original_qty",
            name="ck_layer_remaining_within_original",
        ),
        # Query: open layers for a product in FIFO order
        Index("idx_layer_product_fifo", "product_id", "entry_date", "id"),
        # Query: purchasing dedup by source reference
        Index("idx_layer_source_ref", "product_id", "source_ref"),
    )

    product_id: Mapped[int] = mapped_column(
        IdentityKey,
        ForeignKey("products.id"),
        nullable=False,
    )

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    original_qty: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    remaining_qty: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    source_ref: Mapped[str | None] = mapped_column(String(200), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_open(self) -> bool:
        return self.remaining_qty > 0

    @property
    def is_exhausted(self) -> bool:
        return self.remaining_qty == 0

    def __repr__(self) -> str:
        return (
            f"<InventoryLayer {self.id}: product={self.product_id} "
            f"{self.remaining_qty}/{self.original_qty} @ {self.unit_cost} "
            f"on {self.entry_date}>"
        )
