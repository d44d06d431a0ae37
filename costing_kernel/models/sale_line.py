"""
Module: costing_kernel.models.sale_line
Responsibility: ORM persistence for finalized sale lines, the revenue side of
    every profitability report.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity_sold > 0, unit_price_sold >= 0, discount_per_unit >= 0.
    - (sale_id, id) index supports per-sale rollups; (sale_date) supports
      date-range reports.

Audit relevance:
    Sale lines are owned by the sales module.  The costing engine treats a
    finalized line as immutable input and only ever reads it.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import Base, IdentityKey


class SaleLineModel(Base):
    """One product line of a finalized sale."""

    __tablename__ = "sale_lines"

    __table_args__ = (
        CheckConstraint("quantity_sold > 0", name="ck_sale_line_qty_positive"),
        CheckConstraint("unit_price_sold >= 0", name="ck_sale_line_price_non_negative"),
        CheckConstraint("discount_per_unit >= 0", name="ck_sale_line_discount_non_negative"),
        Index("idx_sale_line_sale", "sale_id", "id"),
        Index("idx_sale_line_date", "sale_date"),
        Index("idx_sale_line_product_date", "product_id", "sale_date"),
    )

    sale_id: Mapped[str] = mapped_column(String(100), nullable=False)

    product_id: Mapped[int] = mapped_column(
        IdentityKey,
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity_sold: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_price_sold: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    discount_per_unit: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    sale_date: Mapped[date] = mapped_column(Date, nullable=False)

    customer_segment: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<SaleLine {self.id}: sale={self.sale_id} product={self.product_id} "
            f"{self.quantity_sold} @ {self.unit_price_sold}>"
        )
