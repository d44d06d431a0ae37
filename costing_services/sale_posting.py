"""
costing_services.sale_posting -- Record a sale line and cost it in one go.

Responsibility:
    Validate and insert a finalized sale line, then run FIFO consumption
    for it in the same session, so the caller's transaction either holds
    both the line and its consumption records or neither.

Architecture position:
    Services -- thin orchestration over SaleLineModel + FifoConsumptionEngine.

Failure modes:
    - ValidationError on non-positive quantity, negative price or discount,
      or a discount larger than the unit price.
    - Everything FifoConsumptionEngine.consume raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from costing_config.schema import CostingConfig
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import ConsumptionResult, SaleLine, ShortagePolicy
from costing_kernel.exceptions import ProductNotFoundError, ValidationError
from costing_kernel.logging_config import LogContext, get_logger
from costing_kernel.models.product import ProductModel
from costing_kernel.models.sale_line import SaleLineModel
from costing_services.consumption_service import FifoConsumptionEngine

logger = get_logger("services.sale_posting")


@dataclass(frozen=True, slots=True)
class PostedSaleLine:
    sale_line: SaleLine
    consumption: ConsumptionResult


class SalePostingService:
    """
    Contract:
        Never commits.  On any exception the caller rolls back, which
        removes the inserted line together with any partial writes.
    """

    def __init__(
        self,
        session: Session,
        consumption: FifoConsumptionEngine | None = None,
        clock: Clock | None = None,
        config: CostingConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._consumption = consumption or FifoConsumptionEngine(
            session, clock=self._clock, config=config
        )

    def post_sale_line(
        self,
        sale_id: str,
        product_id: int,
        quantity: Decimal,
        unit_price: Decimal,
        sale_date: date,
        discount_per_unit: Decimal = Decimal("0"),
        customer_segment: str | None = None,
        policy: ShortagePolicy | None = None,
    ) -> PostedSaleLine:
        if quantity <= 0:
            raise ValidationError("quantity", quantity, "must be positive")
        if unit_price < 0:
            raise ValidationError("unit_price", unit_price, "must not be negative")
        if discount_per_unit < 0:
            raise ValidationError("discount_per_unit", discount_per_unit, "must not be negative")
        if discount_per_unit > unit_price:
            raise ValidationError(
                "discount_per_unit", discount_per_unit, "must not exceed unit price"
            )
        if self._session.get(ProductModel, product_id) is None:
            raise ProductNotFoundError(product_id)

        with LogContext.bind(sale_id=sale_id):
            model = SaleLineModel(
                sale_id=sale_id,
                product_id=product_id,
                quantity_sold=quantity,
                unit_price_sold=unit_price,
                discount_per_unit=discount_per_unit,
                sale_date=sale_date,
                customer_segment=customer_segment,
            )
            self._session.add(model)
            self._session.flush()

            logger.info("sale_line_recorded", extra={
                "sale_line_id": model.id,
                "product_id": product_id,
                "quantity": quantity,
                "unit_price": unit_price,
            })

            result = self._consumption.consume(
                product_id=product_id,
                quantity=quantity,
                sale_line_id=model.id,
                policy=policy,
            )

        return PostedSaleLine(
            sale_line=SaleLine(
                id=model.id,
                sale_id=sale_id,
                product_id=product_id,
                quantity_sold=quantity,
                unit_price_sold=unit_price,
                discount_per_unit=discount_per_unit,
                sale_date=sale_date,
                customer_segment=customer_segment,
            ),
            consumption=result,
        )
