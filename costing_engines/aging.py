"""
Module: costing_engines.aging
Responsibility:
    Calculate the age of open inventory layers and classify their value into
    configurable aging buckets.  Drives slow-moving stock analysis.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import costing_kernel/domain.

Invariants enforced:
    - Purity: no clock access, no I/O.  ``as_of_date`` is always passed in.
    - Decimal-only arithmetic for values.
    - Every open layer lands in exactly one bucket; a layer dated after
      ``as_of_date`` (negative age) lands in the first bucket.
    - Bucket totals sum to the total on-hand value of the aged layers.

Failure modes:
    - ValueError when a bucket is malformed or a bucket set is not
      contiguous from day 0 with an unbounded tail.

Audit relevance:
    Aging is recomputed on every query from layer state; nothing here is
    cached or persisted.  Each report build is traced via ``@traced_engine``.

Usage:
    from costing_engines.aging import AgingCalculator
    from datetime import date

    calculator = AgingCalculator()
    age = calculator.calculate_age(
        entry_date=date(2024, 1, 1),
        as_of_date=date(2024, 4, 10),
    )  # Returns 100

    bucket = calculator.classify(age)  # Returns AgeBucket("91-180", 91, 180)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Sequence

from costing_engines.tracer import traced_engine
from costing_kernel.domain.dtos import ZERO, InventoryLayer
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.aging")


@dataclass(frozen=True)
class AgeBucket:
    """
    Definition of an aging bucket.

    Contract:
        Frozen dataclass representing a contiguous range of days.
    Guarantees:
        - min_days >= 0.
        - max_days >= min_days (when bounded).
    Non-goals:
        - Does not check a bucket *set*; see ``validate_buckets``.
    """

    name: str
    min_days: int
    max_days: int | None  # None = unbounded (e.g., 181+)

    def __post_init__(self) -> None:
        if self.min_days < 0:
            raise ValueError("min_days cannot be negative")
        if self.max_days is not None and self.max_days < self.min_days:
            raise ValueError("max_days cannot be less than min_days")

    def contains(self, age_days: int) -> bool:
        """Check if age falls within this bucket."""
        if age_days < self.min_days:
            return False
        if self.max_days is None:
            return True
        return age_days <= self.max_days

    @property
    def is_unbounded(self) -> bool:
        """True if bucket has no upper limit."""
        return self.max_days is None


INVENTORY_BUCKETS: tuple[AgeBucket, ...] = (
    AgeBucket("0-30", 0, 30),
    AgeBucket("31-90", 31, 90),
    AgeBucket("91-180", 91, 180),
    AgeBucket("181+", 181, None),
)


def validate_buckets(buckets: Sequence[AgeBucket]) -> None:
    """
    Check that ``buckets`` partition [0, inf) in order.

    Raises:
        ValueError: If the set is empty, does not start at 0, has a gap or
            overlap, has duplicate names, or lacks an unbounded final bucket.
    """
    if not buckets:
        raise ValueError("at least one aging bucket is required")
    if buckets[0].min_days != 0:
        raise ValueError("first aging bucket must start at day 0")
    names = [b.name for b in buckets]
    if len(set(names)) != len(names):
        raise ValueError("aging bucket names must be unique")
    for prev, nxt in zip(buckets, buckets[1:]):
        if prev.max_days is None:
            raise ValueError(f"bucket '{prev.name}' is unbounded but not last")
        if nxt.min_days != prev.max_days + 1:
            raise ValueError(
                f"buckets '{prev.name}' and '{nxt.name}' are not contiguous"
            )
    if not buckets[-1].is_unbounded:
        raise ValueError("last aging bucket must be unbounded")


@dataclass(frozen=True)
class AgedLayer:
    """
    An open layer with its age classification.

    Guarantees:
        - ``bucket.contains(age_days)``, or age_days < 0 and ``bucket`` is
          the first bucket.
    """

    layer_id: int
    product_id: int
    entry_date: date
    remaining_qty: Decimal
    unit_cost: Decimal
    age_days: int
    bucket: AgeBucket

    @property
    def value(self) -> Decimal:
        return self.remaining_qty * self.unit_cost


@dataclass(frozen=True)
class AgingReport:
    """
    Aged on-hand value as of one date.

    Guarantees:
        - ``total_by_bucket()`` has an entry (possibly zero) for every
          bucket, in bucket order.
        - Sum of ``total_by_bucket()`` equals ``total_value``.
    """

    as_of_date: date
    buckets: tuple[AgeBucket, ...]
    items: tuple[AgedLayer, ...]

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def total_value(self) -> Decimal:
        return sum((i.value for i in self.items), ZERO)

    def total_by_bucket(self) -> dict[str, Decimal]:
        """Sum layer values by bucket name."""
        result: dict[str, Decimal] = {b.name: ZERO for b in self.buckets}
        for item in self.items:
            result[item.bucket.name] += item.value
        return result

    def items_in_bucket(self, bucket_name: str) -> tuple[AgedLayer, ...]:
        return tuple(i for i in self.items if i.bucket.name == bucket_name)


class AgingCalculator:
    """
    Calculate aging for inventory layers.

    Contract:
        Pure functions -- no I/O, no database access.
    Guarantees:
        - ``classify`` maps every integer age to exactly one bucket.
    Non-goals:
        - Does not weight by anything other than remaining value.
    """

    def __init__(self, buckets: Sequence[AgeBucket] | None = None):
        self.buckets: tuple[AgeBucket, ...] = tuple(buckets or INVENTORY_BUCKETS)
        validate_buckets(self.buckets)

    def calculate_age(self, entry_date: date, as_of_date: date) -> int:
        """Age in whole days; negative if the layer is dated after as_of_date."""
        return (as_of_date - entry_date).days

    def classify(self, age_days: int) -> AgeBucket:
        """
        Classify age into a bucket.

        Postconditions:
            - Negative ages map to the first bucket.
        """
        if age_days < 0:
            logger.debug("age_classification_negative", extra={
                "age_days": age_days,
            })
            return self.buckets[0]

        for bucket in self.buckets:
            if bucket.contains(age_days):
                return bucket

        # Unreachable for a validated bucket set
        raise ValueError(f"Age {age_days} does not fit any bucket")

    def age_layer(self, layer: InventoryLayer, as_of_date: date) -> AgedLayer:
        age_days = self.calculate_age(layer.entry_date, as_of_date)
        return AgedLayer(
            layer_id=layer.id,
            product_id=layer.product_id,
            entry_date=layer.entry_date,
            remaining_qty=layer.remaining_qty,
            unit_cost=layer.unit_cost,
            age_days=age_days,
            bucket=self.classify(age_days),
        )

    @traced_engine("aging", "1.0", fingerprint_fields=("layers", "as_of_date"))
    def build_report(
        self,
        *,
        layers: Sequence[InventoryLayer],
        as_of_date: date,
    ) -> AgingReport:
        """
        Age every open layer in ``layers`` as of ``as_of_date``.

        Exhausted layers carry no value and are left out.
        """
        items = tuple(
            self.age_layer(layer, as_of_date)
            for layer in layers
            if layer.is_open
        )

        logger.info("aging_report_generated", extra={
            "as_of_date": as_of_date.isoformat(),
            "item_count": len(items),
            "bucket_count": len(self.buckets),
        })

        return AgingReport(
            as_of_date=as_of_date,
            buckets=self.buckets,
            items=items,
        )
