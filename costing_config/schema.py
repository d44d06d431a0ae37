"""
Costing configuration schema.

Frozen dataclasses that the loader parses ``defaults.yaml`` (or an override
file) into.  Field defaults mirror the shipped YAML so services can be
constructed with ``CostingConfig()`` in tests without touching the
filesystem.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from costing_engines.aging import INVENTORY_BUCKETS, AgeBucket
from costing_kernel.domain.dtos import ProfitMetric, ShortagePolicy

# ---------------------------------------------------------------------------
# Report tuning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AbcConfig:
    """Pareto cut points for ABC classification."""

    a_threshold: Decimal = Decimal("0.80")
    b_threshold: Decimal = Decimal("0.95")
    metric: ProfitMetric = ProfitMetric.REVENUE


@dataclass(frozen=True)
class ReorderConfig:
    """Purchase suggestion window and urgency cut-offs, in days."""

    coverage_days: int = 30
    lookback_days: int = 30
    urgent_days: int = 7
    soon_days: int = 14


@dataclass(frozen=True)
class VelocityConfig:
    """Sales-per-day thresholds for hot and stale products."""

    lookback_days: int = 30
    hot_sales_per_day: Decimal = Decimal("1")
    stale_sales_per_day: Decimal = Decimal("0.1")


@dataclass(frozen=True)
class ReportCacheConfig:
    enabled: bool = True


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CostingConfig:
    """
    Complete runtime configuration of the costing engine.

    ``checksum`` is empty for a default-constructed config and set to the
    SHA-256 of the parsed document when loaded from YAML.
    """

    shortage_policy: ShortagePolicy = ShortagePolicy.STRICT
    abc: AbcConfig = field(default_factory=AbcConfig)
    aging_buckets: tuple[AgeBucket, ...] = INVENTORY_BUCKETS
    reorder: ReorderConfig = field(default_factory=ReorderConfig)
    velocity: VelocityConfig = field(default_factory=VelocityConfig)
    report_cache: ReportCacheConfig = field(default_factory=ReportCacheConfig)
    checksum: str = ""
