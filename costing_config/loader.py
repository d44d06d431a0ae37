"""
Configuration Loader (``costing_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``costing_config.schema`` dataclasses.  Runtime callers go through
``costing_config.get_active_config()``; this module is its implementation
and is also used directly by tests.

Invariants enforced
-------------------
* Unknown top-level keys are rejected, so a typo never silently falls
  back to a default.
* ABC thresholds satisfy ``0 < a < b <= 1``.
* Aging buckets start at day 0, are contiguous, and end unbounded.
* Day counts are positive integers; urgent_days <= soon_days.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``ConfigurationError`` (wrapping ``yaml.YAMLError``).
* Any invalid value  -> ``ConfigurationError`` naming the offending key.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from costing_config.schema import (
    AbcConfig,
    CostingConfig,
    ReorderConfig,
    ReportCacheConfig,
    VelocityConfig,
)
from costing_engines.aging import AgeBucket, validate_buckets
from costing_kernel.domain.dtos import ProfitMetric, ShortagePolicy
from costing_kernel.exceptions import ConfigurationError

_KNOWN_SECTIONS = frozenset({
    "shortage_policy",
    "abc",
    "aging_buckets",
    "reorder",
    "velocity",
    "report_cache",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigurationError: if the file is not valid YAML or not a mapping.
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(str(path), f"invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(key, "must be a mapping")
    return value


def parse_decimal(key: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ConfigurationError(key, f"expected a number, got {value!r}")
    try:
        # str() first so YAML floats like 0.8 become Decimal("0.8")
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ConfigurationError(key, f"expected a number, got {value!r}") from exc


def parse_positive_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(key, f"expected a positive integer, got {value!r}")
    return value


def parse_abc(data: dict[str, Any]) -> AbcConfig:
    defaults = AbcConfig()
    a = parse_decimal("abc.a_threshold", data.get("a_threshold", defaults.a_threshold))
    b = parse_decimal("abc.b_threshold", data.get("b_threshold", defaults.b_threshold))
    if not (0 < a < b <= 1):
        raise ConfigurationError(
            "abc",
            f"thresholds must satisfy 0 < a_threshold < b_threshold <= 1 (got {a}, {b})",
        )
    raw_metric = data.get("metric", defaults.metric.value)
    try:
        metric = ProfitMetric(raw_metric)
    except ValueError as exc:
        raise ConfigurationError("abc.metric", f"unknown metric {raw_metric!r}") from exc
    return AbcConfig(a_threshold=a, b_threshold=b, metric=metric)


def parse_aging_buckets(raw: Any) -> tuple[AgeBucket, ...]:
    if not isinstance(raw, list):
        raise ConfigurationError("aging_buckets", "must be a list")
    try:
        buckets = tuple(
            AgeBucket(
                name=str(item["name"]),
                min_days=int(item["min_days"]),
                max_days=(
                    int(item["max_days"]) if item.get("max_days") is not None else None
                ),
            )
            for item in raw
        )
        validate_buckets(buckets)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError("aging_buckets", str(exc)) from exc
    return buckets


def parse_reorder(data: dict[str, Any]) -> ReorderConfig:
    defaults = ReorderConfig()
    values = {
        name: parse_positive_int(f"reorder.{name}", data.get(name, getattr(defaults, name)))
        for name in ("coverage_days", "lookback_days", "urgent_days", "soon_days")
    }
    if values["urgent_days"] > values["soon_days"]:
        raise ConfigurationError("reorder", "urgent_days must not exceed soon_days")
    return ReorderConfig(**values)


def parse_velocity(data: dict[str, Any]) -> VelocityConfig:
    defaults = VelocityConfig()
    hot = parse_decimal(
        "velocity.hot_sales_per_day",
        data.get("hot_sales_per_day", defaults.hot_sales_per_day),
    )
    stale = parse_decimal(
        "velocity.stale_sales_per_day",
        data.get("stale_sales_per_day", defaults.stale_sales_per_day),
    )
    if stale < 0 or stale >= hot:
        raise ConfigurationError(
            "velocity",
            "require 0 <= stale_sales_per_day < hot_sales_per_day",
        )
    return VelocityConfig(
        lookback_days=parse_positive_int(
            "velocity.lookback_days",
            data.get("lookback_days", defaults.lookback_days),
        ),
        hot_sales_per_day=hot,
        stale_sales_per_day=stale,
    )


def parse_config(data: dict[str, Any]) -> CostingConfig:
    """
    Parse a configuration document into a ``CostingConfig``.

    Missing sections take their defaults; unknown sections are rejected.

    Raises:
        ConfigurationError: on any invalid key or value.
    """
    unknown = sorted(set(data) - _KNOWN_SECTIONS)
    if unknown:
        raise ConfigurationError(unknown[0], "unknown configuration section")

    raw_policy = data.get("shortage_policy", ShortagePolicy.STRICT.value)
    try:
        policy = ShortagePolicy(raw_policy)
    except ValueError as exc:
        raise ConfigurationError(
            "shortage_policy", f"unknown policy {raw_policy!r}"
        ) from exc

    buckets = CostingConfig().aging_buckets
    if "aging_buckets" in data:
        buckets = parse_aging_buckets(data["aging_buckets"])

    cache = _section(data, "report_cache")

    return CostingConfig(
        shortage_policy=policy,
        abc=parse_abc(_section(data, "abc")),
        aging_buckets=buckets,
        reorder=parse_reorder(_section(data, "reorder")),
        velocity=parse_velocity(_section(data, "velocity")),
        report_cache=ReportCacheConfig(enabled=bool(cache.get("enabled", True))),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> CostingConfig:
    """Load and parse one YAML configuration file."""
    return parse_config(load_yaml_file(path))
