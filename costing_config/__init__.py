"""
costing_config -- single public entrypoint for costing configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive a ``CostingConfig`` by
    injection; none of them read files or environment variables.

Architecture position:
    Configuration -- YAML-driven settings, validated at load time.
    Sits above ``costing_kernel`` and ``costing_engines`` and below
    ``costing_services``.  The kernel MUST NEVER import from here.

Invariants enforced:
    - Single entrypoint: all runtime config flows through
      ``get_active_config()``.
    - Load-time validation: an invalid document never produces a config.
    - Deterministic checksum: the same document always yields the same
      checksum.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ConfigurationError`` -- the document is malformed or inconsistent.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``COSTING_CONFIG_TRACE`` log entry with the source path and checksum,
    which ties report output back to the settings that produced it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from costing_config.loader import load_config
from costing_config.schema import (
    AbcConfig,
    CostingConfig,
    ReorderConfig,
    ReportCacheConfig,
    VelocityConfig,
)

_logger = logging.getLogger("costing_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> CostingConfig:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned config has passed validation.
        - A ``COSTING_CONFIG_TRACE`` log entry is emitted on every call.

    Non-goals:
        - Does NOT cache; callers hold the returned config.

    Args:
        path: YAML file to load.  Defaults to the packaged defaults.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If validation fails.
    """
    source = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = load_config(source)

    _logger.info(
        "COSTING_CONFIG_TRACE",
        extra={
            "trace_type": "COSTING_CONFIG_TRACE",
            "source": str(source),
            "checksum": config.checksum,
            "shortage_policy": config.shortage_policy.value,
            "abc_metric": config.abc.metric.value,
            "aging_bucket_count": len(config.aging_buckets),
            "report_cache_enabled": config.report_cache.enabled,
        },
    )

    return config


__all__ = [
    "AbcConfig",
    "CostingConfig",
    "DEFAULT_CONFIG_PATH",
    "ReorderConfig",
    "ReportCacheConfig",
    "VelocityConfig",
    "get_active_config",
]
