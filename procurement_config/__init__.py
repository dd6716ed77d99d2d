"""
procurement_config -- single public entrypoint for procurement configuration.

Responsibility:
    Provides the way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive individual values from the
    facade; they never read files or environment variables themselves.

Architecture position:
    Configuration -- sits above ``procurement_kernel`` and below
    ``procurement_services``.  The kernel MUST NEVER import from
    ``procurement_config``.

Failure modes:
    - ``FileNotFoundError`` -- ``PROCUREMENT_CONFIG`` names a missing file.
    - ``ValueError`` / ``TypeError`` -- schema validation failures.

Audit relevance:
    Every ``get_active_config()`` call emits a ``procurement_config_trace``
    log entry naming the source file (or ``defaults``).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from procurement_config.loader import load_config
from procurement_config.schema import ProcurementConfig

_logger = logging.getLogger("procurement_kernel.config")

CONFIG_ENV_VAR = "PROCUREMENT_CONFIG"


def get_active_config(path: Path | str | None = None) -> ProcurementConfig:
    """
    Return the active procurement configuration.

    Resolution order: the explicit ``path``, then the file named by the
    ``PROCUREMENT_CONFIG`` environment variable, then built-in defaults.
    """
    source = path or os.environ.get(CONFIG_ENV_VAR)
    if source:
        config = load_config(source)
    else:
        config = ProcurementConfig.with_defaults()

    _logger.info(
        "procurement_config_trace",
        extra={
            "source": str(source) if source else "defaults",
            "max_retries": config.max_retries,
            "allow_negative_stock": config.allow_negative_stock,
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "ProcurementConfig",
    "get_active_config",
    "load_config",
]
