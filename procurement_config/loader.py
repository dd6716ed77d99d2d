"""
YAML loader for procurement configuration files.

Reads a single YAML mapping and builds a ``ProcurementConfig``.  A file may
either hold the fields at top level or under a ``procurement:`` key, so the
settings can live alongside other sections of a deployment file.

Failure modes:
    * Missing file      -> ``FileNotFoundError`` propagates.
    * Malformed YAML    -> ``yaml.YAMLError`` propagates.
    * Non-mapping root  -> ``ValueError``.
    * Bad values / keys -> ``ValueError`` / ``TypeError`` from the schema.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from procurement_config.schema import ProcurementConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def load_config(path: Path | str) -> ProcurementConfig:
    """Parse ``path`` into a validated ProcurementConfig."""
    data = load_yaml_file(Path(path))
    section = data.get("procurement", data)
    if not isinstance(section, dict):
        raise ValueError(f"{path}: 'procurement' must be a mapping")
    return ProcurementConfig.from_dict(section)
