"""
procurement_config.schema
=========================

Responsibility:
    Configuration schema for the procurement lifecycle.  Defines the
    policy knobs, their validation rules and sensible defaults.  Actual
    values are loaded from YAML at runtime via
    ``procurement_config.get_active_config()``.

Architecture:
    Configuration layer.  Consumed by the ProcurementService facade, which
    passes individual values into the kernel services.  MUST NOT be
    imported by procurement_kernel.

Invariants enforced:
    - Tax percentages lie in 0..100 and are ``Decimal`` -- never ``float``.
    - ``default_po_validity_days`` >= 0, ``max_retries`` >= 1,
      ``request_number_width`` >= 1.
    - Number prefixes are non-blank.

Failure modes:
    - Invalid configuration values -> ``ValueError`` from ``__post_init__``.
    - Unknown keys in ``from_dict`` -> ``TypeError``.

Audit relevance:
    ``allow_negative_stock`` and ``auto_close_on_full_delivery`` change
    which stock and request states are reachable.  Changes to either
    should be audited.
"""

from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Self

from procurement_kernel.db.types import HUNDRED, ZERO, to_decimal
from procurement_kernel.logging_config import get_logger

logger = get_logger("config.schema")

_DECIMAL_FIELDS = ("default_sgst_percent", "default_cgst_percent", "low_stock_threshold")


@dataclass
class ProcurementConfig:
    """
    Configuration schema for the procurement lifecycle.

    Contract:
        All fields have defaults.  ``__post_init__`` validates every
        constraint and raises ``ValueError`` on violation.

    Non-goals:
        - Does NOT hold connection settings; the database URL is passed to
          ``init_engine_from_url`` by the caller.
    """

    # Inventory
    allow_negative_stock: bool = False
    low_stock_threshold: Decimal = Decimal("20")

    # Request lifecycle
    auto_resubmit_on_reject: bool = True
    auto_close_on_full_delivery: bool = False
    request_number_width: int = 3

    # Purchase orders
    default_sgst_percent: Decimal = Decimal("9")
    default_cgst_percent: Decimal = Decimal("9")
    default_po_validity_days: int = 30
    po_number_prefix: str = "PO"

    # Deliveries
    delivery_number_prefix: str = "DC"

    # Concurrency
    max_retries: int = 3

    def __post_init__(self):
        for name in _DECIMAL_FIELDS:
            setattr(self, name, to_decimal(getattr(self, name), name))

        for name in ("default_sgst_percent", "default_cgst_percent"):
            value = getattr(self, name)
            if value < ZERO or value > HUNDRED:
                raise ValueError(f"{name} must be between 0 and 100, got {value}")
        if self.low_stock_threshold < ZERO:
            raise ValueError("low_stock_threshold cannot be negative")
        if self.default_po_validity_days < 0:
            raise ValueError("default_po_validity_days cannot be negative")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.request_number_width < 1:
            raise ValueError("request_number_width must be at least 1")
        if not self.po_number_prefix.strip() or not self.delivery_number_prefix.strip():
            raise ValueError("number prefixes cannot be blank")

        logger.info(
            "procurement_config_initialized",
            extra={
                "allow_negative_stock": self.allow_negative_stock,
                "auto_resubmit_on_reject": self.auto_resubmit_on_reject,
                "auto_close_on_full_delivery": self.auto_close_on_full_delivery,
                "default_gst_percent": str(
                    self.default_sgst_percent + self.default_cgst_percent
                ),
                "max_retries": self.max_retries,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the standard defaults."""
        logger.info("procurement_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g. a parsed YAML file)."""
        logger.info(
            "procurement_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise TypeError(f"Unknown procurement config keys: {', '.join(unknown)}")
        values = dict(data)
        # YAML yields floats for values like 2.5; go through str, never float
        for name in _DECIMAL_FIELDS:
            if isinstance(values.get(name), float):
                values[name] = str(values[name])
        return cls(**values)
