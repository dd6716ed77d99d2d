"""
Command objects passed into the kernel services.

Each command is a frozen dataclass holding exactly what an operation needs.
Callers (forms, scripts, tests) build commands; services validate them and
never read any caller-side state beyond the command itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from procurement_kernel.domain.dtos import (
    DeliveryMode,
    EvidenceKind,
    PaymentStatus,
)


@dataclass(frozen=True)
class RequestItemInput:
    """One material line raised by a site engineer."""
    item_name: str
    quantity: Decimal
    unit: str
    required_by: date | None = None
    is_urgent: bool = False
    description: str | None = None
    specs_brand: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class QuoteInput:
    """A vendor quote as entered by the purchase officer."""
    vendor_id: UUID
    unit_rate: Decimal
    notes: str | None = None
    discount_percent: Decimal = Decimal("0")
    gst_percent: Decimal | None = None
    per_unit_basis: Decimal = Decimal("1")


@dataclass(frozen=True)
class PurchaseOrderItemInput:
    """One independently priced line of a direct purchase order."""
    quantity: Decimal
    unit: str
    unit_rate: Decimal
    description: str | None = None
    request_id: UUID | None = None
    hsn_code: str | None = None
    per_unit_basis: Decimal = Decimal("1")
    discount_percent: Decimal = Decimal("0")
    sgst_percent: Decimal = Decimal("0")
    cgst_percent: Decimal = Decimal("0")


@dataclass(frozen=True)
class DeliveryItemInput:
    """Quantity of one request carried on this trip."""
    request_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class DeliveryMeta:
    """Transport and payment details of a delivery challan."""
    mode: DeliveryMode
    receiver_name: str
    carrier_name: str | None = None
    carrier_contact: str | None = None
    vehicle_number: str | None = None
    purchaser_name: str | None = None
    payment_amount: Decimal | None = None
    payment_status: PaymentStatus = PaymentStatus.PENDING


@dataclass(frozen=True)
class FileUpload:
    """Raw file handed to the file storage collaborator."""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class EvidenceUpload:
    """A photo destined for one evidence slot of a delivery challan."""
    kind: EvidenceKind
    upload: FileUpload
