"""
Procurement Domain DTOs.

The nouns of the lifecycle: requests, vendors, sites, cost comparisons,
purchase orders, delivery challans, inventory items.  Every selector and
service returns these frozen dataclasses, never ORM instances.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class RequestStatus(str, Enum):
    """Request lifecycle states."""
    SUBMITTED = "submitted"
    READY_FOR_CC = "ready_for_cc"
    CC_PENDING = "cc_pending"
    CC_APPROVED = "cc_approved"
    CC_REJECTED = "cc_rejected"
    READY_FOR_PO = "ready_for_po"
    PO_ISSUED = "po_issued"
    DELIVERY_STAGE = "delivery_stage"
    DELIVERED = "delivered"
    CLOSED = "closed"


# States from which a direct PO may pick a request up
PRE_PO_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.SUBMITTED,
    RequestStatus.READY_FOR_CC,
    RequestStatus.CC_REJECTED,
    RequestStatus.READY_FOR_PO,
})

# States in which a request accepts new delivery challans
DELIVERABLE_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.PO_ISSUED,
    RequestStatus.DELIVERY_STAGE,
})


class ComparisonDecision(str, Enum):
    """Cost comparison decision states."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Decisions that count as the request's active comparison
ACTIVE_DECISIONS: frozenset[ComparisonDecision] = frozenset({
    ComparisonDecision.PENDING,
    ComparisonDecision.APPROVED,
})


class DecisionOutcome(str, Enum):
    """Manager's verdict on a pending comparison."""
    APPROVE = "approve"
    REJECT = "reject"


class PurchaseOrderStatus(str, Enum):
    """Purchase order states. Lines never change; only this flag does."""
    ISSUED = "issued"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class DeliveryStatus(str, Enum):
    """Delivery challan states."""
    PENDING = "pending"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DeliveryItemStatus(str, Enum):
    """Per-item delivery states; items move independently."""
    PENDING = "pending"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DeliveryMode(str, Enum):
    """How the goods travel to site."""
    PUBLIC = "public"      # porter / public transport
    PRIVATE = "private"    # own vehicle
    VENDOR = "vendor"      # vendor-arranged


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class EvidenceKind(str, Enum):
    """Photo slots on a delivery challan."""
    LOADING = "loading"
    INVOICE = "invoice"
    RECEIPT = "receipt"


class StockReason(str, Enum):
    """Why central stock moved."""
    DELIVERY_CONFIRMED = "delivery_confirmed"
    MANUAL_CORRECTION = "manual_correction"
    INITIAL_STOCK = "initial_stock"


class SiteType(str, Enum):
    SITE = "site"
    INVENTORY = "inventory"
    OTHER = "other"


class NoteKind(str, Enum):
    """Request timeline entries: free-text notes or transition logs."""
    NOTE = "note"
    LOG = "log"


@dataclass(frozen=True)
class FileRef:
    """A stored file as returned by the file storage collaborator."""
    url: str
    key: str


@dataclass(frozen=True)
class RequestInfo:
    """A single material need raised by a site engineer."""
    id: UUID
    request_number: str
    site_id: UUID
    item_name: str
    quantity: Decimal
    unit: str
    status: RequestStatus
    created_by_id: UUID
    required_by: date | None = None
    is_urgent: bool = False
    description: str | None = None
    specs_brand: str | None = None
    notes: str | None = None
    ordered_quantity: Decimal | None = None
    rejected_comparison_id: UUID | None = None

    @property
    def effective_ordered_quantity(self) -> Decimal:
        """Quantity deliveries reconcile against."""
        if self.ordered_quantity is not None:
            return self.ordered_quantity
        return self.quantity


@dataclass(frozen=True)
class VendorInfo:
    id: UUID
    company_name: str
    contact_name: str
    email: str
    phone: str
    gst_number: str
    address: str
    is_active: bool = True


@dataclass(frozen=True)
class SiteInfo:
    id: UUID
    name: str
    site_type: str
    is_active: bool = True
    code: str | None = None
    address: str | None = None
    description: str | None = None
    latitude: Decimal | None = None
    longitude: Decimal | None = None


@dataclass(frozen=True)
class QuoteInfo:
    """One vendor's quote inside a comparison, in submission order."""
    id: UUID
    vendor_id: UUID
    unit_rate: Decimal
    position: int
    notes: str | None = None
    discount_percent: Decimal = Decimal("0")
    gst_percent: Decimal | None = None
    per_unit_basis: Decimal = Decimal("1")


@dataclass(frozen=True)
class ComparisonInfo:
    id: UUID
    request_id: UUID
    decision: ComparisonDecision
    created_by_id: UUID
    quotes: tuple[QuoteInfo, ...] = field(default_factory=tuple)
    selected_quote_id: UUID | None = None
    manager_note: str | None = None
    decided_by_id: UUID | None = None
    decided_at: datetime | None = None

    @property
    def selected_quote(self) -> QuoteInfo | None:
        for quote in self.quotes:
            if quote.id == self.selected_quote_id:
                return quote
        return None


@dataclass(frozen=True)
class PurchaseOrderLineInfo:
    id: UUID
    line_number: int
    quantity: Decimal
    unit: str
    unit_rate: Decimal
    line_total: Decimal
    description: str = ""
    request_id: UUID | None = None
    hsn_code: str | None = None
    per_unit_basis: Decimal = Decimal("1")
    discount_percent: Decimal = Decimal("0")
    sgst_percent: Decimal = Decimal("0")
    cgst_percent: Decimal = Decimal("0")


@dataclass(frozen=True)
class PurchaseOrderInfo:
    id: UUID
    po_number: str
    vendor_id: UUID
    site_id: UUID
    valid_till: date
    status: PurchaseOrderStatus
    is_direct: bool
    total_amount: Decimal
    created_by_id: UUID
    lines: tuple[PurchaseOrderLineInfo, ...] = field(default_factory=tuple)
    comparison_id: UUID | None = None
    notes: str | None = None
    cancelled_reason: str | None = None

    @property
    def request_ids(self) -> tuple[UUID, ...]:
        """Distinct linked requests, in line order."""
        seen: list[UUID] = []
        for line in self.lines:
            if line.request_id is not None and line.request_id not in seen:
                seen.append(line.request_id)
        return tuple(seen)


@dataclass(frozen=True)
class DeliveryItemInfo:
    id: UUID
    delivery_id: UUID
    request_id: UUID
    quantity: Decimal
    status: DeliveryItemStatus
    delivered_at: datetime | None = None


@dataclass(frozen=True)
class DeliveryInfo:
    id: UUID
    delivery_number: str
    status: DeliveryStatus
    mode: DeliveryMode
    receiver_name: str
    created_by_id: UUID
    items: tuple[DeliveryItemInfo, ...] = field(default_factory=tuple)
    po_id: UUID | None = None
    carrier_name: str | None = None
    carrier_contact: str | None = None
    vehicle_number: str | None = None
    purchaser_name: str | None = None
    payment_amount: Decimal | None = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    loading_photo: FileRef | None = None
    invoice_photo: FileRef | None = None
    receipt_photo: FileRef | None = None
    delivered_at: datetime | None = None
    cancelled_reason: str | None = None

    def photo(self, kind: EvidenceKind) -> FileRef | None:
        return {
            EvidenceKind.LOADING: self.loading_photo,
            EvidenceKind.INVOICE: self.invoice_photo,
            EvidenceKind.RECEIPT: self.receipt_photo,
        }[kind]


@dataclass(frozen=True)
class InventoryImageInfo:
    url: str
    key: str
    uploaded_by_id: UUID
    uploaded_at: datetime


@dataclass(frozen=True)
class InventoryItemInfo:
    id: UUID
    item_name: str
    unit: str
    central_stock: Decimal
    is_active: bool = True
    hsn_code: str | None = None
    description: str | None = None
    images: tuple[InventoryImageInfo, ...] = field(default_factory=tuple)
    vendor_ids: tuple[UUID, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StockMovementInfo:
    id: UUID
    item_id: UUID
    delta: Decimal
    reason: StockReason
    balance_after: Decimal
    created_by_id: UUID
    created_at: datetime
    reference_id: UUID | None = None
    memo: str | None = None


@dataclass(frozen=True)
class RequestNoteInfo:
    """One timeline entry: a free-text note or a status transition log."""
    id: UUID
    request_id: UUID
    kind: NoteKind
    sequence: int
    actor_id: UUID
    actor_role: str
    created_at: datetime
    content: str | None = None
    from_status: str | None = None
    to_status: str | None = None
    action: str | None = None
