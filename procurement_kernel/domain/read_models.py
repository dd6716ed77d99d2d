"""
Read models composed by the query-side projectors.

Nothing here is persisted.  Selectors assemble these views from the entity
tables on demand, so a RequestView never goes stale the way denormalized
vendor or site fields on a request row would.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from procurement_kernel.domain.dtos import (
    ComparisonDecision,
    PurchaseOrderLineInfo,
    RequestInfo,
    SiteInfo,
    VendorInfo,
)
from procurement_kernel.domain.pricing import LineAmounts


@dataclass(frozen=True)
class ComparisonSummary:
    """The request's comparison as a reviewer sees it."""
    comparison_id: UUID | None
    decision: ComparisonDecision | None
    quote_count: int = 0
    cheapest_vendor_id: UUID | None = None
    cheapest_unit_rate: Decimal | None = None
    selected_vendor_id: UUID | None = None
    selected_unit_rate: Decimal | None = None
    rejection_note: str | None = None


@dataclass(frozen=True)
class FulfilmentSummary:
    """Quantities reconciled across every delivery challan of a request."""
    ordered: Decimal
    reserved: Decimal      # on pending (not yet delivered) challan items
    delivered: Decimal
    remaining: Decimal     # ordered - reserved - delivered

    @property
    def is_complete(self) -> bool:
        return self.delivered >= self.ordered


@dataclass(frozen=True)
class RequestView:
    """Request + resolved site + comparison summary + fulfilment."""
    request: RequestInfo
    site: SiteInfo
    comparison: ComparisonSummary
    fulfilment: FulfilmentSummary
    po_numbers: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DocumentLine:
    line: PurchaseOrderLineInfo
    amounts: LineAmounts


@dataclass(frozen=True)
class PurchaseOrderDocument:
    """Resolved data handed to the PDF rendering collaborator."""
    po_number: str
    issued_on: date
    valid_till: date
    vendor: VendorInfo
    site: SiteInfo
    lines: tuple[DocumentLine, ...]
    subtotal: Decimal
    tax_total: Decimal
    total_amount: Decimal
    notes: str | None = None
    request_numbers: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SiteActivity:
    site_id: UUID
    site_name: str
    request_count: int


@dataclass(frozen=True)
class DashboardOverview:
    total_requests: int
    requests_by_status: dict[str, int]
    open_deliveries: int
    inventory_items: int
    low_stock_items: int
    top_sites: tuple[SiteActivity, ...] = field(default_factory=tuple)
