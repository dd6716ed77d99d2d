"""
Pure domain layer.

Value objects, command objects, the request workflow and the pricing
formula, with NO dependencies on:
- ORM (SQLAlchemy)
- Database sessions
- I/O

All domain objects are immutable and deterministic.
"""

from procurement_kernel.domain.authority import Actor, ActorRole, require_role
from procurement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from procurement_kernel.domain.commands import (
    DeliveryItemInput,
    DeliveryMeta,
    EvidenceUpload,
    FileUpload,
    PurchaseOrderItemInput,
    QuoteInput,
    RequestItemInput,
)
from procurement_kernel.domain.dtos import (
    ComparisonDecision,
    DecisionOutcome,
    DeliveryItemStatus,
    DeliveryMode,
    DeliveryStatus,
    EvidenceKind,
    FileRef,
    PaymentStatus,
    PurchaseOrderStatus,
    RequestStatus,
    SiteType,
    StockReason,
)
from procurement_kernel.domain.pricing import (
    LineAmounts,
    cheapest_quote,
    compute_line_amounts,
    line_total_of,
)
from procurement_kernel.domain.request_workflow import REQUEST_WORKFLOW

__all__ = [
    "Actor",
    "ActorRole",
    "require_role",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "DeliveryItemInput",
    "DeliveryMeta",
    "EvidenceUpload",
    "FileUpload",
    "PurchaseOrderItemInput",
    "QuoteInput",
    "RequestItemInput",
    "ComparisonDecision",
    "DecisionOutcome",
    "DeliveryItemStatus",
    "DeliveryMode",
    "DeliveryStatus",
    "EvidenceKind",
    "FileRef",
    "PaymentStatus",
    "PurchaseOrderStatus",
    "RequestStatus",
    "SiteType",
    "StockReason",
    "LineAmounts",
    "cheapest_quote",
    "compute_line_amounts",
    "line_total_of",
    "REQUEST_WORKFLOW",
]
