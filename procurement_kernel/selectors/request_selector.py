"""
Module: procurement_kernel.selectors.request_selector
Responsibility: Read-only request queries and the RequestView projector.
    A RequestView joins the request with its site, its comparison summary,
    its fulfilment figures and its purchase order numbers at query time;
    nothing in it is stored.
Architecture position: Kernel > Selectors.  Composes DeliverySelector for
    fulfilment.

Invariants enforced:
    - timeline() returns notes and transition logs in commit order (the
      counter-allocated sequence), never in wall-clock order.
"""

from uuid import UUID

from sqlalchemy import select

from procurement_kernel.domain.dtos import (
    ACTIVE_DECISIONS,
    ComparisonDecision,
    PurchaseOrderStatus,
    RequestInfo,
    RequestNoteInfo,
    RequestStatus,
)
from procurement_kernel.domain.pricing import cheapest_quote
from procurement_kernel.domain.read_models import ComparisonSummary, RequestView
from procurement_kernel.exceptions import RequestNotFoundError
from procurement_kernel.models.cost_comparison import CostComparison
from procurement_kernel.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from procurement_kernel.models.request import Request, RequestNote
from procurement_kernel.selectors.base import BaseSelector
from procurement_kernel.selectors.delivery_selector import DeliverySelector


class RequestSelector(BaseSelector[Request]):
    """
    Request lookups and composed views.

    Guarantees:
        - view() reflects the current vendor/site/comparison rows; renaming
          a site shows up on every request immediately.
    """

    def _get(self, request_id: UUID) -> Request:
        request = self.session.get(Request, request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request

    def get(self, request_id: UUID) -> RequestInfo:
        return self._get(request_id).to_dto()

    def by_status(self, status: RequestStatus | str) -> list[RequestInfo]:
        """Requests in one status, urgent first, then oldest first."""
        requests = self.session.execute(
            select(Request)
            .where(Request.status == RequestStatus(status).value)
            .order_by(Request.is_urgent.desc(), Request.created_at, Request.request_number)
        ).scalars().all()
        return [r.to_dto() for r in requests]

    def by_request_number(self, request_number: str) -> list[RequestInfo]:
        """All item lines raised under one request number, in creation order."""
        requests = self.session.execute(
            select(Request)
            .where(Request.request_number == request_number)
            .order_by(Request.created_at, Request.id)
        ).scalars().all()
        return [r.to_dto() for r in requests]

    def timeline(self, request_id: UUID) -> list[RequestNoteInfo]:
        """Notes and transition logs in commit order."""
        self._get(request_id)
        notes = self.session.execute(
            select(RequestNote)
            .where(RequestNote.request_id == request_id)
            .order_by(RequestNote.sequence)
        ).scalars().all()
        return [n.to_dto() for n in notes]

    def view(self, request_id: UUID) -> RequestView:
        """
        Project a request with its site, comparison, fulfilment and orders.

        Raises:
            RequestNotFoundError: If the request doesn't exist.
        """
        request = self._get(request_id)
        return RequestView(
            request=request.to_dto(),
            site=request.site.to_dto(),
            comparison=self._comparison_summary(request),
            fulfilment=DeliverySelector(self.session).fulfilment(request.id),
            po_numbers=self._po_numbers(request.id),
        )

    def _comparison_summary(self, request: Request) -> ComparisonSummary:
        comparisons = self.session.execute(
            select(CostComparison)
            .where(CostComparison.request_id == request.id)
            .order_by(CostComparison.created_at, CostComparison.id)
        ).scalars().all()

        active_values = {d.value for d in ACTIVE_DECISIONS}
        current = next((c for c in comparisons if c.decision in active_values), None)
        if current is None and comparisons:
            current = comparisons[-1]

        rejection_note = None
        if request.rejected_comparison_id is not None:
            rejected = next(
                (c for c in comparisons if c.id == request.rejected_comparison_id), None
            )
            if rejected is not None:
                rejection_note = rejected.manager_note

        if current is None:
            return ComparisonSummary(
                comparison_id=None, decision=None, rejection_note=rejection_note
            )

        cheapest = cheapest_quote(current.quotes) if current.quotes else None
        selected = current.selected_quote
        return ComparisonSummary(
            comparison_id=current.id,
            decision=ComparisonDecision(current.decision),
            quote_count=len(current.quotes),
            cheapest_vendor_id=cheapest.vendor_id if cheapest else None,
            cheapest_unit_rate=cheapest.unit_rate if cheapest else None,
            selected_vendor_id=selected.vendor_id if selected else None,
            selected_unit_rate=selected.unit_rate if selected else None,
            rejection_note=rejection_note,
        )

    def _po_numbers(self, request_id: UUID) -> tuple[str, ...]:
        numbers = self.session.execute(
            select(PurchaseOrder.po_number)
            .join(PurchaseOrderLine, PurchaseOrderLine.purchase_order_id == PurchaseOrder.id)
            .where(
                PurchaseOrderLine.request_id == request_id,
                PurchaseOrder.status != PurchaseOrderStatus.CANCELLED.value,
            )
            .order_by(PurchaseOrder.po_number)
            .distinct()
        ).scalars().all()
        return tuple(numbers)
