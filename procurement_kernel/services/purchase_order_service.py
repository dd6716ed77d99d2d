"""
PurchaseOrderService -- issuing and cancelling purchase orders.

Responsibility:
    Converts an approved cost comparison into a single-line purchase
    order, issues direct (emergency) multi-line orders that bypass the
    comparison step, and cancels orders that have not been dispatched.

Architecture position:
    Kernel > Services -- imperative shell.  Prices every line with
    domain.pricing.compute_line_amounts and moves linked requests
    through RequestLifecycleController.

Invariants enforced:
    - Line totals are the rounded output of the one pricing formula; the
      order total is their sum, so recomputing from stored lines gives
      the stored total exactly.
    - PO numbers (PREFIX-YYYYMM-NNNN) come from a locked per-month counter.
    - A request is linked to at most one live order: only pre-PO
      statuses accept a new order, and issuance moves it to po_issued.
    - Lines are immutable after issuance (db/immutability.py).

Failure modes:
    - ForbiddenError: caller is not a purchase officer.
    - ValidationError: missing/invalid field, basis <= 0, empty items.
    - ExpiredOrderWindowError: valid_till before today.
    - VendorNotFoundError / SiteNotFoundError: unknown or inactive.
    - InvalidTransitionError: comparison not approved, request not in a
      pre-PO state, cancelling an order with live deliveries.

Audit relevance:
    ``purchase_order_issued`` and ``purchase_order_cancelled`` are logged
    with number, vendor, total and linked requests.
"""

from collections import defaultdict
from collections.abc import Sequence
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_kernel.db.types import ZERO
from procurement_kernel.domain.authority import Actor, require_role
from procurement_kernel.domain.clock import Clock
from procurement_kernel.domain.commands import PurchaseOrderItemInput
from procurement_kernel.domain.dtos import (
    PRE_PO_STATUSES,
    ComparisonDecision,
    DeliveryItemStatus,
    DeliveryStatus,
    PurchaseOrderInfo,
    PurchaseOrderStatus,
    RequestStatus,
)
from procurement_kernel.domain.pricing import compute_line_amounts, order_total, split_gst
from procurement_kernel.domain.validation import (
    optional_text,
    require_percent,
    require_positive,
    require_text,
)
from procurement_kernel.exceptions import (
    ComparisonNotFoundError,
    ExpiredOrderWindowError,
    InvalidTransitionError,
    PurchaseOrderNotFoundError,
    SiteNotFoundError,
    ValidationError,
    VendorNotFoundError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.cost_comparison import CostComparison
from procurement_kernel.models.delivery import DeliveryChallan, DeliveryItem
from procurement_kernel.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from procurement_kernel.models.request import Request
from procurement_kernel.models.site import Site
from procurement_kernel.models.vendor import Vendor
from procurement_kernel.services.base import BaseService
from procurement_kernel.services.lifecycle_controller import RequestLifecycleController
from procurement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.purchase_order")


class PurchaseOrderService(BaseService[PurchaseOrder]):
    """
    Issues and cancels purchase orders.

    Contract:
        Every public method validates all input before taking any lock,
        then writes the order and moves linked requests in one flush
        sequence inside the caller's transaction.

    Non-goals:
        - Does NOT render documents (PurchaseOrderSelector.document feeds
          the renderer collaborator).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        controller: RequestLifecycleController | None = None,
        default_sgst_percent: Decimal = Decimal("9"),
        default_cgst_percent: Decimal = Decimal("9"),
        default_validity_days: int = 30,
        number_prefix: str = "PO",
    ):
        super().__init__(session, clock)
        self._controller = controller or RequestLifecycleController(session, self._clock)
        self._sequences = SequenceService(session)
        self._default_sgst = default_sgst_percent
        self._default_cgst = default_cgst_percent
        self._default_validity_days = default_validity_days
        self._prefix = number_prefix

    # -------------------------------------------------------------------------
    # From an approved comparison
    # -------------------------------------------------------------------------

    def issue_from_comparison(
        self,
        comparison_id: UUID,
        actor: Actor,
        valid_till: date | None = None,
        hsn_code: str | None = None,
        notes: str | None = None,
    ) -> PurchaseOrderInfo:
        """
        Issue a single-line order from the comparison's winning quote.

        The tax split is half SGST, half CGST of the quote's GST rate;
        quotes without a rate use the configured defaults.
        """
        require_role(actor, "purchase_order.issue_from_comparison")
        today = self._clock.today()
        valid_till = valid_till or today + timedelta(days=self._default_validity_days)
        self._require_open_window(valid_till, today)

        comparison = self.session.get(CostComparison, comparison_id)
        if comparison is None:
            raise ComparisonNotFoundError(str(comparison_id))
        if comparison.decision != ComparisonDecision.APPROVED.value:
            raise InvalidTransitionError(
                "CostComparison", str(comparison.id), comparison.decision,
                "ordered", reason="only an approved comparison can be ordered",
            )

        request = self._controller.load_for_update(comparison.request_id)
        if request.status != RequestStatus.READY_FOR_PO.value:
            raise InvalidTransitionError(
                "Request", str(request.id), request.status,
                RequestStatus.PO_ISSUED.value,
                reason="ordering from a comparison requires status ready_for_po",
            )

        quote = comparison.selected_quote
        vendor = self._require_active_vendor(quote.vendor_id)
        self._require_active_site(request.site_id)

        if quote.gst_percent is None:
            sgst, cgst = self._default_sgst, self._default_cgst
        else:
            sgst, cgst = split_gst(quote.gst_percent)

        line = {
            "request_id": request.id,
            "description": request.item_name,
            "hsn_code": optional_text(hsn_code),
            "quantity": request.quantity,
            "unit": request.unit,
            "unit_rate": quote.unit_rate,
            "per_unit_basis": quote.per_unit_basis,
            "discount_percent": quote.discount_percent,
            "sgst_percent": sgst,
            "cgst_percent": cgst,
        }
        order = self._write_order(
            vendor=vendor,
            site_id=request.site_id,
            lines=[line],
            valid_till=valid_till,
            actor=actor,
            notes=optional_text(notes),
            comparison_id=comparison.id,
            is_direct=False,
        )
        self._link_requests(order, {request.id: request}, actor)
        return order.to_dto()

    # -------------------------------------------------------------------------
    # Direct (bypass) path
    # -------------------------------------------------------------------------

    def issue_direct(
        self,
        vendor_id: UUID,
        site_id: UUID,
        items: Sequence[PurchaseOrderItemInput],
        valid_till: date,
        actor: Actor,
        notes: str | None = None,
    ) -> PurchaseOrderInfo:
        """
        Issue a multi-line order without a cost comparison.

        Lines may reference requests in any pre-PO state, or none at all
        for emergency procurement.  Each referenced request moves to
        po_issued independently.
        """
        require_role(actor, "purchase_order.issue_direct")
        if valid_till is None:
            raise ValidationError("valid_till", "is required")
        self._require_open_window(valid_till, self._clock.today())
        if not items:
            raise ValidationError("items", "at least one line item is required")
        lines = [self._validate_item(item, index) for index, item in enumerate(items)]

        vendor = self._require_active_vendor(vendor_id)
        self._require_active_site(site_id)

        request_ids = {line["request_id"] for line in lines if line["request_id"] is not None}
        requests = self._controller.lock_requests(request_ids)
        for request in requests.values():
            if request.status not in {s.value for s in PRE_PO_STATUSES}:
                raise InvalidTransitionError(
                    "Request", str(request.id), request.status,
                    RequestStatus.PO_ISSUED.value,
                    reason="a direct order needs a request that has not been ordered",
                )

        for line in lines:
            if not line["description"]:
                line["description"] = requests[line["request_id"]].item_name

        order = self._write_order(
            vendor=vendor,
            site_id=site_id,
            lines=lines,
            valid_till=valid_till,
            actor=actor,
            notes=optional_text(notes),
            comparison_id=None,
            is_direct=True,
        )
        self._link_requests(order, requests, actor)
        return order.to_dto()

    def _validate_item(self, item: PurchaseOrderItemInput, index: int) -> dict:
        prefix = f"items[{index}]"
        description = optional_text(item.description)
        if description is None and item.request_id is None:
            raise ValidationError(
                f"{prefix}.description",
                "is required when the line is not linked to a request",
            )
        return {
            "request_id": item.request_id,
            "description": description,
            "hsn_code": optional_text(item.hsn_code),
            "quantity": require_positive(item.quantity, f"{prefix}.quantity"),
            "unit": require_text(item.unit, f"{prefix}.unit"),
            "unit_rate": require_positive(item.unit_rate, f"{prefix}.unit_rate"),
            "per_unit_basis": require_positive(item.per_unit_basis, f"{prefix}.per_unit_basis"),
            "discount_percent": require_percent(
                item.discount_percent, f"{prefix}.discount_percent"
            ),
            "sgst_percent": require_percent(item.sgst_percent, f"{prefix}.sgst_percent"),
            "cgst_percent": require_percent(item.cgst_percent, f"{prefix}.cgst_percent"),
        }

    # -------------------------------------------------------------------------
    # Cancel
    # -------------------------------------------------------------------------

    def cancel_purchase_order(
        self,
        po_id: UUID,
        actor: Actor,
        reason: str,
    ) -> PurchaseOrderInfo:
        """
        Cancel an issued order that has no live deliveries.

        Linked requests return to ready_for_po with their ordered
        quantity cleared.
        """
        require_role(actor, "purchase_order.cancel")
        reason = require_text(reason, "reason")

        order = self._load_for_update(po_id)
        if order.status != PurchaseOrderStatus.ISSUED.value:
            raise InvalidTransitionError(
                "PurchaseOrder", str(order.id), order.status,
                PurchaseOrderStatus.CANCELLED.value,
                reason="only an issued order can be cancelled",
            )

        request_ids = [line.request_id for line in order.lines if line.request_id is not None]
        requests = self._controller.lock_requests(request_ids)
        if self._has_live_deliveries(order, request_ids):
            raise InvalidTransitionError(
                "PurchaseOrder", str(order.id), order.status,
                PurchaseOrderStatus.CANCELLED.value,
                reason="order has deliveries that are not cancelled",
            )

        order.status = PurchaseOrderStatus.CANCELLED.value
        order.cancelled_reason = reason
        self._stamp_update(order, actor)
        self.session.flush()

        for request in requests.values():
            request.ordered_quantity = None
            self._controller.transition(request, RequestStatus.READY_FOR_PO, actor, note=reason)

        logger.info(
            "purchase_order_cancelled",
            extra={
                "po_id": str(order.id),
                "po_number": order.po_number,
                "request_count": len(requests),
            },
        )
        return order.to_dto()

    def _has_live_deliveries(self, order: PurchaseOrder, request_ids: list[UUID]) -> bool:
        live_challan = self.session.execute(
            select(DeliveryChallan.id).where(
                DeliveryChallan.po_id == order.id,
                DeliveryChallan.status != DeliveryStatus.CANCELLED.value,
            )
        ).first()
        if live_challan is not None:
            return True
        if not request_ids:
            return False
        return self.session.execute(
            select(DeliveryItem.id).where(
                DeliveryItem.request_id.in_(request_ids),
                DeliveryItem.status != DeliveryItemStatus.CANCELLED.value,
            )
        ).first() is not None

    # -------------------------------------------------------------------------
    # Shared helpers
    # -------------------------------------------------------------------------

    def _write_order(
        self,
        vendor: Vendor,
        site_id: UUID,
        lines: list[dict],
        valid_till: date,
        actor: Actor,
        notes: str | None,
        comparison_id: UUID | None,
        is_direct: bool,
    ) -> PurchaseOrder:
        today = self._clock.today()
        order = PurchaseOrder(
            po_number=self._next_po_number(today),
            vendor_id=vendor.id,
            site_id=site_id,
            comparison_id=comparison_id,
            issued_on=today,
            valid_till=valid_till,
            status=PurchaseOrderStatus.ISSUED.value,
            is_direct=is_direct,
            notes=notes,
            created_by_id=actor.actor_id,
            created_at=self._now(),
        )
        totals = []
        for line_number, fields in enumerate(lines, start=1):
            amounts = compute_line_amounts(
                quantity=fields["quantity"],
                unit_rate=fields["unit_rate"],
                per_unit_basis=fields["per_unit_basis"],
                discount_percent=fields["discount_percent"],
                sgst_percent=fields["sgst_percent"],
                cgst_percent=fields["cgst_percent"],
            )
            totals.append(amounts.line_total)
            order.lines.append(
                PurchaseOrderLine(
                    line_number=line_number,
                    line_total=amounts.line_total,
                    created_by_id=actor.actor_id,
                    **fields,
                )
            )
        order.total_amount = order_total(totals)
        self.session.add(order)
        self.session.flush()

        logger.info(
            "purchase_order_issued",
            extra={
                "po_id": str(order.id),
                "po_number": order.po_number,
                "vendor_id": str(vendor.id),
                "is_direct": is_direct,
                "line_count": len(lines),
                "total_amount": order.total_amount,
            },
        )
        return order

    def _link_requests(
        self,
        order: PurchaseOrder,
        requests: dict[UUID, Request],
        actor: Actor,
    ) -> None:
        ordered: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for line in order.lines:
            if line.request_id is not None:
                ordered[line.request_id] += line.quantity

        for request_id in sorted(requests, key=str):
            request = requests[request_id]
            request.ordered_quantity = ordered[request_id]
            self._controller.transition(
                request, RequestStatus.PO_ISSUED, actor,
                note=f"Purchase order {order.po_number}",
            )

    def _next_po_number(self, today: date) -> str:
        period = today.strftime("%Y%m")
        value = self._sequences.next_value(f"purchase_order:{period}")
        return f"{self._prefix}-{period}-{value:04d}"

    def _require_open_window(self, valid_till: date, today: date) -> None:
        if valid_till < today:
            raise ExpiredOrderWindowError(valid_till, today)

    def _require_active_vendor(self, vendor_id: UUID) -> Vendor:
        vendor = self.session.get(Vendor, vendor_id)
        if vendor is None or not vendor.is_active:
            raise VendorNotFoundError(str(vendor_id))
        return vendor

    def _require_active_site(self, site_id: UUID) -> Site:
        site = self.session.get(Site, site_id)
        if site is None or not site.is_active:
            raise SiteNotFoundError(str(site_id))
        return site

    def _load_for_update(self, po_id: UUID) -> PurchaseOrder:
        order = self.session.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.id == po_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise PurchaseOrderNotFoundError(str(po_id))
        return order
