"""
Module: procurement_kernel.selectors.purchase_order_selector
Responsibility: Read-only queries over purchase orders and assembly of the
    resolved PurchaseOrderDocument handed to the PDF rendering collaborator.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - document() prices every line with domain.pricing, so the rendered
      line totals and order total equal the stored ones.
"""

from uuid import UUID

from sqlalchemy import select

from procurement_kernel.db.types import ZERO
from procurement_kernel.domain.dtos import PurchaseOrderInfo, PurchaseOrderStatus
from procurement_kernel.domain.pricing import compute_line_amounts
from procurement_kernel.domain.read_models import DocumentLine, PurchaseOrderDocument
from procurement_kernel.exceptions import PurchaseOrderNotFoundError
from procurement_kernel.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from procurement_kernel.models.request import Request
from procurement_kernel.models.site import Site
from procurement_kernel.models.vendor import Vendor
from procurement_kernel.selectors.base import BaseSelector


class PurchaseOrderSelector(BaseSelector[PurchaseOrder]):
    """Purchase order lookups and printable documents."""

    def _get(self, po_id: UUID) -> PurchaseOrder:
        order = self.session.get(PurchaseOrder, po_id)
        if order is None:
            raise PurchaseOrderNotFoundError(str(po_id))
        return order

    def get(self, po_id: UUID) -> PurchaseOrderInfo:
        return self._get(po_id).to_dto()

    def by_number(self, po_number: str) -> PurchaseOrderInfo | None:
        order = self.session.execute(
            select(PurchaseOrder).where(PurchaseOrder.po_number == po_number)
        ).scalar_one_or_none()
        return order.to_dto() if order is not None else None

    def list_orders(
        self,
        status: PurchaseOrderStatus | str | None = None,
        vendor_id: UUID | None = None,
        site_id: UUID | None = None,
    ) -> list[PurchaseOrderInfo]:
        """Orders matching the filters, by PO number."""
        stmt = select(PurchaseOrder)
        if status is not None:
            stmt = stmt.where(PurchaseOrder.status == PurchaseOrderStatus(status).value)
        if vendor_id is not None:
            stmt = stmt.where(PurchaseOrder.vendor_id == vendor_id)
        if site_id is not None:
            stmt = stmt.where(PurchaseOrder.site_id == site_id)
        stmt = stmt.order_by(PurchaseOrder.po_number)
        return [o.to_dto() for o in self.session.execute(stmt).scalars().all()]

    def for_request(self, request_id: UUID) -> list[PurchaseOrderInfo]:
        """Orders with a line referencing the request, cancelled ones included."""
        orders = self.session.execute(
            select(PurchaseOrder)
            .join(PurchaseOrderLine, PurchaseOrderLine.purchase_order_id == PurchaseOrder.id)
            .where(PurchaseOrderLine.request_id == request_id)
            .order_by(PurchaseOrder.po_number)
        ).scalars().unique().all()
        return [o.to_dto() for o in orders]

    def document(self, po_id: UUID) -> PurchaseOrderDocument:
        """
        Resolve vendor, site, priced lines and request numbers for rendering.

        Raises:
            PurchaseOrderNotFoundError: If the order doesn't exist.
        """
        order = self._get(po_id)
        vendor = self.session.get(Vendor, order.vendor_id)
        site = self.session.get(Site, order.site_id)

        lines = []
        subtotal = ZERO
        tax_total = ZERO
        for line in order.lines:
            amounts = compute_line_amounts(
                quantity=line.quantity,
                unit_rate=line.unit_rate,
                per_unit_basis=line.per_unit_basis,
                discount_percent=line.discount_percent,
                sgst_percent=line.sgst_percent,
                cgst_percent=line.cgst_percent,
            )
            subtotal += amounts.taxable
            tax_total += amounts.tax
            lines.append(DocumentLine(line=line.to_dto(), amounts=amounts))

        info = order.to_dto()
        request_numbers: list[str] = []
        if info.request_ids:
            numbers = self.session.execute(
                select(Request.id, Request.request_number).where(
                    Request.id.in_(info.request_ids)
                )
            ).all()
            by_id = dict(numbers)
            for request_id in info.request_ids:
                number = by_id.get(request_id)
                if number is not None and number not in request_numbers:
                    request_numbers.append(number)

        return PurchaseOrderDocument(
            po_number=order.po_number,
            issued_on=order.issued_on,
            valid_till=order.valid_till,
            vendor=vendor.to_dto(),
            site=site.to_dto(),
            lines=tuple(lines),
            subtotal=subtotal,
            tax_total=tax_total,
            total_amount=order.total_amount,
            notes=order.notes,
            request_numbers=tuple(request_numbers),
        )
