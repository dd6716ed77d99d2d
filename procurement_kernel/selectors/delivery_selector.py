"""
Module: procurement_kernel.selectors.delivery_selector
Responsibility: Read-only queries over delivery challans and the per-request
    fulfilment summary (ordered, reserved, delivered, remaining).
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Fulfilment figures are derived from delivery items at query time;
      cancelled items never count.
    - reserved + delivered never exceeds ordered while the reconciliation
      engine's invariant holds, so remaining is never negative.
"""

from uuid import UUID

from sqlalchemy import func, select

from procurement_kernel.db.types import ZERO
from procurement_kernel.domain.dtos import DeliveryInfo, DeliveryItemStatus, DeliveryStatus
from procurement_kernel.domain.read_models import FulfilmentSummary
from procurement_kernel.exceptions import DeliveryNotFoundError, RequestNotFoundError
from procurement_kernel.models.delivery import DeliveryChallan, DeliveryItem
from procurement_kernel.models.request import Request
from procurement_kernel.selectors.base import BaseSelector


class DeliverySelector(BaseSelector[DeliveryChallan]):
    """Challan lookups and fulfilment summaries."""

    def get(self, delivery_id: UUID) -> DeliveryInfo:
        challan = self.session.get(DeliveryChallan, delivery_id)
        if challan is None:
            raise DeliveryNotFoundError(str(delivery_id))
        return challan.to_dto()

    def by_number(self, delivery_number: str) -> DeliveryInfo | None:
        challan = self.session.execute(
            select(DeliveryChallan).where(DeliveryChallan.delivery_number == delivery_number)
        ).scalar_one_or_none()
        return challan.to_dto() if challan is not None else None

    def for_purchase_order(self, po_id: UUID) -> list[DeliveryInfo]:
        """Challans raised against an order, oldest first."""
        challans = self.session.execute(
            select(DeliveryChallan)
            .where(DeliveryChallan.po_id == po_id)
            .order_by(DeliveryChallan.created_at, DeliveryChallan.delivery_number)
        ).scalars().all()
        return [c.to_dto() for c in challans]

    def for_request(self, request_id: UUID, include_cancelled: bool = True) -> list[DeliveryInfo]:
        """Challans carrying at least one item of the request, oldest first."""
        stmt = (
            select(DeliveryChallan)
            .join(DeliveryItem, DeliveryItem.delivery_id == DeliveryChallan.id)
            .where(DeliveryItem.request_id == request_id)
        )
        if not include_cancelled:
            stmt = stmt.where(DeliveryChallan.status != DeliveryStatus.CANCELLED.value)
        stmt = stmt.order_by(DeliveryChallan.created_at, DeliveryChallan.delivery_number)
        return [c.to_dto() for c in self.session.execute(stmt).scalars().unique().all()]

    def open_count(self) -> int:
        """Challans still pending confirmation."""
        return self.session.execute(
            select(func.count(DeliveryChallan.id)).where(
                DeliveryChallan.status == DeliveryStatus.PENDING.value
            )
        ).scalar_one()

    def fulfilment(self, request_id: UUID) -> FulfilmentSummary:
        """
        Reconcile a request's deliveries against its ordered quantity.

        Raises:
            RequestNotFoundError: If the request doesn't exist.
        """
        request = self.session.get(Request, request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))

        reserved = ZERO
        delivered = ZERO
        rows = self.session.execute(
            select(DeliveryItem.quantity, DeliveryItem.status).where(
                DeliveryItem.request_id == request_id,
                DeliveryItem.status != DeliveryItemStatus.CANCELLED.value,
            )
        ).all()
        for quantity, status in rows:
            if status == DeliveryItemStatus.DELIVERED.value:
                delivered += quantity
            else:
                reserved += quantity

        ordered = request.effective_ordered_quantity
        return FulfilmentSummary(
            ordered=ordered,
            reserved=reserved,
            delivered=delivered,
            remaining=ordered - reserved - delivered,
        )
