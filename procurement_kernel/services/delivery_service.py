"""
DeliveryService -- delivery challans and reconciliation against orders.

Responsibility:
    Creates delivery challans carrying quantities for one or more
    requests, confirms delivered items, cancels undelivered challans and
    records evidence photos.  Confirmed items post to the inventory
    ledger; fully delivered requests move on to ``delivered``.

Architecture position:
    Kernel > Services -- imperative shell.  Status changes go through
    RequestLifecycleController; stock changes through InventoryLedger.

Invariants enforced:
    - No over-delivery: for every request, the sum of non-cancelled
      item quantities never exceeds the effective ordered quantity.
      Checked under the request lock; each locked request is updated
      (status change or touch) so its version bump serializes
      concurrent challans.
    - Confirming an item is idempotent: a delivered item is never
      counted or posted to stock twice.
    - Only a pending challan with no delivered item may be cancelled.

Failure modes:
    - OverDeliveryError: quantity exceeds what remains on the order.
    - ValidationError: empty items, duplicate request, bad meta.
    - InvalidTransitionError: request not deliverable, challan cancelled,
      order cancelled or not covering a request.
    - DeliveryNotFoundError / DeliveryItemNotFoundError /
      PurchaseOrderNotFoundError / RequestNotFoundError.
    - OptimisticLockError: a request or challan changed underneath us.

Audit relevance:
    ``over_delivery_rejected`` records every refused challan with its
    quantities.  Cancelled challans are kept with their reason.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from procurement_kernel.db.types import ZERO
from procurement_kernel.domain.authority import Actor, require_role
from procurement_kernel.domain.clock import Clock
from procurement_kernel.domain.commands import DeliveryItemInput, DeliveryMeta
from procurement_kernel.domain.dtos import (
    DELIVERABLE_STATUSES,
    DeliveryInfo,
    DeliveryItemStatus,
    DeliveryMode,
    DeliveryStatus,
    EvidenceKind,
    FileRef,
    PaymentStatus,
    PurchaseOrderStatus,
    RequestStatus,
)
from procurement_kernel.domain.validation import (
    optional_text,
    require_enum,
    require_non_negative,
    require_positive,
    require_text,
)
from procurement_kernel.exceptions import (
    DeliveryItemNotFoundError,
    DeliveryNotFoundError,
    InvalidTransitionError,
    OverDeliveryError,
    PurchaseOrderNotFoundError,
    ValidationError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.delivery import DeliveryChallan, DeliveryItem
from procurement_kernel.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from procurement_kernel.models.request import Request
from procurement_kernel.services.base import BaseService
from procurement_kernel.services.inventory_ledger import InventoryLedger
from procurement_kernel.services.lifecycle_controller import RequestLifecycleController
from procurement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.delivery")

_COMPLETED_STATUSES = frozenset({RequestStatus.DELIVERED.value, RequestStatus.CLOSED.value})


class DeliveryService(BaseService[DeliveryChallan]):
    """
    Delivery reconciliation engine.

    Contract:
        ``create_delivery`` checks and writes every item in one flush.
        ``mark_item_delivered`` confirms one item and cascades: challan
        status, stock posting, request completion, order fulfilment.

    Non-goals:
        - Does NOT upload or delete files; ``attach_evidence`` receives
          the stored reference and returns any replaced one.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        controller: RequestLifecycleController | None = None,
        ledger: InventoryLedger | None = None,
        number_prefix: str = "DC",
        auto_close_on_full_delivery: bool = False,
        allow_negative_stock: bool = False,
    ):
        super().__init__(session, clock)
        self._controller = controller or RequestLifecycleController(session, self._clock)
        self._ledger = ledger or InventoryLedger(
            session, self._clock, allow_negative_stock=allow_negative_stock
        )
        self._number_prefix = number_prefix
        self._auto_close = auto_close_on_full_delivery
        self._sequences = SequenceService(session)

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_delivery(
        self,
        items: Sequence[DeliveryItemInput],
        meta: DeliveryMeta,
        actor: Actor,
        po_id: UUID | None = None,
    ) -> DeliveryInfo:
        """
        Record a delivery trip carrying the given request quantities.

        Preconditions:
            Every request is po_issued or delivery_stage.
        Postconditions:
            Challan and items persisted as pending; po_issued requests
            are now delivery_stage.

        Raises:
            OverDeliveryError: a quantity exceeds what remains on the order.
        """
        require_role(actor, "delivery.create")
        quantities = self._validate_items(items)
        meta_fields = self._validate_meta(meta)

        if po_id is not None:
            self._require_covering_order(po_id, quantities.keys())

        requests = self._controller.lock_requests(quantities.keys())
        for request_id, request in requests.items():
            if RequestStatus(request.status) not in DELIVERABLE_STATUSES:
                raise InvalidTransitionError(
                    "Request", str(request.id), request.status,
                    RequestStatus.DELIVERY_STAGE.value,
                    reason="deliveries require status po_issued or delivery_stage",
                )
            self._check_remaining(request, quantities[request_id])

        now = self._now()
        challan = DeliveryChallan(
            delivery_number=self._next_delivery_number(),
            po_id=po_id,
            status=DeliveryStatus.PENDING.value,
            created_by_id=actor.actor_id,
            created_at=now,
            **meta_fields,
        )
        for line_number, item in enumerate(items, start=1):
            challan.items.append(
                DeliveryItem(
                    line_number=line_number,
                    request_id=item.request_id,
                    quantity=quantities[item.request_id],
                    status=DeliveryItemStatus.PENDING.value,
                    created_by_id=actor.actor_id,
                    created_at=now,
                )
            )
        self.session.add(challan)
        self.session.flush()

        for request in requests.values():
            if request.status == RequestStatus.PO_ISSUED.value:
                self._controller.transition(
                    request, RequestStatus.DELIVERY_STAGE, actor,
                    note=f"Delivery {challan.delivery_number}",
                )
            else:
                self._controller.touch(request, actor)
        self._flush("Request", ",".join(str(r) for r in requests))

        logger.info(
            "delivery_created",
            extra={
                "delivery_id": str(challan.id),
                "delivery_number": challan.delivery_number,
                "po_id": str(po_id) if po_id else None,
                "item_count": len(challan.items),
                "mode": challan.mode,
            },
        )
        return challan.to_dto()

    def _validate_items(self, items: Sequence[DeliveryItemInput]) -> dict:
        if not items:
            raise ValidationError("items", "at least one item is required")
        quantities = {}
        for index, item in enumerate(items):
            prefix = f"items[{index}]"
            if item.request_id is None:
                raise ValidationError(f"{prefix}.request_id", "is required")
            if item.request_id in quantities:
                raise ValidationError(
                    f"{prefix}.request_id",
                    f"request {item.request_id} appears more than once",
                )
            quantities[item.request_id] = require_positive(item.quantity, f"{prefix}.quantity")
        return quantities

    def _validate_meta(self, meta: DeliveryMeta) -> dict:
        mode = require_enum(DeliveryMode, meta.mode, "mode")
        vehicle_number = optional_text(meta.vehicle_number)
        if mode is DeliveryMode.PRIVATE and vehicle_number is None:
            raise ValidationError("vehicle_number", "is required for private vehicles")
        payment_amount = (
            None if meta.payment_amount is None
            else require_non_negative(meta.payment_amount, "payment_amount")
        )
        return {
            "mode": mode.value,
            "receiver_name": require_text(meta.receiver_name, "receiver_name"),
            "carrier_name": optional_text(meta.carrier_name),
            "carrier_contact": optional_text(meta.carrier_contact),
            "vehicle_number": vehicle_number,
            "purchaser_name": optional_text(meta.purchaser_name),
            "payment_amount": payment_amount,
            "payment_status": require_enum(
                PaymentStatus, meta.payment_status, "payment_status"
            ).value,
        }

    def _require_covering_order(self, po_id: UUID, request_ids) -> PurchaseOrder:
        order = self.session.get(PurchaseOrder, po_id)
        if order is None:
            raise PurchaseOrderNotFoundError(str(po_id))
        if order.status == PurchaseOrderStatus.CANCELLED.value:
            raise InvalidTransitionError(
                "PurchaseOrder", str(order.id), order.status,
                RequestStatus.DELIVERY_STAGE.value,
                reason="cannot deliver against a cancelled order",
            )
        linked = {line.request_id for line in order.lines if line.request_id is not None}
        missing = sorted((str(r) for r in request_ids if r not in linked))
        if missing:
            raise InvalidTransitionError(
                "PurchaseOrder", str(order.id), order.status,
                RequestStatus.DELIVERY_STAGE.value,
                reason=f"requests not on this order: {', '.join(missing)}",
            )
        return order

    def _check_remaining(self, request: Request, quantity) -> None:
        already = self._reserved_quantity(request.id)
        ordered = request.effective_ordered_quantity
        if already + quantity > ordered:
            logger.warning(
                "over_delivery_rejected",
                extra={
                    "request_id": str(request.id),
                    "ordered": ordered,
                    "already_delivered": already,
                    "attempted": quantity,
                },
            )
            raise OverDeliveryError(str(request.id), ordered, already, quantity)

    def _reserved_quantity(self, request_id: UUID):
        quantities = self.session.execute(
            select(DeliveryItem.quantity).where(
                DeliveryItem.request_id == request_id,
                DeliveryItem.status != DeliveryItemStatus.CANCELLED.value,
            )
        ).scalars()
        return sum(quantities, ZERO)

    def _next_delivery_number(self) -> str:
        stamp = self._clock.today().strftime("%Y%m%d")
        value = self._sequences.next_value(f"delivery:{stamp}")
        return f"{self._number_prefix}-{stamp}-{value:04d}"

    # -------------------------------------------------------------------------
    # Confirm
    # -------------------------------------------------------------------------

    def mark_item_delivered(self, delivery_id: UUID, item_id: UUID, actor: Actor) -> DeliveryInfo:
        """
        Confirm one item of a challan as received on site.

        Already-delivered items are returned unchanged.  Fails with a
        ValidationError on ``unit`` when the catalog keeps the item in another
        unit; nothing is confirmed in that case.
        """
        require_role(actor, "delivery.mark_item_delivered")
        challan = self._load_for_update(delivery_id)
        item = next((i for i in challan.items if i.id == item_id), None)
        if item is None:
            raise DeliveryItemNotFoundError(str(item_id))

        if item.status == DeliveryItemStatus.DELIVERED.value:
            return challan.to_dto()
        if challan.status == DeliveryStatus.CANCELLED.value:
            raise InvalidTransitionError(
                "DeliveryChallan", str(challan.id), challan.status,
                DeliveryStatus.DELIVERED.value,
                reason="challan is cancelled",
            )

        now = self._now()
        request = self._controller.load_for_update(item.request_id)

        item.status = DeliveryItemStatus.DELIVERED.value
        item.delivered_at = now
        self._stamp_update(item, actor)
        if all(i.status == DeliveryItemStatus.DELIVERED.value for i in challan.items):
            challan.status = DeliveryStatus.DELIVERED.value
            challan.delivered_at = now
        self._stamp_update(challan, actor)
        flag_modified(challan, "updated_by_id")
        self._flush("DeliveryChallan", challan.id)

        self._ledger.post_delivery(
            request.item_name, request.unit, item.quantity, item.id, actor
        )

        delivered = self._controller.delivered_quantity(request.id)
        if (
            request.status == RequestStatus.DELIVERY_STAGE.value
            and delivered >= request.effective_ordered_quantity
        ):
            self._controller.transition(
                request, RequestStatus.DELIVERED, actor,
                note=f"Delivery {challan.delivery_number}",
            )
            if self._auto_close:
                self._controller.transition(request, RequestStatus.CLOSED, actor)
            self._fulfil_orders(request, actor)
        else:
            self._controller.touch(request, actor)
            self._flush("Request", request.id)

        logger.info(
            "delivery_item_confirmed",
            extra={
                "delivery_id": str(challan.id),
                "item_id": str(item.id),
                "request_id": str(request.id),
                "quantity": item.quantity,
                "delivered_total": delivered,
                "challan_status": challan.status,
            },
        )
        return challan.to_dto()

    def _fulfil_orders(self, request: Request, actor: Actor) -> None:
        """Mark issued orders fulfilled once every linked request is complete."""
        orders = self.session.execute(
            select(PurchaseOrder)
            .join(PurchaseOrderLine, PurchaseOrderLine.purchase_order_id == PurchaseOrder.id)
            .where(
                PurchaseOrderLine.request_id == request.id,
                PurchaseOrder.status == PurchaseOrderStatus.ISSUED.value,
            )
            .distinct()
        ).scalars().all()

        for order in orders:
            request_ids = {line.request_id for line in order.lines if line.request_id is not None}
            statuses = self.session.execute(
                select(Request.status).where(Request.id.in_(request_ids))
            ).scalars()
            if all(status in _COMPLETED_STATUSES for status in statuses):
                order.status = PurchaseOrderStatus.FULFILLED.value
                self._stamp_update(order, actor)
                self.session.flush()
                logger.info(
                    "purchase_order_fulfilled",
                    extra={"po_id": str(order.id), "po_number": order.po_number},
                )

    # -------------------------------------------------------------------------
    # Cancel
    # -------------------------------------------------------------------------

    def cancel_delivery(
        self,
        delivery_id: UUID,
        actor: Actor,
        reason: str | None = None,
    ) -> DeliveryInfo:
        """
        Cancel a pending challan none of whose items has been delivered.

        Requests left without any other active challan return to po_issued.
        """
        require_role(actor, "delivery.cancel")
        reason = optional_text(reason)
        challan = self._load_for_update(delivery_id)

        delivered = any(i.status == DeliveryItemStatus.DELIVERED.value for i in challan.items)
        if challan.status != DeliveryStatus.PENDING.value or delivered:
            raise InvalidTransitionError(
                "DeliveryChallan", str(challan.id), challan.status,
                DeliveryStatus.CANCELLED.value,
                reason="only a pending challan with no delivered item can be cancelled",
            )

        requests = self._controller.lock_requests(i.request_id for i in challan.items)

        for item in challan.items:
            item.status = DeliveryItemStatus.CANCELLED.value
            self._stamp_update(item, actor)
        challan.status = DeliveryStatus.CANCELLED.value
        challan.cancelled_reason = reason
        self._stamp_update(challan, actor)
        self._flush("DeliveryChallan", challan.id)

        for request in requests.values():
            if (
                request.status == RequestStatus.DELIVERY_STAGE.value
                and not self._controller.has_active_delivery(request)
            ):
                self._controller.transition(
                    request, RequestStatus.PO_ISSUED, actor,
                    note=reason or f"Delivery {challan.delivery_number} cancelled",
                )
            else:
                self._controller.touch(request, actor)
                self._flush("Request", request.id)

        logger.info(
            "delivery_cancelled",
            extra={
                "delivery_id": str(challan.id),
                "delivery_number": challan.delivery_number,
                "reason": reason,
            },
        )
        return challan.to_dto()

    # -------------------------------------------------------------------------
    # Evidence
    # -------------------------------------------------------------------------

    def attach_evidence(
        self,
        delivery_id: UUID,
        kind: EvidenceKind | str,
        stored: FileRef,
        actor: Actor,
    ) -> tuple[DeliveryInfo, FileRef | None]:
        """
        Record a stored photo in one evidence slot.

        Returns:
            (delivery, replaced) -- replaced is the previous file in the
            slot, which the caller should delete from storage.  Attaching
            the key already in the slot changes nothing.
        """
        require_role(actor, "delivery.attach_evidence")
        kind = require_enum(EvidenceKind, kind, "kind")
        url = require_text(stored.url, "url")
        key = require_text(stored.key, "key")

        challan = self._load_for_update(delivery_id)
        if challan.status == DeliveryStatus.CANCELLED.value:
            raise InvalidTransitionError(
                "DeliveryChallan", str(challan.id), challan.status, challan.status,
                reason="cannot attach evidence to a cancelled challan",
            )

        previous_url, previous_key = challan.get_photo(kind.value)
        if previous_key == key:
            return challan.to_dto(), None

        challan.set_photo(kind.value, url, key)
        self._stamp_update(challan, actor)
        self._flush("DeliveryChallan", challan.id)

        replaced = None
        if previous_url is not None and previous_key is not None:
            replaced = FileRef(url=previous_url, key=previous_key)

        logger.info(
            "delivery_evidence_attached",
            extra={
                "delivery_id": str(challan.id),
                "kind": kind.value,
                "key": key,
                "replaced_key": previous_key,
            },
        )
        return challan.to_dto(), replaced

    def _load_for_update(self, delivery_id: UUID) -> DeliveryChallan:
        challan = self.session.execute(
            select(DeliveryChallan)
            .where(DeliveryChallan.id == delivery_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if challan is None:
            raise DeliveryNotFoundError(str(delivery_id))
        return challan
