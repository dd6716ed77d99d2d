"""
Module: procurement_kernel.models.delivery
Responsibility: ORM persistence for delivery challans and their per-request
    delivery items.
Architecture position: Kernel > Models.  May import from db/ and domain/dtos.py
    only.

Invariants enforced:
    - quantity > 0 on every delivery item (ck_delivery_item_quantity_positive).
    - delivery_number is unique (uq_delivery_number).
    - For each request, the sum of non-cancelled item quantities never
      exceeds the request's ordered quantity.  DeliveryService checks this
      under a lock on the request row; the row's version bump serializes
      concurrent challans for the same request.
    - DeliveryChallan carries version_id_col so an evidence attach racing a
      cancel cannot both commit.

Audit relevance:
    Cancelled challans and items are retained with their reason; they are
    excluded from reconciliation sums only.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase


class DeliveryChallan(TrackedBase):
    """
    One physical delivery trip, possibly carrying items for several requests.

    Evidence photos are stored as (url, key) pairs returned by the file
    storage collaborator.  Each pair is either fully set or fully empty.
    """

    __tablename__ = "delivery_challans"

    __table_args__ = (
        UniqueConstraint("delivery_number", name="uq_delivery_number"),
        CheckConstraint(
            "payment_amount IS NULL OR payment_amount >= 0",
            name="ck_delivery_payment_non_negative",
        ),
        Index("idx_delivery_status", "status"),
        Index("idx_delivery_po", "po_id"),
    )

    delivery_number: Mapped[str] = mapped_column(String(30), nullable=False)

    po_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=True
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    mode: Mapped[str] = mapped_column(String(20), nullable=False)
    receiver_name: Mapped[str] = mapped_column(String(255), nullable=False)
    carrier_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    carrier_contact: Mapped[str | None] = mapped_column(String(50), nullable=True)
    vehicle_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    purchaser_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    payment_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )

    loading_photo_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    loading_photo_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    invoice_photo_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    invoice_photo_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    receipt_photo_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    receipt_photo_key: Mapped[str | None] = mapped_column(String(500), nullable=True)

    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    items: Mapped[list["DeliveryItem"]] = relationship(
        back_populates="delivery",
        cascade="all, delete-orphan",
        order_by="DeliveryItem.line_number",
    )

    def get_photo(self, kind: str) -> tuple[str | None, str | None]:
        return (
            getattr(self, f"{kind}_photo_url"),
            getattr(self, f"{kind}_photo_key"),
        )

    def set_photo(self, kind: str, url: str | None, key: str | None) -> None:
        setattr(self, f"{kind}_photo_url", url)
        setattr(self, f"{kind}_photo_key", key)

    def to_dto(self):
        from procurement_kernel.domain.dtos import (
            DeliveryInfo,
            DeliveryMode,
            DeliveryStatus,
            FileRef,
            PaymentStatus,
        )

        def _ref(kind: str) -> FileRef | None:
            url, key = self.get_photo(kind)
            if url is None or key is None:
                return None
            return FileRef(url=url, key=key)

        return DeliveryInfo(
            id=self.id,
            delivery_number=self.delivery_number,
            status=DeliveryStatus(self.status),
            mode=DeliveryMode(self.mode),
            receiver_name=self.receiver_name,
            created_by_id=self.created_by_id,
            items=tuple(item.to_dto() for item in self.items),
            po_id=self.po_id,
            carrier_name=self.carrier_name,
            carrier_contact=self.carrier_contact,
            vehicle_number=self.vehicle_number,
            purchaser_name=self.purchaser_name,
            payment_amount=self.payment_amount,
            payment_status=PaymentStatus(self.payment_status),
            loading_photo=_ref("loading"),
            invoice_photo=_ref("invoice"),
            receipt_photo=_ref("receipt"),
            delivered_at=self.delivered_at,
            cancelled_reason=self.cancelled_reason,
        )

    def __repr__(self) -> str:
        return f"<DeliveryChallan {self.delivery_number} [{self.status}]>"


class DeliveryItem(TrackedBase):
    """The quantity of one request carried on one challan."""

    __tablename__ = "delivery_items"

    __table_args__ = (
        UniqueConstraint("delivery_id", "request_id", name="uq_delivery_item_request"),
        CheckConstraint("quantity > 0", name="ck_delivery_item_quantity_positive"),
        Index("idx_delivery_item_request", "request_id"),
        Index("idx_delivery_item_status", "status"),
    )

    delivery_id: Mapped[UUID] = mapped_column(
        ForeignKey("delivery_challans.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(nullable=False)

    request_id: Mapped[UUID] = mapped_column(
        ForeignKey("material_requests.id"), nullable=False
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    delivery: Mapped["DeliveryChallan"] = relationship(back_populates="items")

    def to_dto(self):
        from procurement_kernel.domain.dtos import DeliveryItemInfo, DeliveryItemStatus

        return DeliveryItemInfo(
            id=self.id,
            delivery_id=self.delivery_id,
            request_id=self.request_id,
            quantity=self.quantity,
            status=DeliveryItemStatus(self.status),
            delivered_at=self.delivered_at,
        )
