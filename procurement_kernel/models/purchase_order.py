"""
Module: procurement_kernel.models.purchase_order
Responsibility: ORM persistence for issued purchase orders and their lines.
Architecture position: Kernel > Models.  May import from db/ and domain/dtos.py
    only.

Invariants enforced:
    - po_number is unique (uq_purchase_order_number).
    - Lines are immutable once issued; only status and cancelled_reason on
      the header may change afterwards (db/immutability.py).
    - line_total is the rounded output of domain.pricing.compute_line_amounts
      over the stored pricing columns; total_amount is the sum of line totals.

Audit relevance:
    comparison_id links a comparison-sourced order back to the approved
    comparison; direct orders carry is_direct=True and no comparison.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase


class PurchaseOrder(TrackedBase):
    """An issued commercial order to one vendor for one delivery site."""

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("po_number", name="uq_purchase_order_number"),
        Index("idx_purchase_order_vendor", "vendor_id"),
        Index("idx_purchase_order_status", "status"),
        Index("idx_purchase_order_comparison", "comparison_id"),
    )

    po_number: Mapped[str] = mapped_column(String(30), nullable=False)

    vendor_id: Mapped[UUID] = mapped_column(ForeignKey("vendors.id"), nullable=False)
    site_id: Mapped[UUID] = mapped_column(ForeignKey("sites.id"), nullable=False)
    comparison_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("cost_comparisons.id"), nullable=True
    )

    issued_on: Mapped[date] = mapped_column(Date, nullable=False)
    valid_till: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="issued")
    is_direct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    cancelled_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.line_number",
    )

    def to_dto(self):
        from procurement_kernel.domain.dtos import PurchaseOrderInfo, PurchaseOrderStatus

        return PurchaseOrderInfo(
            id=self.id,
            po_number=self.po_number,
            vendor_id=self.vendor_id,
            site_id=self.site_id,
            valid_till=self.valid_till,
            status=PurchaseOrderStatus(self.status),
            is_direct=self.is_direct,
            total_amount=self.total_amount,
            created_by_id=self.created_by_id,
            lines=tuple(line.to_dto() for line in self.lines),
            comparison_id=self.comparison_id,
            notes=self.notes,
            cancelled_reason=self.cancelled_reason,
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.po_number} [{self.status}] total={self.total_amount}>"


class PurchaseOrderLine(TrackedBase):
    """One independently priced line of a purchase order."""

    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "line_number", name="uq_po_line_number"),
        CheckConstraint("quantity > 0", name="ck_po_line_quantity_positive"),
        CheckConstraint("unit_rate > 0", name="ck_po_line_rate_positive"),
        CheckConstraint("per_unit_basis > 0", name="ck_po_line_basis_positive"),
        Index("idx_po_line_request", "request_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(nullable=False)

    request_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("material_requests.id"), nullable=True
    )

    description: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    hsn_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(50), nullable=False)
    unit_rate: Mapped[Decimal] = mapped_column(nullable=False)
    per_unit_basis: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("1"))
    discount_percent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sgst_percent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    cgst_percent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    line_total: Mapped[Decimal] = mapped_column(nullable=False)

    purchase_order: Mapped["PurchaseOrder"] = relationship(back_populates="lines")

    def to_dto(self):
        from procurement_kernel.domain.dtos import PurchaseOrderLineInfo

        return PurchaseOrderLineInfo(
            id=self.id,
            line_number=self.line_number,
            quantity=self.quantity,
            unit=self.unit,
            unit_rate=self.unit_rate,
            line_total=self.line_total,
            description=self.description,
            request_id=self.request_id,
            hsn_code=self.hsn_code,
            per_unit_basis=self.per_unit_basis,
            discount_percent=self.discount_percent,
            sgst_percent=self.sgst_percent,
            cgst_percent=self.cgst_percent,
        )
