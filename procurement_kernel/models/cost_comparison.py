"""
Module: procurement_kernel.models.cost_comparison
Responsibility: ORM persistence for cost comparisons (multi-vendor quote
    sets raised against one request) and their quotes.
Architecture position: Kernel > Models.  May import from db/ and domain/dtos.py
    only.

Invariants enforced:
    - At most one ACTIVE comparison (decision pending or approved) per
      request: partial unique index uq_comparison_active_per_request on both
      PostgreSQL and SQLite, backing the service-level check.
    - One quote per vendor per comparison (uq_quote_vendor) and a dense,
      unique position per comparison (uq_quote_position) that records
      submission order for tie-breaks.
    - An approved comparison is immutable (db/immutability.py).

Audit relevance:
    Rejected comparisons are kept with their manager note; the full decision
    history of a request is queryable through CostComparisonSelector.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase, UUIDString

_ACTIVE_DECISION_SQL = text("decision IN ('pending', 'approved')")


class CostComparison(TrackedBase):
    """
    A set of vendor quotes for one request, awaiting or holding a decision.

    Guarantees:
        - decision is pending, approved or rejected.
        - selected_quote_id is set iff decision is approved.
        - manager_note is non-blank when decision is rejected.
    """

    __tablename__ = "cost_comparisons"

    __table_args__ = (
        Index(
            "uq_comparison_active_per_request",
            "request_id",
            unique=True,
            postgresql_where=_ACTIVE_DECISION_SQL,
            sqlite_where=_ACTIVE_DECISION_SQL,
        ),
        Index("idx_comparison_request", "request_id"),
        Index("idx_comparison_decision", "decision"),
    )

    request_id: Mapped[UUID] = mapped_column(
        ForeignKey("material_requests.id"), nullable=False
    )

    decision: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # Plain column: quotes already reference the comparison
    selected_quote_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    manager_note: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    quotes: Mapped[list["Quote"]] = relationship(
        back_populates="comparison",
        cascade="all, delete-orphan",
        order_by="Quote.position",
    )

    @property
    def selected_quote(self) -> "Quote | None":
        for quote in self.quotes:
            if quote.id == self.selected_quote_id:
                return quote
        return None

    def to_dto(self):
        from procurement_kernel.domain.dtos import ComparisonDecision, ComparisonInfo

        return ComparisonInfo(
            id=self.id,
            request_id=self.request_id,
            decision=ComparisonDecision(self.decision),
            created_by_id=self.created_by_id,
            quotes=tuple(q.to_dto() for q in self.quotes),
            selected_quote_id=self.selected_quote_id,
            manager_note=self.manager_note,
            decided_by_id=self.decided_by_id,
            decided_at=self.decided_at,
        )

    def __repr__(self) -> str:
        return f"<CostComparison {self.id} request={self.request_id} [{self.decision}]>"


class Quote(TrackedBase):
    """One vendor's rate inside a cost comparison."""

    __tablename__ = "comparison_quotes"

    __table_args__ = (
        UniqueConstraint("comparison_id", "vendor_id", name="uq_quote_vendor"),
        UniqueConstraint("comparison_id", "position", name="uq_quote_position"),
        CheckConstraint("unit_rate > 0", name="ck_quote_rate_positive"),
        Index("idx_quote_vendor", "vendor_id"),
    )

    comparison_id: Mapped[UUID] = mapped_column(
        ForeignKey("cost_comparisons.id"), nullable=False
    )
    vendor_id: Mapped[UUID] = mapped_column(ForeignKey("vendors.id"), nullable=False)

    # 0-based submission order
    position: Mapped[int] = mapped_column(nullable=False)

    unit_rate: Mapped[Decimal] = mapped_column(nullable=False)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    discount_percent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    gst_percent: Mapped[Decimal | None] = mapped_column(nullable=True)
    per_unit_basis: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("1"))

    comparison: Mapped["CostComparison"] = relationship(back_populates="quotes")

    def to_dto(self):
        from procurement_kernel.domain.dtos import QuoteInfo

        return QuoteInfo(
            id=self.id,
            vendor_id=self.vendor_id,
            unit_rate=self.unit_rate,
            position=self.position,
            notes=self.notes,
            discount_percent=self.discount_percent,
            gst_percent=self.gst_percent,
            per_unit_basis=self.per_unit_basis,
        )
