"""
Module: procurement_kernel.models.request
Responsibility: ORM persistence for material requests and their timeline
    (free-text notes and status transition logs).
Architecture position: Kernel > Models.  May import from db/ and domain/dtos.py
    only.  MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - quantity > 0 (ck_request_quantity_positive).
    - status is written ONLY by RequestLifecycleController; every write bumps
      ``version`` (version_id_col), so two transactions that both read the
      same request cannot both commit a change to it.
    - Requests are soft-closed (status ``closed``), never deleted.
    - RequestNote rows are append-only; ``sequence`` is allocated from a
      locked counter so a request's transitions read back in commit order.

Failure modes:
    - StaleDataError on flush when another transaction changed the row since
      it was loaded (surfaced as OptimisticLockError by the services).

Audit relevance:
    Every status change writes a ``log`` RequestNote naming the actor, role,
    action and from/to states.
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
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase, UUIDString


class Request(TrackedBase):
    """
    A single material need raised from a site.

    Guarantees:
        - status is one of RequestStatus values.
        - ordered_quantity is set when a purchase order line references the
          request, and cleared when that order is cancelled.
        - rejected_comparison_id points at the latest rejected comparison
          until a later comparison is approved.
    """

    __tablename__ = "material_requests"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_request_quantity_positive"),
        Index("idx_request_status", "status"),
        Index("idx_request_site", "site_id"),
        Index("idx_request_number", "request_number"),
    )

    request_number: Mapped[str] = mapped_column(String(20), nullable=False)

    site_id: Mapped[UUID] = mapped_column(ForeignKey("sites.id"), nullable=False)

    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    specs_brand: Mapped[str | None] = mapped_column(String(255), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(50), nullable=False)

    required_by: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="submitted")

    # Sum of PO line quantities referencing this request
    ordered_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Display reference; plain column avoids a request <-> comparison FK cycle
    rejected_comparison_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    site = relationship("Site")

    @property
    def effective_ordered_quantity(self) -> Decimal:
        if self.ordered_quantity is not None:
            return self.ordered_quantity
        return self.quantity

    def to_dto(self):
        from procurement_kernel.domain.dtos import RequestInfo, RequestStatus

        return RequestInfo(
            id=self.id,
            request_number=self.request_number,
            site_id=self.site_id,
            item_name=self.item_name,
            quantity=self.quantity,
            unit=self.unit,
            status=RequestStatus(self.status),
            created_by_id=self.created_by_id,
            required_by=self.required_by,
            is_urgent=self.is_urgent,
            description=self.description,
            specs_brand=self.specs_brand,
            notes=self.notes,
            ordered_quantity=self.ordered_quantity,
            rejected_comparison_id=self.rejected_comparison_id,
        )

    def __repr__(self) -> str:
        return f"<Request {self.request_number}: {self.item_name} [{self.status}]>"


class RequestNote(TrackedBase):
    """
    One entry of a request's timeline.

    ``kind == "note"``: free text added by any role.
    ``kind == "log"``: a status transition written by the controller.
    """

    __tablename__ = "request_notes"

    __table_args__ = (
        UniqueConstraint("sequence", name="uq_request_note_sequence"),
        Index("idx_request_note_request", "request_id"),
    )

    request_id: Mapped[UUID] = mapped_column(
        ForeignKey("material_requests.id"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)

    actor_role: Mapped[str] = mapped_column(String(30), nullable=False)
    content: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    action: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def to_dto(self):
        from procurement_kernel.domain.dtos import NoteKind, RequestNoteInfo

        return RequestNoteInfo(
            id=self.id,
            request_id=self.request_id,
            kind=NoteKind(self.kind),
            sequence=self.sequence,
            actor_id=self.created_by_id,
            actor_role=self.actor_role,
            created_at=self.created_at,
            content=self.content,
            from_status=self.from_status,
            to_status=self.to_status,
            action=self.action,
        )
