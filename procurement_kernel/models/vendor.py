"""
Module: procurement_kernel.models.vendor
Responsibility: ORM persistence for suppliers.  Vendors are referenced by
    comparison quotes, purchase orders and (many-to-many) inventory items.
Architecture position: Kernel > Models.  May import from db/ and domain/dtos.py
    only.  MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - Vendors are never deleted; deactivation (is_active=False) keeps every
      historical quote and purchase order resolvable.
    - GST number and email formats are validated by VendorService before write.

Audit relevance:
    The vendor on an approved quote becomes the vendor of the purchase order;
    both rows keep pointing at the same vendor id for the life of the order.
"""

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import TrackedBase


class Vendor(TrackedBase):
    """
    A supplier of construction materials.

    Guarantees:
        - company_name, contact_name, email, phone, gst_number and address
          are all present (NOT NULL).
        - is_active gates new quotes and purchase orders only.
    """

    __tablename__ = "vendors"

    __table_args__ = (
        Index("idx_vendor_company_name", "company_name"),
        Index("idx_vendor_active", "is_active"),
    )

    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(50), nullable=False)
    gst_number: Mapped[str] = mapped_column(String(15), nullable=False)
    address: Mapped[str] = mapped_column(String(1000), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self):
        from procurement_kernel.domain.dtos import VendorInfo

        return VendorInfo(
            id=self.id,
            company_name=self.company_name,
            contact_name=self.contact_name,
            email=self.email,
            phone=self.phone,
            gst_number=self.gst_number,
            address=self.address,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<Vendor {self.company_name} ({self.gst_number})>"
