"""
Module: procurement_kernel.models.site
Responsibility: ORM persistence for construction sites and stores that
    requests originate from and purchase orders deliver to.
Architecture position: Kernel > Models.  May import from db/ and domain/dtos.py
    only.

Invariants enforced:
    - name is unique (uq_site_name); SiteService also rejects names that
      differ only in case.
    - Sites are deactivated, never deleted.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import TrackedBase


class Site(TrackedBase):
    """A construction site, central store, or other delivery location."""

    __tablename__ = "sites"

    __table_args__ = (
        UniqueConstraint("name", name="uq_site_name"),
        Index("idx_site_active", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    site_type: Mapped[str] = mapped_column(String(20), nullable=False, default="site")

    # Captured through the location collaborator, when available
    latitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    longitude: Mapped[Decimal | None] = mapped_column(nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self):
        from procurement_kernel.domain.dtos import SiteInfo

        return SiteInfo(
            id=self.id,
            name=self.name,
            site_type=self.site_type,
            is_active=self.is_active,
            code=self.code,
            address=self.address,
            description=self.description,
            latitude=self.latitude,
            longitude=self.longitude,
        )

    def __repr__(self) -> str:
        return f"<Site {self.name} ({self.site_type})>"
