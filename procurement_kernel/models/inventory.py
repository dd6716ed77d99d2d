"""
Module: procurement_kernel.models.inventory
Responsibility: ORM persistence for the inventory catalog, item images, the
    item <-> vendor link table, and the append-only stock movement ledger.
Architecture position: Kernel > Models.  May import from db/ and domain/dtos.py
    only.

Invariants enforced:
    - name_key (lower-cased item name) is unique: one catalog entry per item
      regardless of spelling case.
    - central_stock is written only by InventoryLedger, under a row lock and
      the version_id_col check, and every write appends a StockMovement.
    - (reason, reference_id) is unique on stock_movements, so a confirmed
      delivery item is never posted to stock twice.
    - StockMovement rows are append-only (db/immutability.py).

Audit relevance:
    Summing StockMovement.delta for an item reproduces its central_stock;
    balance_after records the running balance at each step.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import Base, TrackedBase, UUIDString

inventory_item_vendors = Table(
    "inventory_item_vendors",
    Base.metadata,
    Column("item_id", UUIDString(), ForeignKey("inventory_items.id"), primary_key=True),
    Column("vendor_id", UUIDString(), ForeignKey("vendors.id"), primary_key=True),
)


class InventoryItem(TrackedBase):
    """A catalog entry with its central stock level."""

    __tablename__ = "inventory_items"

    __table_args__ = (
        UniqueConstraint("name_key", name="uq_inventory_item_name"),
        Index("idx_inventory_item_active", "is_active"),
    )

    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    name_key: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(50), nullable=False)
    hsn_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    central_stock: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    images: Mapped[list["InventoryImage"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="InventoryImage.position",
    )

    vendors = relationship("Vendor", secondary=inventory_item_vendors)

    @staticmethod
    def key_for(name: str) -> str:
        return name.strip().lower()

    def to_dto(self):
        from procurement_kernel.domain.dtos import InventoryImageInfo, InventoryItemInfo

        return InventoryItemInfo(
            id=self.id,
            item_name=self.item_name,
            unit=self.unit,
            central_stock=self.central_stock,
            is_active=self.is_active,
            hsn_code=self.hsn_code,
            description=self.description,
            images=tuple(
                InventoryImageInfo(
                    url=image.url,
                    key=image.key,
                    uploaded_by_id=image.created_by_id,
                    uploaded_at=image.created_at,
                )
                for image in self.images
            ),
            vendor_ids=tuple(sorted((v.id for v in self.vendors), key=str)),
        )

    def __repr__(self) -> str:
        return f"<InventoryItem {self.item_name}: {self.central_stock} {self.unit}>"


class InventoryImage(TrackedBase):
    """A stored image attached to an inventory item."""

    __tablename__ = "inventory_images"

    __table_args__ = (
        UniqueConstraint("item_id", "key", name="uq_inventory_image_key"),
    )

    item_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_items.id"), nullable=False
    )
    url: Mapped[str] = mapped_column(String(2000), nullable=False)
    key: Mapped[str] = mapped_column(String(500), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False)

    item: Mapped["InventoryItem"] = relationship(back_populates="images")


class StockMovement(TrackedBase):
    """One append-only change to an item's central stock."""

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint("reason", "reference_id", name="uq_stock_movement_reference"),
        Index("idx_stock_movement_item", "item_id"),
    )

    item_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_items.id"), nullable=False
    )
    delta: Mapped[Decimal] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)

    # Delivery item id for delivery_confirmed; NULLs never collide
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    memo: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    # Global ledger order
    sequence: Mapped[int] = mapped_column(nullable=False)

    def to_dto(self):
        from procurement_kernel.domain.dtos import StockMovementInfo, StockReason

        return StockMovementInfo(
            id=self.id,
            item_id=self.item_id,
            delta=self.delta,
            reason=StockReason(self.reason),
            balance_after=self.balance_after,
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            reference_id=self.reference_id,
            memo=self.memo,
        )
