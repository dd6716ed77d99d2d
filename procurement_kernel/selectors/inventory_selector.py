"""
Module: procurement_kernel.selectors.inventory_selector
Responsibility: Read-only queries over the inventory catalog and its stock
    movement ledger.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - movements() returns rows in ledger (sequence) order, so the running
      balance_after column reads top to bottom.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from procurement_kernel.domain.dtos import InventoryItemInfo, StockMovementInfo
from procurement_kernel.exceptions import InventoryItemNotFoundError
from procurement_kernel.models.inventory import (
    InventoryItem,
    StockMovement,
    inventory_item_vendors,
)
from procurement_kernel.selectors.base import BaseSelector


class InventorySelector(BaseSelector[InventoryItem]):
    """Catalog and stock lookups."""

    def _get(self, item_id: UUID) -> InventoryItem:
        item = self.session.get(InventoryItem, item_id)
        if item is None:
            raise InventoryItemNotFoundError(str(item_id))
        return item

    def item(self, item_id: UUID) -> InventoryItemInfo:
        """Item with its images and linked vendors."""
        return self._get(item_id).to_dto()

    def by_name(self, item_name: str) -> InventoryItemInfo | None:
        """Case-insensitive catalog lookup."""
        item = self.session.execute(
            select(InventoryItem).where(
                InventoryItem.name_key == InventoryItem.key_for(item_name)
            )
        ).scalar_one_or_none()
        return item.to_dto() if item is not None else None

    def stock(self, item_id: UUID) -> Decimal:
        """Current central stock."""
        return self._get(item_id).central_stock

    def list_items(self, active_only: bool = True) -> list[InventoryItemInfo]:
        stmt = select(InventoryItem)
        if active_only:
            stmt = stmt.where(InventoryItem.is_active.is_(True))
        stmt = stmt.order_by(InventoryItem.name_key)
        return [i.to_dto() for i in self.session.execute(stmt).scalars().all()]

    def movements(self, item_id: UUID) -> list[StockMovementInfo]:
        self._get(item_id)
        rows = self.session.execute(
            select(StockMovement)
            .where(StockMovement.item_id == item_id)
            .order_by(StockMovement.sequence)
        ).scalars().all()
        return [m.to_dto() for m in rows]

    def by_vendor(self, vendor_id: UUID) -> list[InventoryItemInfo]:
        """Items the vendor is linked to as a supplier."""
        items = self.session.execute(
            select(InventoryItem)
            .join(inventory_item_vendors, inventory_item_vendors.c.item_id == InventoryItem.id)
            .where(inventory_item_vendors.c.vendor_id == vendor_id)
            .order_by(InventoryItem.name_key)
        ).scalars().all()
        return [i.to_dto() for i in items]

    def low_stock(self, threshold: Decimal | int) -> list[InventoryItemInfo]:
        """Active items whose stock is strictly below ``threshold``, lowest first."""
        items = self.session.execute(
            select(InventoryItem)
            .where(
                InventoryItem.is_active.is_(True),
                InventoryItem.central_stock < threshold,
            )
            .order_by(InventoryItem.central_stock, InventoryItem.name_key)
        ).scalars().all()
        return [i.to_dto() for i in items]

    def item_count(self, active_only: bool = True) -> int:
        stmt = select(func.count(InventoryItem.id))
        if active_only:
            stmt = stmt.where(InventoryItem.is_active.is_(True))
        return self.session.execute(stmt).scalar_one()
