"""
InventoryLedger -- the only writer of central stock.

Responsibility:
    Maintains the inventory catalog and its central stock levels.  Every
    stock change is an atomic increment/decrement under a row lock that
    appends a StockMovement; confirmed deliveries post here through
    ``post_delivery``.  Images and vendor links are managed alongside
    but never interact with stock.

Architecture position:
    Kernel > Services -- imperative shell.  Called by DeliveryService
    (delivery_confirmed) and directly by purchase officers (manual
    correction, initial stock, catalog edits).

Invariants enforced:
    - central_stock == sum of StockMovement.delta for the item.
    - Negative stock is rejected unless ``allow_negative_stock`` is set.
    - (reason, reference_id) is unique: a delivery item posts at most once.
    - Image operations are idempotent by storage key.

Failure modes:
    - NegativeStockError: resulting stock below zero (default policy).
    - ValidationError: zero delta, blank name/unit, duplicate item name.
    - InventoryItemNotFoundError / VendorNotFoundError.
    - ForbiddenError: stock adjustments and catalog edits need a purchase
      officer.
    - ValidationError: a delivery whose unit differs from the catalog unit,
      or a delivery_confirmed adjustment with no confirmed delivery behind it.
    - OptimisticLockError: the item row changed underneath us.

Audit relevance:
    ``stock_adjusted`` is logged for every movement with delta, reason
    and resulting balance; the movement rows are append-only.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procurement_kernel.db.types import ZERO
from procurement_kernel.domain.authority import Actor, require_role
from procurement_kernel.domain.clock import Clock
from procurement_kernel.domain.dtos import InventoryItemInfo, StockMovementInfo, StockReason
from procurement_kernel.domain.validation import (
    optional_text,
    require_decimal,
    require_enum,
    require_non_negative,
    require_text,
)
from procurement_kernel.exceptions import (
    InventoryItemNotFoundError,
    NegativeStockError,
    OptimisticLockError,
    ValidationError,
    VendorNotFoundError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.inventory import InventoryImage, InventoryItem, StockMovement
from procurement_kernel.models.vendor import Vendor
from procurement_kernel.services.base import BaseService
from procurement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.inventory")


class InventoryLedger(BaseService[InventoryItem]):
    """
    Catalog and stock ledger.

    Contract:
        ``adjust_stock`` is atomic: the balance check, the new balance and
        the movement row are written together under the item lock.

    Guarantees:
        - Re-posting a (reason, reference_id) pair returns the original
          movement without changing stock.

    Non-goals:
        - Does NOT talk to file storage; callers upload first and pass
          the resulting (url, key).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        allow_negative_stock: bool = False,
    ):
        super().__init__(session, clock)
        self._allow_negative_stock = allow_negative_stock
        self._sequences = SequenceService(session)

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def create_item(
        self,
        item_name: str,
        unit: str,
        actor: Actor,
        hsn_code: str | None = None,
        description: str | None = None,
        initial_stock: Decimal | int | str = ZERO,
        vendor_ids: tuple[UUID, ...] = (),
    ) -> InventoryItemInfo:
        """Add a catalog entry, optionally with opening stock and vendors."""
        require_role(actor, "inventory.create_item")
        name = require_text(item_name, "item_name")
        unit = require_text(unit, "unit")
        opening = require_non_negative(initial_stock, "initial_stock")

        if self._find_by_name(name) is not None:
            raise ValidationError("item_name", f"'{name}' already exists in the catalog")
        vendors = [self._require_vendor(vendor_id) for vendor_id in vendor_ids]

        item = self._insert_item(name, unit, actor, optional_text(hsn_code),
                                 optional_text(description))
        item.vendors.extend(vendors)
        self.session.flush()

        if opening > ZERO:
            self._apply(item, opening, StockReason.INITIAL_STOCK, actor, None, None)

        logger.info(
            "inventory_item_created",
            extra={"item_id": str(item.id), "item_name": name, "initial_stock": opening},
        )
        return item.to_dto()

    def update_item(
        self,
        item_id: UUID,
        actor: Actor,
        item_name: str | None = None,
        unit: str | None = None,
        hsn_code: str | None = None,
        description: str | None = None,
    ) -> InventoryItemInfo:
        """Edit catalog fields.  Stock is never changed here."""
        require_role(actor, "inventory.update_item")
        item = self._load_for_update(item_id)

        if item_name is not None:
            name = require_text(item_name, "item_name")
            existing = self._find_by_name(name)
            if existing is not None and existing.id != item.id:
                raise ValidationError("item_name", f"'{name}' already exists in the catalog")
            item.item_name = name
            item.name_key = InventoryItem.key_for(name)
        if unit is not None:
            item.unit = require_text(unit, "unit")
        if hsn_code is not None:
            item.hsn_code = optional_text(hsn_code)
        if description is not None:
            item.description = optional_text(description)

        self._stamp_update(item, actor)
        self._flush("InventoryItem", item.id)
        return item.to_dto()

    def deactivate_item(self, item_id: UUID, actor: Actor) -> InventoryItemInfo:
        require_role(actor, "inventory.update_item")
        item = self._load_for_update(item_id)
        item.is_active = False
        self._stamp_update(item, actor)
        self._flush("InventoryItem", item.id)
        logger.info("inventory_item_deactivated", extra={"item_id": str(item.id)})
        return item.to_dto()

    def link_vendor(self, item_id: UUID, vendor_id: UUID, actor: Actor) -> InventoryItemInfo:
        require_role(actor, "inventory.link_vendor")
        item = self._load_for_update(item_id)
        vendor = self._require_vendor(vendor_id)
        if vendor not in item.vendors:
            item.vendors.append(vendor)
            self.session.flush()
        return item.to_dto()

    def unlink_vendor(self, item_id: UUID, vendor_id: UUID, actor: Actor) -> InventoryItemInfo:
        require_role(actor, "inventory.link_vendor")
        item = self._load_for_update(item_id)
        item.vendors[:] = [v for v in item.vendors if v.id != vendor_id]
        self.session.flush()
        return item.to_dto()

    # -------------------------------------------------------------------------
    # Stock
    # -------------------------------------------------------------------------

    def adjust_stock(
        self,
        item_id: UUID,
        delta: Decimal | int | str,
        reason: StockReason | str,
        actor: Actor,
        reference_id: UUID | None = None,
        memo: str | None = None,
    ) -> StockMovementInfo:
        """
        Atomically add ``delta`` (may be negative) to an item's stock.

        ``delivery_confirmed`` is accepted only as a replay of the movement a
        confirmed delivery item already posted; it never adds new stock.

        Raises:
            NegativeStockError: result below zero under the default policy.
        """
        require_role(actor, "inventory.adjust_stock")
        reason = require_enum(StockReason, reason, "reason")
        delta = require_decimal(delta, "delta")
        if delta == ZERO:
            raise ValidationError("delta", "must not be zero")

        existing = self._existing_movement(reason, reference_id)
        if existing is not None:
            return existing.to_dto()
        if reason == StockReason.DELIVERY_CONFIRMED:
            # Only confirming a delivery item posts this reason
            raise ValidationError(
                "reference_id", "must name a delivery item that has been confirmed"
            )

        item = self._load_for_update(item_id)
        return self._apply(item, delta, reason, actor, reference_id, optional_text(memo)).to_dto()

    def post_delivery(
        self,
        item_name: str,
        unit: str,
        quantity: Decimal,
        reference_id: UUID,
        actor: Actor,
    ) -> StockMovementInfo:
        """
        Add a confirmed delivery to the catalog entry matching ``item_name``
        (case-insensitive), creating the entry when none exists.
        """
        existing = self._existing_movement(StockReason.DELIVERY_CONFIRMED, reference_id)
        if existing is not None:
            return existing.to_dto()

        item = self._find_by_name(item_name)
        if item is None:
            item = self._insert_item(item_name.strip(), unit, actor, None, None)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise OptimisticLockError("InventoryItem", InventoryItem.key_for(item_name)) from exc
            logger.info(
                "inventory_item_created_from_delivery",
                extra={"item_id": str(item.id), "item_name": item.item_name},
            )
        else:
            item = self._load_for_update(item.id)
            if item.unit.strip().lower() != unit.strip().lower():
                raise ValidationError(
                    "unit",
                    f"delivered in '{unit}' but '{item.item_name}' is stocked in '{item.unit}'",
                )

        movement = self._apply(
            item, quantity, StockReason.DELIVERY_CONFIRMED, actor, reference_id, None
        )
        return movement.to_dto()

    def _apply(
        self,
        item: InventoryItem,
        delta: Decimal,
        reason: StockReason,
        actor: Actor,
        reference_id: UUID | None,
        memo: str | None,
    ) -> StockMovement:
        current = item.central_stock
        new_balance = current + delta
        if new_balance < ZERO and not self._allow_negative_stock:
            logger.warning(
                "negative_stock_rejected",
                extra={
                    "item_id": str(item.id),
                    "current": current,
                    "delta": delta,
                    "reason": reason.value,
                },
            )
            raise NegativeStockError(str(item.id), current, delta)

        item.central_stock = new_balance
        self._stamp_update(item, actor)
        movement = StockMovement(
            item_id=item.id,
            delta=delta,
            reason=reason.value,
            balance_after=new_balance,
            reference_id=reference_id,
            memo=memo,
            sequence=self._sequences.next_value(SequenceService.STOCK_MOVEMENT),
            created_by_id=actor.actor_id,
            created_at=self._now(),
        )
        self.session.add(movement)
        try:
            self._flush("InventoryItem", item.id)
        except IntegrityError as exc:
            raise OptimisticLockError("StockMovement", f"{reason.value}:{reference_id}") from exc

        logger.info(
            "stock_adjusted",
            extra={
                "item_id": str(item.id),
                "delta": delta,
                "reason": reason.value,
                "balance_after": new_balance,
                "reference_id": str(reference_id) if reference_id else None,
            },
        )
        return movement

    def _existing_movement(
        self, reason: StockReason, reference_id: UUID | None
    ) -> StockMovement | None:
        if reference_id is None:
            return None
        return self.session.execute(
            select(StockMovement).where(
                StockMovement.reason == reason.value,
                StockMovement.reference_id == reference_id,
            )
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    def attach_image(self, item_id: UUID, url: str, key: str, actor: Actor) -> InventoryItemInfo:
        """Append an (url, key) pair; a key already attached is a no-op."""
        require_role(actor, "inventory.attach_image")
        url = require_text(url, "url")
        key = require_text(key, "key")
        item = self._load_for_update(item_id)

        if any(image.key == key for image in item.images):
            return item.to_dto()

        position = max((image.position for image in item.images), default=0) + 1
        item.images.append(
            InventoryImage(
                url=url,
                key=key,
                position=position,
                created_by_id=actor.actor_id,
                created_at=self._now(),
            )
        )
        self.session.flush()
        logger.info("inventory_image_attached", extra={"item_id": str(item.id), "key": key})
        return item.to_dto()

    def remove_image(self, item_id: UUID, key: str, actor: Actor) -> tuple[InventoryItemInfo, bool]:
        """
        Detach the image stored under ``key``.

        Returns:
            (item, removed) -- removed is False when no image had that key.
        """
        require_role(actor, "inventory.remove_image")
        item = self._load_for_update(item_id)
        image = next((image for image in item.images if image.key == key), None)
        if image is None:
            return item.to_dto(), False

        item.images.remove(image)
        self.session.flush()
        logger.info("inventory_image_removed", extra={"item_id": str(item.id), "key": key})
        return item.to_dto(), True

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _insert_item(self, name, unit, actor, hsn_code, description) -> InventoryItem:
        item = InventoryItem(
            item_name=name,
            name_key=InventoryItem.key_for(name),
            unit=unit,
            hsn_code=hsn_code,
            description=description,
            central_stock=ZERO,
            is_active=True,
            created_by_id=actor.actor_id,
            created_at=self._now(),
        )
        self.session.add(item)
        return item

    def _find_by_name(self, name: str) -> InventoryItem | None:
        return self.session.execute(
            select(InventoryItem).where(InventoryItem.name_key == InventoryItem.key_for(name))
        ).scalar_one_or_none()

    def _require_vendor(self, vendor_id: UUID) -> Vendor:
        vendor = self.session.get(Vendor, vendor_id)
        if vendor is None:
            raise VendorNotFoundError(str(vendor_id))
        return vendor

    def _load_for_update(self, item_id: UUID) -> InventoryItem:
        item = self.session.execute(
            select(InventoryItem)
            .where(InventoryItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if item is None:
            raise InventoryItemNotFoundError(str(item_id))
        return item
