"""
Tests for InventoryLedger.

Covers:
- Catalog entries: creation with opening stock, unique names, edits
- Stock adjustments and the running balance
- Negative stock policy (rejected by default, allowed by configuration)
- Idempotent postings keyed by (reason, reference)
- Images and vendor links
- Low-stock listing
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from procurement_kernel.domain.commands import FileUpload
from procurement_kernel.domain.dtos import StockReason
from procurement_kernel.selectors.inventory_selector import InventorySelector
from procurement_services.results import OperationStatus


@pytest.fixture
def cement(service, purchase_officer):
    result = service.create_inventory_item(
        "Cement", "bags", purchase_officer, hsn_code="2523", initial_stock=Decimal("10")
    )
    assert result.is_success
    return result.value


def _image(name="front.jpg"):
    return FileUpload(filename=name, content=b"\x89PNG", content_type="image/png")


class TestCatalog:
    """Tests for catalog entries."""

    def test_opening_stock_is_a_movement(self, cement, session):
        assert cement.central_stock == Decimal("10")
        movements = InventorySelector(session).movements(cement.id)
        assert [(m.delta, m.reason, m.balance_after) for m in movements] == [
            (Decimal("10"), StockReason.INITIAL_STOCK, Decimal("10"))
        ]

    def test_zero_opening_stock_writes_no_movement(self, service, session, purchase_officer):
        item = service.create_inventory_item("Sand", "cft", purchase_officer).value

        assert item.central_stock == Decimal("0")
        assert InventorySelector(session).movements(item.id) == []

    def test_names_are_unique_ignoring_case(self, cement, service, purchase_officer):
        result = service.create_inventory_item("  cement ", "bags", purchase_officer)

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error_details["field"] == "item_name"

    def test_rename_to_existing_name_rejected(self, cement, service, purchase_officer):
        sand = service.create_inventory_item("Sand", "cft", purchase_officer).value

        result = service.update_inventory_item(sand.id, purchase_officer, item_name="CEMENT")

        assert result.error_code == "VALIDATION_ERROR"

    def test_update_leaves_stock_alone(self, cement, service, purchase_officer):
        updated = service.update_inventory_item(
            cement.id, purchase_officer, description="OPC 53 grade"
        ).value

        assert updated.description == "OPC 53 grade"
        assert updated.central_stock == Decimal("10")

    def test_deactivated_item_leaves_active_list(self, cement, service, session, purchase_officer):
        service.deactivate_inventory_item(cement.id, purchase_officer)

        assert InventorySelector(session).list_items() == []
        assert len(InventorySelector(session).list_items(active_only=False)) == 1

    def test_site_engineer_cannot_create(self, service, site_engineer):
        result = service.create_inventory_item("Cement", "bags", site_engineer)

        assert result.error_code == "FORBIDDEN"


class TestAdjustStock:
    """Tests for manual stock movements."""

    def test_adjustments_keep_running_balance(self, cement, service, session, purchase_officer):
        service.adjust_stock(cement.id, Decimal("5"), StockReason.MANUAL_CORRECTION, purchase_officer)
        movement = service.adjust_stock(
            cement.id, Decimal("-12"), StockReason.MANUAL_CORRECTION, purchase_officer,
            memo="issued to block B",
        ).value

        assert movement.balance_after == Decimal("3")
        assert movement.memo == "issued to block B"
        selector = InventorySelector(session)
        assert selector.stock(cement.id) == Decimal("3")
        movements = selector.movements(cement.id)
        assert sum(m.delta for m in movements) == selector.stock(cement.id)

    def test_negative_stock_rejected_by_default(self, cement, service, session, purchase_officer):
        result = service.adjust_stock(
            cement.id, Decimal("-11"), StockReason.MANUAL_CORRECTION, purchase_officer
        )

        assert result.error_code == "NEGATIVE_STOCK"
        assert result.error_details["current"] == Decimal("10")
        assert result.error_details["delta"] == Decimal("-11")
        assert InventorySelector(session).stock(cement.id) == Decimal("10")

    @pytest.mark.parametrize("config", [{"allow_negative_stock": True}], indirect=True)
    def test_negative_stock_allowed_by_configuration(self, cement, service, purchase_officer):
        result = service.adjust_stock(
            cement.id, Decimal("-11"), StockReason.MANUAL_CORRECTION, purchase_officer
        )

        assert result.value.balance_after == Decimal("-1")

    def test_zero_delta_rejected(self, cement, service, purchase_officer):
        result = service.adjust_stock(cement.id, 0, StockReason.MANUAL_CORRECTION, purchase_officer)

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error_details["field"] == "delta"

    def test_same_reference_posts_once(self, cement, service, session, purchase_officer):
        reference = uuid4()
        first = service.adjust_stock(
            cement.id, Decimal("4"), StockReason.MANUAL_CORRECTION, purchase_officer,
            reference_id=reference,
        ).value
        second = service.adjust_stock(
            cement.id, Decimal("4"), StockReason.MANUAL_CORRECTION, purchase_officer,
            reference_id=reference,
        ).value

        assert second.id == first.id
        assert InventorySelector(session).stock(cement.id) == Decimal("14")

    def test_manual_adjustment_requires_purchase_officer(self, cement, service, manager):
        result = service.adjust_stock(cement.id, Decimal("1"), StockReason.MANUAL_CORRECTION, manager)

        assert result.error_code == "FORBIDDEN"

    @pytest.mark.parametrize("reason", list(StockReason))
    def test_every_reason_requires_purchase_officer(
        self, cement, service, session, site_engineer, reason
    ):
        result = service.adjust_stock(cement.id, Decimal("1000"), reason.value, site_engineer)

        assert result.error_code == "FORBIDDEN"
        assert InventorySelector(session).stock(cement.id) == Decimal("10")

    def test_delivery_reason_cannot_be_posted_directly(
        self, cement, service, session, purchase_officer
    ):
        result = service.adjust_stock(
            cement.id, Decimal("1000"), "delivery_confirmed", purchase_officer,
            reference_id=uuid4(),
        )

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error_details["field"] == "reference_id"
        assert InventorySelector(session).stock(cement.id) == Decimal("10")

    def test_unknown_item(self, service, purchase_officer):
        result = service.adjust_stock(
            uuid4(), Decimal("1"), StockReason.MANUAL_CORRECTION, purchase_officer
        )

        assert result.error_code == "INVENTORY_ITEM_NOT_FOUND"

    def test_low_stock_lists_items_below_threshold(self, cement, service, purchase_officer):
        service.create_inventory_item("Steel", "tonnes", purchase_officer, initial_stock=50)

        low = service.low_stock_items()

        assert [item.item_name for item in low] == ["Cement"]


class TestImages:
    """Tests for inventory images."""

    def test_add_image(self, cement, service, storage, purchase_officer):
        result = service.add_inventory_image(cement.id, _image(), purchase_officer)

        assert result.status == OperationStatus.SUCCESS
        (image,) = result.value.images
        assert image.key.startswith(f"inventory/{cement.id}/")
        assert image.uploaded_by_id == purchase_officer.actor_id
        assert image.key in storage.files

    def test_images_keep_upload_order(self, cement, service, purchase_officer):
        service.add_inventory_image(cement.id, _image("a.jpg"), purchase_officer)
        result = service.add_inventory_image(cement.id, _image("b.jpg"), purchase_officer)

        assert [i.key.rsplit("-", 1)[-1] for i in result.value.images] == ["a.jpg", "b.jpg"]

    def test_remove_image_deletes_file(self, cement, service, storage, purchase_officer):
        key = service.add_inventory_image(cement.id, _image(), purchase_officer).value.images[0].key

        result = service.remove_inventory_image(cement.id, key, purchase_officer)

        assert result.status == OperationStatus.SUCCESS
        assert result.value.images == ()
        assert storage.deleted == [key]

    def test_removing_unknown_key_is_a_no_op(self, cement, service, storage, purchase_officer):
        result = service.remove_inventory_image(cement.id, "inventory/missing.jpg", purchase_officer)

        assert result.status == OperationStatus.SUCCESS
        assert storage.deleted == []

    def test_failed_delete_is_a_warning(self, cement, service, storage, purchase_officer):
        key = service.add_inventory_image(cement.id, _image(), purchase_officer).value.images[0].key
        storage.fail_deletes = True

        result = service.remove_inventory_image(cement.id, key, purchase_officer)

        assert result.status == OperationStatus.PARTIAL_SUCCESS
        assert result.value.images == ()
        assert result.warnings[0].collaborator == "file_storage"

    def test_failed_upload_attaches_nothing(self, cement, service, session, storage, purchase_officer):
        storage.fail_uploads = True

        result = service.add_inventory_image(cement.id, _image(), purchase_officer)

        assert result.status == OperationStatus.FAILED
        assert InventorySelector(session).item(cement.id).images == ()

    def test_image_for_unknown_item_removes_upload(self, service, storage, purchase_officer):
        result = service.add_inventory_image(uuid4(), _image(), purchase_officer)

        assert result.error_code == "INVENTORY_ITEM_NOT_FOUND"
        assert storage.files == {}


class TestVendorLinks:
    """Tests for linking suppliers to catalog entries."""

    def test_link_and_unlink(self, cement, service, session, vendors, purchase_officer):
        service.link_vendor(cement.id, vendors[0].id, purchase_officer)
        linked = service.link_vendor(cement.id, vendors[0].id, purchase_officer).value

        assert linked.vendor_ids == (vendors[0].id,)
        assert [i.id for i in InventorySelector(session).by_vendor(vendors[0].id)] == [cement.id]

        unlinked = service.unlink_vendor(cement.id, vendors[0].id, purchase_officer).value

        assert unlinked.vendor_ids == ()

    def test_link_unknown_vendor(self, cement, service, purchase_officer):
        result = service.link_vendor(cement.id, uuid4(), purchase_officer)

        assert result.error_code == "VENDOR_NOT_FOUND"

    def test_create_with_vendors(self, service, vendors, purchase_officer):
        item = service.create_inventory_item(
            "TMT Bars", "tonnes", purchase_officer,
            vendor_ids=[vendors[1].id, vendors[2].id],
        ).value

        assert set(item.vendor_ids) == {vendors[1].id, vendors[2].id}
