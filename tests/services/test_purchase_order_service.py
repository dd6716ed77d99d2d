"""
Tests for PurchaseOrderService.

Covers:
- Issuing from an approved comparison (single line, default GST split)
- Direct multi-line orders linking several requests
- Order window and basis validation
- PO numbering
- Cancellation rules
- Stored totals match a recomputation from the stored lines
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from procurement_kernel.domain.commands import (
    DeliveryItemInput,
    DeliveryMeta,
    PurchaseOrderItemInput,
    QuoteInput,
)
from procurement_kernel.domain.dtos import (
    DeliveryMode,
    PurchaseOrderStatus,
    RequestStatus,
)
from procurement_kernel.domain.pricing import line_total_of, order_total
from procurement_kernel.selectors.purchase_order_selector import PurchaseOrderSelector

TODAY = date(2024, 1, 1)


def _direct_line(request=None, quantity="10", rate="100", **kwargs):
    return PurchaseOrderItemInput(
        quantity=Decimal(quantity),
        unit="bags",
        unit_rate=Decimal(rate),
        request_id=request.id if request else None,
        description=None if request else "Emergency tarpaulin",
        **kwargs,
    )


class TestIssueFromComparison:
    """Tests for ordering the approved quote."""

    def test_approved_quote_becomes_single_line_order(self, lifecycle, service, vendors):
        """100 bags at 45 with 9 + 9 GST totals 5310."""
        request = lifecycle.request(quantity=Decimal("100"), unit="bags")
        lifecycle.ready_for_cc(request)
        comparison = lifecycle.unwrap(
            service.create_comparison(
                request.id,
                [
                    QuoteInput(vendor_id=vendors[0].id, unit_rate=Decimal("50")),
                    QuoteInput(vendor_id=vendors[1].id, unit_rate=Decimal("45")),
                ],
                lifecycle.purchase_officer,
            )
        )
        lifecycle.approve(comparison)

        order = lifecycle.unwrap(
            service.issue_from_comparison(comparison.id, lifecycle.purchase_officer)
        )

        assert order.vendor_id == vendors[1].id
        assert order.status == PurchaseOrderStatus.ISSUED
        assert order.is_direct is False
        assert order.comparison_id == comparison.id
        assert len(order.lines) == 1
        line = order.lines[0]
        assert line.quantity == Decimal("100")
        assert line.unit_rate == Decimal("45")
        assert line.per_unit_basis == Decimal("1")
        assert line.discount_percent == Decimal("0")
        assert (line.sgst_percent, line.cgst_percent) == (Decimal("9"), Decimal("9"))
        assert line.line_total == Decimal("5310.00")
        assert order.total_amount == Decimal("5310.00")

        view = service.request_view(request.id)
        assert view.request.status == RequestStatus.PO_ISSUED
        assert view.request.ordered_quantity == Decimal("100")
        assert view.po_numbers == (order.po_number,)

    def test_quote_gst_is_split_evenly(self, lifecycle, service, vendors):
        request = lifecycle.request(quantity=Decimal("10"))
        lifecycle.ready_for_cc(request)
        comparison = lifecycle.unwrap(
            service.create_comparison(
                request.id,
                [QuoteInput(vendor_id=vendors[0].id, unit_rate=Decimal("100"),
                            gst_percent=Decimal("28"))],
                lifecycle.purchase_officer,
            )
        )
        lifecycle.approve(comparison)

        order = lifecycle.unwrap(
            service.issue_from_comparison(comparison.id, lifecycle.purchase_officer)
        )

        line = order.lines[0]
        assert (line.sgst_percent, line.cgst_percent) == (Decimal("14"), Decimal("14"))
        assert order.total_amount == Decimal("1280.00")

    def test_default_validity_window(self, lifecycle):
        request = lifecycle.request()

        order = lifecycle.purchase_order(request)

        assert order.valid_till == TODAY + timedelta(days=30)

    def test_po_number_format_and_sequence(self, lifecycle):
        first = lifecycle.purchase_order(lifecycle.request())
        second = lifecycle.purchase_order(lifecycle.request(item_name="Sand"))

        assert first.po_number == "PO-202401-0001"
        assert second.po_number == "PO-202401-0002"

    def test_pending_comparison_cannot_be_ordered(self, lifecycle, service):
        request = lifecycle.request()
        lifecycle.ready_for_cc(request)
        comparison = lifecycle.comparison(request)

        result = service.issue_from_comparison(comparison.id, lifecycle.purchase_officer)

        assert result.error_code == "INVALID_TRANSITION"

    def test_expired_window_rejected(self, lifecycle, service):
        request = lifecycle.request()
        comparison = lifecycle.ready_for_po(request)

        result = service.issue_from_comparison(
            comparison.id, lifecycle.purchase_officer, valid_till=TODAY - timedelta(days=1)
        )

        assert result.error_code == "EXPIRED_ORDER_WINDOW"
        assert service.request_view(request.id).request.status == RequestStatus.READY_FOR_PO

    def test_window_ending_today_is_open(self, lifecycle, service):
        request = lifecycle.request()
        comparison = lifecycle.ready_for_po(request)

        result = service.issue_from_comparison(
            comparison.id, lifecycle.purchase_officer, valid_till=TODAY
        )

        assert result.is_success

    def test_window_checked_against_current_date(self, lifecycle, service):
        request = lifecycle.request()
        comparison = lifecycle.ready_for_po(request)
        lifecycle.clock.advance_days(3)

        result = service.issue_from_comparison(
            comparison.id, lifecycle.purchase_officer, valid_till=TODAY + timedelta(days=2)
        )

        assert result.error_code == "EXPIRED_ORDER_WINDOW"
        assert result.error_details["field"] == "valid_till"

    def test_same_comparison_cannot_be_ordered_twice(self, lifecycle, service):
        request = lifecycle.request()
        comparison = lifecycle.ready_for_po(request)
        lifecycle.unwrap(service.issue_from_comparison(comparison.id, lifecycle.purchase_officer))

        result = service.issue_from_comparison(comparison.id, lifecycle.purchase_officer)

        assert result.error_code == "INVALID_TRANSITION"


class TestIssueDirect:
    """Tests for the direct (bypass) path."""

    def test_three_requests_one_order(self, lifecycle, service, vendors, site):
        """Each linked request moves to po_issued independently."""
        requests = [
            lifecycle.request(item_name=name, quantity=Decimal("10"))
            for name in ("Cement", "Sand", "Aggregate")
        ]

        order = lifecycle.unwrap(
            service.issue_direct_po(
                vendors[0].id, site.id,
                [_direct_line(r) for r in requests],
                TODAY + timedelta(days=7),
                lifecycle.purchase_officer,
            )
        )

        assert order.is_direct is True
        assert [line.line_number for line in order.lines] == [1, 2, 3]
        assert [line.description for line in order.lines] == ["Cement", "Sand", "Aggregate"]
        assert set(order.request_ids) == {r.id for r in requests}
        for request in requests:
            view = service.request_view(request.id)
            assert view.request.status == RequestStatus.PO_ISSUED
            assert view.request.ordered_quantity == Decimal("10")

    def test_unlinked_emergency_line(self, lifecycle, service, vendors, site):
        order = lifecycle.unwrap(
            service.issue_direct_po(
                vendors[0].id, site.id,
                [_direct_line(None, quantity="3", rate="250")],
                TODAY, lifecycle.purchase_officer,
            )
        )

        assert order.request_ids == ()
        assert order.total_amount == Decimal("750.00")

    def test_unlinked_line_needs_description(self, lifecycle, service, vendors, site):
        line = PurchaseOrderItemInput(
            quantity=Decimal("1"), unit="nos", unit_rate=Decimal("10")
        )

        result = service.issue_direct_po(
            vendors[0].id, site.id, [line], TODAY, lifecycle.purchase_officer
        )

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error_details["field"] == "items[0].description"

    def test_zero_basis_rejected(self, lifecycle, service, vendors, site):
        request = lifecycle.request()

        result = service.issue_direct_po(
            vendors[0].id, site.id,
            [_direct_line(request, per_unit_basis=Decimal("0"))],
            TODAY, lifecycle.purchase_officer,
        )

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error_details["field"] == "items[0].per_unit_basis"
        assert service.request_view(request.id).request.status == RequestStatus.SUBMITTED

    def test_pending_comparison_blocks_direct_order(self, lifecycle, service, vendors, site):
        request = lifecycle.request()
        lifecycle.ready_for_cc(request)
        lifecycle.comparison(request)

        result = service.issue_direct_po(
            vendors[0].id, site.id, [_direct_line(request)], TODAY, lifecycle.purchase_officer
        )

        assert result.error_code == "INVALID_TRANSITION"

    def test_ordered_request_cannot_be_ordered_again(self, lifecycle, service, vendors, site):
        request = lifecycle.request()
        lifecycle.purchase_order(request)

        result = service.issue_direct_po(
            vendors[0].id, site.id, [_direct_line(request)], TODAY, lifecycle.purchase_officer
        )

        assert result.error_code == "INVALID_TRANSITION"

    def test_inactive_vendor_rejected(self, lifecycle, service, vendors, site, manager):
        lifecycle.unwrap(service.deactivate_vendor(vendors[2].id, manager))

        result = service.issue_direct_po(
            vendors[2].id, site.id, [_direct_line(None)], TODAY, lifecycle.purchase_officer
        )

        assert result.error_code == "VENDOR_NOT_FOUND"

    def test_empty_items_rejected(self, lifecycle, service, vendors, site):
        result = service.issue_direct_po(
            vendors[0].id, site.id, [], TODAY, lifecycle.purchase_officer
        )

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error_details["field"] == "items"

    def test_site_engineer_cannot_order(self, lifecycle, service, vendors, site):
        result = service.issue_direct_po(
            vendors[0].id, site.id, [_direct_line(None)], TODAY, lifecycle.site_engineer
        )

        assert result.error_code == "FORBIDDEN"


class TestTotals:
    """Stored totals equal a recomputation from stored lines."""

    def test_recomputed_total_matches_stored(self, lifecycle, service, session, vendors, site):
        requests = [lifecycle.request(item_name=f"Item {i}") for i in range(3)]
        lines = [
            _direct_line(requests[0], quantity="7", rate="33.33",
                         discount_percent=Decimal("2.5"),
                         sgst_percent=Decimal("9"), cgst_percent=Decimal("9")),
            _direct_line(requests[1], quantity="250", rate="1234.5",
                         per_unit_basis=Decimal("100"),
                         sgst_percent=Decimal("6"), cgst_percent=Decimal("6")),
            _direct_line(requests[2], quantity="1", rate="0.01"),
        ]
        order = lifecycle.unwrap(
            service.issue_direct_po(
                vendors[0].id, site.id, lines, TODAY, lifecycle.purchase_officer
            )
        )

        stored = PurchaseOrderSelector(session).get(order.id)
        recomputed = [line_total_of(line) for line in stored.lines]

        assert [line.line_total for line in stored.lines] == recomputed
        assert stored.total_amount == order_total(recomputed)

    def test_document_carries_resolved_parties(self, lifecycle, service, session, vendors, site):
        request = lifecycle.request()
        order = lifecycle.purchase_order(request)

        document = PurchaseOrderSelector(session).document(order.id)

        assert document.po_number == order.po_number
        assert document.vendor.company_name == vendors[1].company_name
        assert document.site.name == site.name
        assert document.request_numbers == (request.request_number,)
        assert document.subtotal + document.tax_total == document.total_amount


class TestCancel:
    """Tests for cancelling issued orders."""

    def test_cancel_returns_requests_to_ready_for_po(self, lifecycle, service):
        request = lifecycle.request()
        order = lifecycle.purchase_order(request)

        cancelled = lifecycle.unwrap(
            service.cancel_purchase_order(order.id, lifecycle.purchase_officer, "vendor backed out")
        )

        assert cancelled.status == PurchaseOrderStatus.CANCELLED
        assert cancelled.cancelled_reason == "vendor backed out"
        view = service.request_view(request.id)
        assert view.request.status == RequestStatus.READY_FOR_PO
        assert view.request.ordered_quantity is None
        assert view.po_numbers == ()

    def test_cancel_requires_reason(self, lifecycle, service):
        order = lifecycle.purchase_order(lifecycle.request())

        result = service.cancel_purchase_order(order.id, lifecycle.purchase_officer, " ")

        assert result.error_code == "VALIDATION_ERROR"

    def test_cancel_blocked_by_live_delivery(self, lifecycle, service):
        request = lifecycle.request()
        order = lifecycle.purchase_order(request)
        lifecycle.delivery(request, "10", po_id=order.id)

        result = service.cancel_purchase_order(order.id, lifecycle.purchase_officer, "too late")

        assert result.error_code == "INVALID_TRANSITION"

    def test_cancelled_order_cannot_be_cancelled_again(self, lifecycle, service):
        order = lifecycle.purchase_order(lifecycle.request())
        lifecycle.unwrap(service.cancel_purchase_order(order.id, lifecycle.purchase_officer, "x"))

        result = service.cancel_purchase_order(order.id, lifecycle.purchase_officer, "again")

        assert result.error_code == "INVALID_TRANSITION"

    def test_missing_order(self, service, purchase_officer):
        result = service.cancel_purchase_order(uuid4(), purchase_officer, "gone")

        assert result.error_code == "PURCHASE_ORDER_NOT_FOUND"

    def test_delivery_against_cancelled_order_rejected(self, lifecycle, service):
        request = lifecycle.request()
        order = lifecycle.purchase_order(request)
        lifecycle.unwrap(service.cancel_purchase_order(order.id, lifecycle.purchase_officer, "x"))

        result = service.create_delivery(
            [DeliveryItemInput(request_id=request.id, quantity=Decimal("5"))],
            DeliveryMeta(mode=DeliveryMode.VENDOR, receiver_name="Store"),
            lifecycle.purchase_officer,
            po_id=order.id,
        )

        assert result.error_code == "INVALID_TRANSITION"
