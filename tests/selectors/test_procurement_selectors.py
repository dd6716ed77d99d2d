"""
Tests for the read side: request views, fulfilment, dashboard.

Covers:
- RequestView resolves site and comparison at query time
- Fulfilment figures across several challans
- Comparison queues: pending and active per request
- Request queues ordered urgent first
- Dashboard counts
- Purchase order lookups by number and request
"""

from decimal import Decimal

from procurement_kernel.domain.commands import PurchaseOrderItemInput, RequestItemInput
from procurement_kernel.domain.dtos import (
    ComparisonDecision,
    DecisionOutcome,
    PurchaseOrderStatus,
    RequestStatus,
)
from procurement_kernel.selectors.cost_comparison_selector import CostComparisonSelector
from procurement_kernel.selectors.delivery_selector import DeliverySelector
from procurement_kernel.selectors.purchase_order_selector import PurchaseOrderSelector
from procurement_kernel.selectors.request_selector import RequestSelector


class TestRequestView:
    """Tests for the composed request view."""

    def test_new_request_view(self, lifecycle, service, site):
        request = lifecycle.request(quantity=Decimal("40"))

        view = service.request_view(request.id)

        assert view.site.name == site.name
        assert view.comparison.comparison_id is None
        assert view.comparison.decision is None
        assert view.fulfilment.ordered == Decimal("40")
        assert view.fulfilment.remaining == Decimal("40")
        assert view.po_numbers == ()

    def test_site_rename_shows_on_request(self, lifecycle, service, site, manager):
        request = lifecycle.request()
        lifecycle.unwrap(service.update_site(site.id, manager, name="Skyline Tower Phase II"))

        assert service.request_view(request.id).site.name == "Skyline Tower Phase II"

    def test_comparison_summary_after_approval(self, lifecycle, service, vendors):
        request = lifecycle.request()
        lifecycle.ready_for_po(request)

        summary = service.request_view(request.id).comparison

        assert summary.decision == ComparisonDecision.APPROVED
        assert summary.cheapest_vendor_id == vendors[1].id
        assert summary.selected_vendor_id == vendors[1].id
        assert summary.selected_unit_rate == Decimal("340")

    def test_fulfilment_across_challans(self, lifecycle, service):
        request = lifecycle.request(quantity=Decimal("100"))
        lifecycle.purchase_order(request)
        first = lifecycle.delivery(request, "30")
        lifecycle.delivery(request, "25")
        lifecycle.unwrap(
            service.mark_item_delivered(first.id, first.items[0].id, lifecycle.purchase_officer)
        )

        fulfilment = service.request_view(request.id).fulfilment

        assert fulfilment.delivered == Decimal("30")
        assert fulfilment.reserved == Decimal("25")
        assert fulfilment.remaining == Decimal("45")
        assert not fulfilment.is_complete

    def test_ordered_quantity_overrides_requested(self, lifecycle, service, vendors, site):
        request = lifecycle.request(quantity=Decimal("100"))
        lifecycle.unwrap(
            service.issue_direct_po(
                vendors[0].id, site.id,
                [PurchaseOrderItemInput(
                    quantity=Decimal("80"), unit="bags", unit_rate=Decimal("5"),
                    request_id=request.id,
                )],
                lifecycle.clock.today(),
                lifecycle.purchase_officer,
            )
        )

        assert service.request_view(request.id).fulfilment.ordered == Decimal("80")


class TestComparisonQueues:
    """Tests for the manager's comparison queue."""

    def test_pending_then_decided(self, lifecycle, session):
        request = lifecycle.request()
        lifecycle.ready_for_cc(request)
        comparison = lifecycle.comparison(request)
        selector = CostComparisonSelector(session)

        assert [c.id for c in selector.pending()] == [comparison.id]
        assert selector.active_for_request(request.id).decision == ComparisonDecision.PENDING

        lifecycle.approve(comparison)

        assert selector.pending() == []
        assert selector.active_for_request(request.id).decision == ComparisonDecision.APPROVED

    def test_rejected_comparison_is_not_active(self, lifecycle, service, session):
        request = lifecycle.request()
        lifecycle.ready_for_cc(request)
        comparison = lifecycle.comparison(request)
        lifecycle.unwrap(
            service.decide_comparison(
                comparison.id, DecisionOutcome.REJECT, lifecycle.manager, note="too costly"
            )
        )

        assert CostComparisonSelector(session).active_for_request(request.id) is None


class TestRequestQueues:
    """Tests for request listings."""

    def test_by_status_lists_urgent_first(self, lifecycle, session):
        routine = lifecycle.request(item_name="Sand")
        urgent = lifecycle.request(item_name="Cement", is_urgent=True)

        queue = RequestSelector(session).by_status(RequestStatus.SUBMITTED)

        assert [r.id for r in queue] == [urgent.id, routine.id]

    def test_by_request_number_returns_all_items(self, service, session, site, site_engineer):
        items = [
            RequestItemInput(item_name="Cement", quantity=Decimal("10"), unit="bags"),
            RequestItemInput(item_name="Sand", quantity=Decimal("5"), unit="cft"),
        ]
        service.create_requests(site.id, items, site_engineer)

        lines = RequestSelector(session).by_request_number("001")

        assert sorted(r.item_name for r in lines) == ["Cement", "Sand"]


class TestDashboard:
    """Tests for the overview counts."""

    def test_overview_counts(self, lifecycle, service, purchase_officer):
        lifecycle.request(item_name="Sand")
        ordered = lifecycle.request()
        lifecycle.purchase_order(ordered)
        lifecycle.delivery(ordered, "10")
        service.create_inventory_item("Cement", "bags", purchase_officer, initial_stock=5)
        service.create_inventory_item("Steel", "tonnes", purchase_officer, initial_stock=500)

        overview = service.dashboard()

        assert overview.total_requests == 2
        assert overview.requests_by_status["submitted"] == 1
        assert overview.requests_by_status["delivery_stage"] == 1
        assert overview.requests_by_status["closed"] == 0
        assert overview.open_deliveries == 1
        assert overview.inventory_items == 2
        assert overview.low_stock_items == 1
        (top,) = overview.top_sites
        assert top.site_name == "Skyline Tower"
        assert top.request_count == 2


class TestPurchaseOrderLookups:
    """Tests for purchase order queries."""

    def test_lookup_by_number_and_request(self, lifecycle, session):
        request = lifecycle.request()
        order = lifecycle.purchase_order(request)
        selector = PurchaseOrderSelector(session)

        assert selector.by_number(order.po_number).id == order.id
        assert selector.by_number("PO-209912-9999") is None
        assert [o.id for o in selector.for_request(request.id)] == [order.id]
        assert [o.id for o in selector.list_orders(status=PurchaseOrderStatus.ISSUED)] == [order.id]

    def test_challans_for_order(self, lifecycle, session):
        request = lifecycle.request()
        order = lifecycle.purchase_order(request)
        first = lifecycle.delivery(request, "10", po_id=order.id)
        second = lifecycle.delivery(request, "20", po_id=order.id)

        challans = DeliverySelector(session).for_purchase_order(order.id)

        assert [c.id for c in challans] == [first.id, second.id]
        assert DeliverySelector(session).by_number(second.delivery_number).id == second.id
