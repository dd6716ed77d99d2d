"""
Immutability tests for issued and decided records.

Covers:
- Issued purchase orders change only status and cancelled_reason
- Cancelled purchase orders and issued lines never change
- Decided comparisons and their quotes are frozen; pending ones are not
- Request timelines and the stock ledger are append-only
- Requests are never deleted
- The listeners can be lifted for tests that need to tamper
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from procurement_kernel.exceptions import ImmutabilityViolationError
from procurement_kernel.models.cost_comparison import CostComparison
from procurement_kernel.models.inventory import StockMovement
from procurement_kernel.models.purchase_order import PurchaseOrder
from procurement_kernel.models.request import Request, RequestNote


def _flush_rejected(session, *entity_types):
    with pytest.raises(ImmutabilityViolationError) as exc_info:
        session.flush()
    session.rollback()
    assert exc_info.value.entity_type in entity_types
    return exc_info.value


class TestPurchaseOrderImmutability:
    """Issued purchase orders are commercial documents."""

    def test_commercial_fields_frozen(self, lifecycle, session):
        order = lifecycle.purchase_order(lifecycle.request())
        po = session.get(PurchaseOrder, order.id)

        po.total_amount = Decimal("1.00")

        error = _flush_rejected(session, "PurchaseOrder")
        assert "total_amount" in error.reason

    def test_status_may_change(self, lifecycle, session):
        order = lifecycle.purchase_order(lifecycle.request())
        po = session.get(PurchaseOrder, order.id)

        po.status = "fulfilled"
        session.flush()

        assert po.status == "fulfilled"

    def test_cancelled_order_is_final(self, lifecycle, service, session):
        order = lifecycle.purchase_order(lifecycle.request())
        lifecycle.unwrap(
            service.cancel_purchase_order(order.id, lifecycle.purchase_officer, "rate revised")
        )
        po = session.get(PurchaseOrder, order.id)

        po.cancelled_reason = "changed afterwards"

        _flush_rejected(session, "PurchaseOrder")

    def test_lines_frozen(self, lifecycle, session):
        order = lifecycle.purchase_order(lifecycle.request())
        line = session.get(PurchaseOrder, order.id).lines[0]

        line.quantity = Decimal("1")

        _flush_rejected(session, "PurchaseOrderLine")

    def test_order_cannot_be_deleted(self, lifecycle, session):
        order = lifecycle.purchase_order(lifecycle.request())

        session.delete(session.get(PurchaseOrder, order.id))

        _flush_rejected(session, "PurchaseOrder", "PurchaseOrderLine")


class TestComparisonImmutability:
    """A manager's decision is final."""

    def test_decided_comparison_frozen(self, lifecycle, session):
        comparison = lifecycle.ready_for_po(lifecycle.request())
        record = session.get(CostComparison, comparison.id)

        record.manager_note = "second thoughts"

        _flush_rejected(session, "CostComparison")

    def test_pending_comparison_may_change(self, lifecycle, session):
        request = lifecycle.request()
        lifecycle.ready_for_cc(request)
        comparison = lifecycle.comparison(request)
        record = session.get(CostComparison, comparison.id)

        record.manager_note = "checking freight"
        session.flush()

    def test_quotes_frozen(self, lifecycle, session):
        request = lifecycle.request()
        lifecycle.ready_for_cc(request)
        comparison = lifecycle.comparison(request)
        quote = session.get(CostComparison, comparison.id).quotes[0]

        quote.unit_rate = Decimal("1")

        _flush_rejected(session, "Quote")

    def test_quotes_cannot_be_deleted(self, lifecycle, session):
        request = lifecycle.request()
        lifecycle.ready_for_cc(request)
        comparison = lifecycle.comparison(request)

        session.delete(session.get(CostComparison, comparison.id).quotes[0])

        _flush_rejected(session, "Quote")


class TestAppendOnlyLedgers:
    """Timelines and the stock ledger only grow."""

    def _note(self, lifecycle, session):
        request = lifecycle.request()
        lifecycle.ready_for_cc(request)
        return session.scalars(
            select(RequestNote).where(RequestNote.request_id == request.id)
        ).first()

    def test_note_update_rejected(self, lifecycle, session):
        note = self._note(lifecycle, session)

        note.content = "rewritten"

        _flush_rejected(session, "RequestNote")

    def test_note_delete_rejected(self, lifecycle, session):
        session.delete(self._note(lifecycle, session))

        _flush_rejected(session, "RequestNote")

    def test_stock_movement_frozen(self, service, session, purchase_officer):
        item = service.create_inventory_item(
            "Cement", "bags", purchase_officer, initial_stock=Decimal("10")
        ).value
        movement = session.scalars(
            select(StockMovement).where(StockMovement.item_id == item.id)
        ).one()

        movement.delta = Decimal("1000")

        _flush_rejected(session, "StockMovement")

    def test_request_cannot_be_deleted(self, lifecycle, session):
        request = lifecycle.request()

        session.delete(session.get(Request, request.id))

        _flush_rejected(session, "Request")


class TestListenerBypass:
    """Tests that need to tamper can lift the listeners."""

    def test_no_immutability_fixture(self, lifecycle, session, no_immutability):
        order = lifecycle.purchase_order(lifecycle.request())
        po = session.get(PurchaseOrder, order.id)

        po.notes = "edited by fixture"
        session.flush()

        assert po.notes == "edited by fixture"
