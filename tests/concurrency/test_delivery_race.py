"""
Concurrency tests for delivery creation.

Two purchase officers record challans for the same request at the same
moment, each for the full remaining quantity.  Exactly one challan may be
accepted; the other must fail with OVER_DELIVERY, either straight away or
after its optimistic retry sees the winner's commit.

These tests run against a file-backed SQLite database so each thread holds
a real, separate connection.

Covers:
- Racing challans never exceed the ordered quantity
- The race also holds once the request is already in delivery_stage
- A stale write of a versioned row raises StaleDataError
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from procurement_kernel.db.engine import build_engine, create_tables, drop_tables
from procurement_kernel.db.immutability import register_immutability_listeners
from procurement_kernel.domain.clock import DeterministicClock
from procurement_kernel.domain.commands import DeliveryItemInput, DeliveryMeta
from procurement_kernel.domain.dtos import DeliveryMode, RequestStatus
from procurement_kernel.models.inventory import InventoryItem
from procurement_kernel.selectors.delivery_selector import DeliverySelector
from procurement_services.procurement_service import ProcurementService
from procurement_services.results import OperationStatus


@pytest.fixture
def engine(tmp_path):
    """A file database shared by every thread in the test."""
    eng = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    create_tables(eng)
    register_immutability_listeners()
    yield eng
    drop_tables(eng)
    eng.dispose()


def _race(engine, config, clock, request, quantity, actor, workers=2):
    """Run ``workers`` concurrent create_delivery calls; return their results."""
    barrier = threading.Barrier(workers)
    results = []
    errors = []
    lock = threading.Lock()

    def worker():
        session = Session(bind=engine, expire_on_commit=False)
        facade = ProcurementService(
            session, config=config, clock=DeterministicClock(clock.now())
        )
        try:
            barrier.wait()
            result = facade.create_delivery(
                [DeliveryItemInput(request_id=request.id, quantity=Decimal(quantity))],
                DeliveryMeta(mode=DeliveryMode.VENDOR, receiver_name="Gate Security"),
                actor,
            )
            with lock:
                results.append(result)
        except Exception as exc:
            with lock:
                errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    return results


class TestDeliveryRace:
    """Concurrent challans against one request."""

    def test_only_one_full_delivery_wins(self, lifecycle, engine, config, session):
        request = lifecycle.request(quantity=Decimal("100"))
        lifecycle.purchase_order(request)

        results = _race(
            engine, config, lifecycle.clock, request, "100", lifecycle.purchase_officer
        )

        assert [r.status for r in results].count(OperationStatus.SUCCESS) == 1
        (loser,) = [r for r in results if r.status == OperationStatus.FAILED]
        assert loser.error_code == "OVER_DELIVERY"

        session.expire_all()
        challans = DeliverySelector(session).for_request(request.id)
        assert len(challans) == 1
        assert sum(c.items[0].quantity for c in challans) == Decimal("100")
        assert lifecycle.service.request_view(request.id).request.status == (
            RequestStatus.DELIVERY_STAGE
        )

    def test_race_after_first_challan(self, lifecycle, engine, config, session):
        request = lifecycle.request(quantity=Decimal("100"))
        lifecycle.purchase_order(request)
        lifecycle.delivery(request, "60")

        results = _race(
            engine, config, lifecycle.clock, request, "40", lifecycle.purchase_officer
        )

        assert [r.status for r in results].count(OperationStatus.SUCCESS) == 1
        (loser,) = [r for r in results if r.status == OperationStatus.FAILED]
        assert loser.error_code == "OVER_DELIVERY"
        assert loser.error_details["remaining"] == Decimal("0")

        session.expire_all()
        fulfilment = lifecycle.service.request_view(request.id).fulfilment
        assert fulfilment.reserved == Decimal("100")
        assert fulfilment.remaining == Decimal("0")


class TestVersionedRows:
    """The version column turns a lost update into an error."""

    def test_stale_inventory_write_is_rejected(self, engine, service, purchase_officer):
        item = service.create_inventory_item("Cement", "bags", purchase_officer).value
        first = Session(bind=engine)
        second = Session(bind=engine)
        try:
            a = first.get(InventoryItem, item.id)
            b = second.get(InventoryItem, item.id)

            a.description = "OPC 53"
            first.commit()

            b.description = "PPC"
            with pytest.raises(StaleDataError):
                second.flush()
        finally:
            second.rollback()
            first.close()
            second.close()
