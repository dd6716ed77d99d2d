"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

An issued purchase order is a commercial document sent to a vendor, and an
approved cost comparison is the manager's recorded decision.  Neither may be
edited afterwards: amendments are a new PO, a changed mind is a new
comparison.  Timelines and stock movements are ledgers and only ever grow.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                         | Mutable fields
--------------------|----------------------------------------|------------------------------
PurchaseOrder       | ALWAYS (from issuance)                 | status, cancelled_reason
PurchaseOrderLine   | ALWAYS (from issuance)                 | none
CostComparison      | After decision leaves "pending"        | none
Quote               | ALWAYS (from creation)                 | none
RequestNote         | ALWAYS (append-only timeline)          | none
StockMovement       | ALWAYS (append-only ledger)            | none
Request             | Never deleted (soft-closed)            | n/a

updated_at / updated_by_id are audit metadata and may always change.

===============================================================================
USAGE
===============================================================================

Called once at startup (ProcurementService and the test harness do this):

    from procurement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from procurement_kernel.exceptions import ImmutabilityViolationError
from procurement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _changed_columns(target) -> list[str]:
    """Column attributes with pending changes, audit fields excluded."""
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if attr.key not in _AUDIT_FIELDS and insp.attrs[attr.key].history.has_changes()
    ]


def _previous_value(target, key: str):
    history = inspect(target).attrs[key].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return getattr(target, key)


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


# Purchase orders


_PO_MUTABLE_FIELDS = frozenset({"status", "cancelled_reason"})


def _check_purchase_order_immutability(mapper, connection, target):
    """
    Issued purchase orders change only their status flags.

    A cancelled order is final: nothing at all may change afterwards.
    """
    changed = _changed_columns(target)
    if not changed:
        return

    if _previous_value(target, "status") == "cancelled":
        _block(
            "PurchaseOrder", target, "UPDATE",
            f"Cannot modify field '{changed[0]}' on cancelled purchase order",
        )

    for key in changed:
        if key not in _PO_MUTABLE_FIELDS:
            _block(
                "PurchaseOrder", target, "UPDATE",
                f"Cannot modify field '{key}' on issued purchase order; "
                "issue a new purchase order instead",
            )


def _check_purchase_order_delete(mapper, connection, target):
    _block("PurchaseOrder", target, "DELETE", "Purchase orders cannot be deleted")


def _check_purchase_order_line_immutability(mapper, connection, target):
    changed = _changed_columns(target)
    if changed:
        _block(
            "PurchaseOrderLine", target, "UPDATE",
            f"Cannot modify field '{changed[0]}' on an issued line",
        )


def _check_purchase_order_line_delete(mapper, connection, target):
    _block("PurchaseOrderLine", target, "DELETE", "Issued lines cannot be deleted")


# Cost comparisons


def _check_comparison_immutability(mapper, connection, target):
    """
    Prevent updates to decided comparisons.

    The decision itself (pending -> approved/rejected) is allowed; any
    change after that is blocked.
    """
    changed = _changed_columns(target)
    if not changed:
        return

    if _previous_value(target, "decision") != "pending":
        _block(
            "CostComparison", target, "UPDATE",
            f"Cannot modify field '{changed[0]}' on decided comparison",
        )


def _check_comparison_delete(mapper, connection, target):
    _block("CostComparison", target, "DELETE", "Comparisons are retained for audit")


def _check_quote_immutability(mapper, connection, target):
    changed = _changed_columns(target)
    if changed:
        _block("Quote", target, "UPDATE", f"Cannot modify field '{changed[0]}' on a quote")


def _check_quote_delete(mapper, connection, target):
    _block("Quote", target, "DELETE", "Quotes are retained for audit")


# Append-only ledgers


def _check_request_note_immutability(mapper, connection, target):
    if _changed_columns(target):
        _block("RequestNote", target, "UPDATE", "Request timeline is append-only")


def _check_request_note_delete(mapper, connection, target):
    _block("RequestNote", target, "DELETE", "Request timeline is append-only")


def _check_stock_movement_immutability(mapper, connection, target):
    if _changed_columns(target):
        _block("StockMovement", target, "UPDATE", "Stock ledger is append-only")


def _check_stock_movement_delete(mapper, connection, target):
    _block("StockMovement", target, "DELETE", "Stock ledger is append-only")


def _check_request_delete(mapper, connection, target):
    _block("Request", target, "DELETE", "Requests are soft-closed, never deleted")


def _listeners():
    from procurement_kernel.models.cost_comparison import CostComparison, Quote
    from procurement_kernel.models.inventory import StockMovement
    from procurement_kernel.models.purchase_order import PurchaseOrder, PurchaseOrderLine
    from procurement_kernel.models.request import Request, RequestNote

    return (
        (PurchaseOrder, "before_update", _check_purchase_order_immutability),
        (PurchaseOrder, "before_delete", _check_purchase_order_delete),
        (PurchaseOrderLine, "before_update", _check_purchase_order_line_immutability),
        (PurchaseOrderLine, "before_delete", _check_purchase_order_line_delete),
        (CostComparison, "before_update", _check_comparison_immutability),
        (CostComparison, "before_delete", _check_comparison_delete),
        (Quote, "before_update", _check_quote_immutability),
        (Quote, "before_delete", _check_quote_delete),
        (RequestNote, "before_update", _check_request_note_immutability),
        (RequestNote, "before_delete", _check_request_note_delete),
        (StockMovement, "before_update", _check_stock_movement_immutability),
        (StockMovement, "before_delete", _check_stock_movement_delete),
        (Request, "before_delete", _check_request_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; a listener already in place is skipped.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
