"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Several independent validations (role, state, quantity, field presence) can
apply to the same call, so callers must be able to tell which one failed
without parsing message strings.

Every exception in this module:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (field, quantities, states)

Example - WRONG way to handle errors:
    try:
        deliveries.create_delivery(items, meta, actor)
    except Exception as e:
        if "exceed" in str(e):  # FRAGILE - message might change
            warn_user()

Example - RIGHT way:
    try:
        deliveries.create_delivery(items, meta, actor)
    except OverDeliveryError as e:
        warn_user(e.request_id, e.remaining)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProcurementError (base)
    |
    +-- ValidationError
    |   +-- ExpiredOrderWindowError
    |
    +-- ForbiddenError
    |
    +-- InvalidTransitionError
    |
    +-- InvariantViolationError
    |   +-- OverDeliveryError
    |   +-- NegativeStockError
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- VendorNotFoundError
    |   +-- SiteNotFoundError
    |   +-- ComparisonNotFoundError
    |   +-- PurchaseOrderNotFoundError
    |   +-- DeliveryNotFoundError
    |   +-- DeliveryItemNotFoundError
    |   +-- InventoryItemNotFoundError
    |
    +-- ExternalCollaboratorError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Input           | VALIDATION_ERROR            | Missing or malformed field
                | EXPIRED_ORDER_WINDOW        | PO valid-till date already passed
----------------|-----------------------------|-----------------------------------------
Authorization   | FORBIDDEN                   | Actor role may not run the operation
----------------|-----------------------------|-----------------------------------------
State machine   | INVALID_TRANSITION          | Target state unreachable from current
----------------|-----------------------------|-----------------------------------------
Invariants      | OVER_DELIVERY               | Delivered would exceed ordered quantity
                | NEGATIVE_STOCK              | Central stock would drop below zero
----------------|-----------------------------|-----------------------------------------
Lookup          | NOT_FOUND (and subcodes)    | Referenced entity missing
----------------|-----------------------------|-----------------------------------------
Collaborators   | EXTERNAL_COLLABORATOR_FAILURE | Upload / delete / render / locate failed
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Row changed by a concurrent transaction
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Approved comparison / issued PO lines edited

===============================================================================
HANDLING PATTERNS
===============================================================================

Kernel services raise these exceptions. ProcurementService (the facade in
procurement_services) converts them into OperationResult failures, rolls the
transaction back, and never lets an ExternalCollaboratorError undo an entity
write that has already committed -- it becomes a warning instead.
"""

from datetime import date
from decimal import Decimal


class ProcurementError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCUREMENT_ERROR"


# Input validation


class ValidationError(ProcurementError):
    """Malformed or missing input field."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class ExpiredOrderWindowError(ValidationError):
    """Purchase order valid-till date is already in the past."""

    code: str = "EXPIRED_ORDER_WINDOW"

    def __init__(self, valid_till: date, today: date):
        self.valid_till = valid_till
        self.today = today
        super().__init__(
            "valid_till",
            f"{valid_till.isoformat()} is before {today.isoformat()}",
        )


# Authorization


class ForbiddenError(ProcurementError):
    """Actor's role is not permitted to perform the operation."""

    code: str = "FORBIDDEN"

    def __init__(self, actor_role: str, operation: str):
        self.actor_role = actor_role
        self.operation = operation
        super().__init__(f"Role '{actor_role}' may not perform '{operation}'")


# State machine


class InvalidTransitionError(ProcurementError):
    """Requested state is not reachable from the entity's current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current: str,
        target: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current = current
        self.target = target
        self.reason = reason
        message = f"{entity_type} {entity_id} cannot move from '{current}' to '{target}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Invariant violations -- always rejected, never clamped


class InvariantViolationError(ProcurementError):
    """Base exception for quantity invariants."""

    code: str = "INVARIANT_VIOLATION"


class OverDeliveryError(InvariantViolationError):
    """Delivery would push a request past its ordered quantity."""

    code: str = "OVER_DELIVERY"

    def __init__(
        self,
        request_id: str,
        ordered: Decimal,
        already_delivered: Decimal,
        attempted: Decimal,
    ):
        self.request_id = request_id
        self.ordered = ordered
        self.already_delivered = already_delivered
        self.attempted = attempted
        self.remaining = ordered - already_delivered
        super().__init__(
            f"Request {request_id}: delivering {attempted} on top of "
            f"{already_delivered} exceeds ordered quantity {ordered} "
            f"(remaining {self.remaining})"
        )


class NegativeStockError(InvariantViolationError):
    """Stock adjustment would take central stock below zero."""

    code: str = "NEGATIVE_STOCK"

    def __init__(self, item_id: str, current: Decimal, delta: Decimal):
        self.item_id = item_id
        self.current = current
        self.delta = delta
        super().__init__(
            f"Inventory item {item_id}: stock {current} with delta {delta} "
            f"would be {current + delta}"
        )


# Lookups


class NotFoundError(ProcurementError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class RequestNotFoundError(NotFoundError):
    code: str = "REQUEST_NOT_FOUND"
    entity_type: str = "Request"


class VendorNotFoundError(NotFoundError):
    code: str = "VENDOR_NOT_FOUND"
    entity_type: str = "Vendor"


class SiteNotFoundError(NotFoundError):
    code: str = "SITE_NOT_FOUND"
    entity_type: str = "Site"


class ComparisonNotFoundError(NotFoundError):
    code: str = "COMPARISON_NOT_FOUND"
    entity_type: str = "CostComparison"


class PurchaseOrderNotFoundError(NotFoundError):
    code: str = "PURCHASE_ORDER_NOT_FOUND"
    entity_type: str = "PurchaseOrder"


class DeliveryNotFoundError(NotFoundError):
    code: str = "DELIVERY_NOT_FOUND"
    entity_type: str = "DeliveryChallan"


class DeliveryItemNotFoundError(NotFoundError):
    code: str = "DELIVERY_ITEM_NOT_FOUND"
    entity_type: str = "DeliveryItem"


class InventoryItemNotFoundError(NotFoundError):
    code: str = "INVENTORY_ITEM_NOT_FOUND"
    entity_type: str = "InventoryItem"


# External collaborators


class ExternalCollaboratorError(ProcurementError):
    """File storage, PDF rendering or location capture failed."""

    code: str = "EXTERNAL_COLLABORATOR_FAILURE"

    def __init__(self, collaborator: str, operation: str, reason: str):
        self.collaborator = collaborator
        self.operation = operation
        self.reason = reason
        super().__init__(f"{collaborator}.{operation} failed: {reason}")


# Concurrency


class ConcurrencyError(ProcurementError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability


class ImmutabilityViolationError(ProcurementError):
    """Attempted to modify a record that is frozen after approval/issuance."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )
