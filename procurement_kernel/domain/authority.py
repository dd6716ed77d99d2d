"""
procurement_kernel.domain.authority -- Actor identity and role enforcement.

Responsibility:
    Declare the three roles, the Actor value supplied by the identity
    collaborator, and the operation -> allowed-roles table.  Every write
    operation calls ``require_role`` before touching any row, so client-side
    role gating is never trusted on its own.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Request status transitions carry their
    own role sets on the workflow (see request_workflow.py); this table covers
    every other operation.

Invariants:
    - Authorization happens before mutation.
    - Unknown operations are denied (fail closed).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from procurement_kernel.exceptions import ForbiddenError


class ActorRole(str, Enum):
    """Roles supplied by the identity collaborator."""

    SITE_ENGINEER = "site_engineer"
    MANAGER = "manager"
    PURCHASE_OFFICER = "purchase_officer"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of an operation."""

    actor_id: UUID
    role: ActorRole


_ALL = frozenset(ActorRole)
_PO = frozenset({ActorRole.PURCHASE_OFFICER})
_MGR = frozenset({ActorRole.MANAGER})
_PO_OR_MGR = frozenset({ActorRole.PURCHASE_OFFICER, ActorRole.MANAGER})

# operation -> roles allowed to perform it
OPERATION_ROLES: dict[str, frozenset[ActorRole]] = {
    # Requests
    "request.create": frozenset({ActorRole.SITE_ENGINEER}),
    "request.add_note": _ALL,
    # Cost comparisons
    "comparison.create": _PO,
    "comparison.decide": _MGR,
    # Purchase orders
    "purchase_order.issue_from_comparison": _PO,
    "purchase_order.issue_direct": _PO,
    "purchase_order.cancel": _PO,
    "purchase_order.render": _PO_OR_MGR,
    # Deliveries
    "delivery.create": _PO,
    "delivery.mark_item_delivered": _PO,
    "delivery.cancel": _PO,
    "delivery.attach_evidence": _PO,
    # Inventory
    "inventory.create_item": _PO,
    "inventory.update_item": _PO,
    "inventory.adjust_stock": _PO,
    "inventory.attach_image": _PO,
    "inventory.remove_image": _PO,
    "inventory.link_vendor": _PO,
    # Registries
    "vendor.manage": _PO_OR_MGR,
    "site.manage": _PO_OR_MGR,
}


def is_allowed(actor: Actor, operation: str) -> bool:
    """True when the actor's role may perform the operation."""
    return actor.role in OPERATION_ROLES.get(operation, frozenset())


def require_role(actor: Actor, operation: str) -> None:
    """
    Raise ForbiddenError unless the actor's role may perform the operation.

    Raises:
        ForbiddenError: Role not in the operation's allowed set, or the
            operation is unknown.
    """
    if not is_allowed(actor, operation):
        raise ForbiddenError(actor.role.value, operation)
