"""
Request Lifecycle Workflow.

The state machine governing a material request, from submission to close.
The request lifecycle controller is the only writer of ``Request.status``
and consults this table for every change.
"""

from procurement_kernel.domain.authority import ActorRole
from procurement_kernel.domain.dtos import RequestStatus
from procurement_kernel.domain.workflow import Guard, Transition, Workflow
from procurement_kernel.logging_config import get_logger

logger = get_logger("domain.request_workflow")

S = RequestStatus

_PO = (ActorRole.PURCHASE_OFFICER.value,)
_MGR = (ActorRole.MANAGER.value,)
_PO_OR_MGR = (ActorRole.PURCHASE_OFFICER.value, ActorRole.MANAGER.value)

# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

ACTIVE_COMPARISON_PENDING = Guard(
    name="active_comparison_pending",
    description="A pending cost comparison exists for the request",
)

COMPARISON_DECIDED = Guard(
    name="comparison_decided",
    description="The manager has recorded a decision on the pending comparison",
)

PURCHASE_ORDER_ISSUED = Guard(
    name="purchase_order_issued",
    description="A purchase order line references the request",
)

NO_LIVE_PURCHASE_ORDER = Guard(
    name="no_live_purchase_order",
    description="Every purchase order referencing the request is cancelled",
)

ACTIVE_DELIVERY_EXISTS = Guard(
    name="active_delivery_exists",
    description="A non-cancelled delivery challan carries the request",
)

NO_ACTIVE_DELIVERY = Guard(
    name="no_active_delivery",
    description="Every delivery challan carrying the request is cancelled",
)

ORDERED_QUANTITY_DELIVERED = Guard(
    name="ordered_quantity_delivered",
    description="Delivered items account for the full ordered quantity",
)

logger.info(
    "request_workflow_guards_defined",
    extra={
        "guards": [
            ACTIVE_COMPARISON_PENDING.name,
            COMPARISON_DECIDED.name,
            PURCHASE_ORDER_ISSUED.name,
            NO_LIVE_PURCHASE_ORDER.name,
            ACTIVE_DELIVERY_EXISTS.name,
            NO_ACTIVE_DELIVERY.name,
            ORDERED_QUANTITY_DELIVERED.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Request Workflow
# -----------------------------------------------------------------------------


def _t(from_state: RequestStatus, to_state: RequestStatus, action: str,
       roles: tuple[str, ...], guard: Guard | None = None) -> Transition:
    return Transition(from_state.value, to_state.value, action=action, roles=roles, guard=guard)


REQUEST_WORKFLOW = Workflow(
    name="material_request",
    description="Material request lifecycle from site to stock",
    initial_state=S.SUBMITTED.value,
    states=tuple(s.value for s in RequestStatus),
    transitions=(
        _t(S.SUBMITTED, S.READY_FOR_CC, action="accept_for_comparison", roles=_PO_OR_MGR),
        _t(S.READY_FOR_CC, S.CC_PENDING, action="submit_comparison", roles=_PO,
           guard=ACTIVE_COMPARISON_PENDING),
        _t(S.CC_PENDING, S.CC_APPROVED, action="approve_comparison", roles=_MGR,
           guard=COMPARISON_DECIDED),
        _t(S.CC_PENDING, S.CC_REJECTED, action="reject_comparison", roles=_MGR,
           guard=COMPARISON_DECIDED),
        _t(S.CC_APPROVED, S.READY_FOR_PO, action="release_for_po", roles=_PO_OR_MGR),
        _t(S.CC_REJECTED, S.READY_FOR_CC, action="resubmit", roles=_PO_OR_MGR),
        # Direct (emergency) purchase order path
        _t(S.SUBMITTED, S.PO_ISSUED, action="issue_direct_po", roles=_PO,
           guard=PURCHASE_ORDER_ISSUED),
        _t(S.READY_FOR_CC, S.PO_ISSUED, action="issue_direct_po", roles=_PO,
           guard=PURCHASE_ORDER_ISSUED),
        _t(S.CC_REJECTED, S.PO_ISSUED, action="issue_direct_po", roles=_PO,
           guard=PURCHASE_ORDER_ISSUED),
        _t(S.READY_FOR_PO, S.PO_ISSUED, action="issue_po", roles=_PO,
           guard=PURCHASE_ORDER_ISSUED),
        _t(S.PO_ISSUED, S.READY_FOR_PO, action="revoke_po", roles=_PO,
           guard=NO_LIVE_PURCHASE_ORDER),
        _t(S.PO_ISSUED, S.DELIVERY_STAGE, action="dispatch", roles=_PO,
           guard=ACTIVE_DELIVERY_EXISTS),
        _t(S.DELIVERY_STAGE, S.PO_ISSUED, action="revert_dispatch", roles=_PO,
           guard=NO_ACTIVE_DELIVERY),
        _t(S.DELIVERY_STAGE, S.DELIVERED, action="complete_delivery", roles=_PO,
           guard=ORDERED_QUANTITY_DELIVERED),
        _t(S.DELIVERED, S.CLOSED, action="close", roles=_PO_OR_MGR),
    ),
    terminal_states=(S.CLOSED.value,),
)

logger.info(
    "request_workflow_registered",
    extra={
        "workflow_name": REQUEST_WORKFLOW.name,
        "state_count": len(REQUEST_WORKFLOW.states),
        "transition_count": len(REQUEST_WORKFLOW.transitions),
        "initial_state": REQUEST_WORKFLOW.initial_state,
    },
)
