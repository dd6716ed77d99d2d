"""
RequestLifecycleController -- the sole writer of ``Request.status``.

Responsibility:
    Validates and applies every request status change against
    REQUEST_WORKFLOW, evaluates the transition's guard against the
    current comparison / order / delivery rows, and appends a ``log``
    entry to the request timeline for each change.

Architecture position:
    Kernel > Services -- imperative shell.  Called directly through
    ``advance`` / ``resubmit`` and internally by CostComparisonService,
    PurchaseOrderService and DeliveryService, which hold the locked
    request row and ask the controller to move it.

Invariants enforced:
    - Status reachability: a status outside REQUEST_WORKFLOW can never
      be written; an unreachable or guarded-out target raises
      InvalidTransitionError and leaves the status unchanged.
    - Authorization before mutation: the actor's role must be listed
      on the transition.
    - Commit-order timeline: each change appends a RequestNote whose
      sequence comes from the locked counter.

Failure modes:
    - RequestNotFoundError: request id absent.
    - InvalidTransitionError: unknown target, unreachable target, or
      guard not satisfied (reason names the guard).
    - ForbiddenError: role not allowed on the transition.
    - OptimisticLockError: the request row changed underneath us.

Audit relevance:
    Every transition is logged (``request_transitioned``) and persisted
    as a ``log`` RequestNote naming actor, role, action and states.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from procurement_kernel.db.types import ZERO
from procurement_kernel.domain.authority import Actor
from procurement_kernel.domain.clock import Clock
from procurement_kernel.domain.dtos import (
    ComparisonDecision,
    DeliveryItemStatus,
    NoteKind,
    PurchaseOrderStatus,
    RequestInfo,
    RequestStatus,
)
from procurement_kernel.domain.request_workflow import REQUEST_WORKFLOW
from procurement_kernel.domain.workflow import Guard, Transition, Workflow
from procurement_kernel.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    RequestNotFoundError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.cost_comparison import CostComparison
from procurement_kernel.models.delivery import DeliveryItem
from procurement_kernel.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from procurement_kernel.models.request import Request, RequestNote
from procurement_kernel.services.base import BaseService
from procurement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.lifecycle")


class RequestLifecycleController(BaseService[Request]):
    """
    Applies request status transitions.

    Contract:
        ``advance`` is the public entry point; ``transition`` is used by
        sibling services that already hold the locked request row.

    Guarantees:
        - Check order: NotFound, then InvalidTransition (target/reachability),
          then Forbidden (role), then InvalidTransition (guard).
        - Status, version bump and timeline entry are flushed together.

    Non-goals:
        - Does NOT commit -- the caller owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        workflow: Workflow = REQUEST_WORKFLOW,
    ):
        super().__init__(session, clock)
        self._workflow = workflow
        self._sequences = SequenceService(session)

    # -------------------------------------------------------------------------
    # Row access
    # -------------------------------------------------------------------------

    def load_for_update(self, request_id: UUID) -> Request:
        """Load and row-lock a request, refreshing any cached copy."""
        request = self.session.execute(
            select(Request)
            .where(Request.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request

    def lock_requests(self, request_ids) -> dict[UUID, Request]:
        """Lock several requests in a deterministic (id) order."""
        locked: dict[UUID, Request] = {}
        for request_id in sorted(set(request_ids), key=str):
            locked[request_id] = self.load_for_update(request_id)
        return locked

    def touch(self, request: Request, actor: Actor) -> None:
        """
        Force an UPDATE (and version bump) on a request whose status is
        unchanged, so concurrent writers of the same request conflict.
        """
        self._stamp_update(request, actor)
        flag_modified(request, "updated_by_id")

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def advance(
        self,
        request_id: UUID,
        target_status: RequestStatus | str,
        actor: Actor,
        note: str | None = None,
    ) -> RequestInfo:
        """
        Move a request to ``target_status``.

        Raises:
            RequestNotFoundError, InvalidTransitionError, ForbiddenError.
        """
        request = self.load_for_update(request_id)
        self.transition(request, target_status, actor, note=note)
        return request.to_dto()

    def resubmit(self, request_id: UUID, actor: Actor) -> RequestInfo:
        """
        Return a rejected request to ``ready_for_cc`` so a new comparison
        may be raised.  Valid only from ``cc_rejected``.

        The rejected comparison and its note stay queryable; the request's
        display reference to it is cleared by the next approval.
        """
        request = self.load_for_update(request_id)
        if request.status != RequestStatus.CC_REJECTED.value:
            self._reject(request, RequestStatus.READY_FOR_CC.value,
                         "resubmit is only valid from cc_rejected")
        self.transition(request, RequestStatus.READY_FOR_CC, actor)
        return request.to_dto()

    # -------------------------------------------------------------------------
    # Transition core
    # -------------------------------------------------------------------------

    def transition(
        self,
        request: Request,
        target_status: RequestStatus | str,
        actor: Actor,
        note: str | None = None,
    ) -> Transition:
        """
        Validate and apply one transition on an already-locked request.

        Returns:
            The Transition that fired.
        """
        current = request.status
        target = self._resolve_target(request, target_status)

        transition = self._workflow.find_transition(current, target)
        if transition is None:
            allowed = ", ".join(self._workflow.targets_from(current)) or "none"
            self._reject(request, target, f"reachable targets: {allowed}")

        if actor.role.value not in transition.roles:
            logger.warning(
                "request_transition_forbidden",
                extra={
                    "request_id": str(request.id),
                    "action": transition.action,
                    "actor_role": actor.role.value,
                },
            )
            raise ForbiddenError(actor.role.value, f"request.{transition.action}")

        if transition.guard is not None and not self._guard_satisfied(request, transition.guard):
            self._reject(
                request, target,
                f"guard '{transition.guard.name}' not satisfied: "
                f"{transition.guard.description}",
            )

        request.status = target
        self._stamp_update(request, actor)
        self._append_log(request, current, target, transition.action, actor, note)
        self._flush("Request", request.id)

        logger.info(
            "request_transitioned",
            extra={
                "request_id": str(request.id),
                "request_number": request.request_number,
                "from_status": current,
                "to_status": target,
                "action": transition.action,
                "actor_role": actor.role.value,
            },
        )
        return transition

    def _resolve_target(self, request: Request, target_status: RequestStatus | str) -> str:
        try:
            return RequestStatus(target_status).value
        except ValueError:
            self._reject(request, str(target_status), "unknown request status")

    def _reject(self, request: Request, target: str, reason: str) -> None:
        logger.warning(
            "request_transition_rejected",
            extra={
                "request_id": str(request.id),
                "from_status": request.status,
                "to_status": target,
                "reason": reason,
            },
        )
        raise InvalidTransitionError(
            "Request", str(request.id), request.status, target, reason=reason
        )

    def _append_log(
        self,
        request: Request,
        from_status: str,
        to_status: str,
        action: str,
        actor: Actor,
        note: str | None,
    ) -> None:
        self.session.add(
            RequestNote(
                request_id=request.id,
                kind=NoteKind.LOG.value,
                sequence=self._sequences.next_value(SequenceService.REQUEST_NOTE),
                actor_role=actor.role.value,
                content=note,
                from_status=from_status,
                to_status=to_status,
                action=action,
                created_by_id=actor.actor_id,
                created_at=self._now(),
            )
        )

    # -------------------------------------------------------------------------
    # Guards
    # -------------------------------------------------------------------------

    def _guard_satisfied(self, request: Request, guard: Guard) -> bool:
        evaluators = {
            "active_comparison_pending": self._has_pending_comparison,
            "comparison_decided": lambda r: not self._has_pending_comparison(r),
            "purchase_order_issued": self._has_open_order_line,
            "no_live_purchase_order": lambda r: not self._has_open_order_line(r),
            "active_delivery_exists": self.has_active_delivery,
            "no_active_delivery": lambda r: not self.has_active_delivery(r),
            "ordered_quantity_delivered": self._fully_delivered,
        }
        evaluator = evaluators.get(guard.name)
        if evaluator is None:
            raise ValueError(f"No evaluator registered for guard {guard.name!r}")
        return evaluator(request)

    def _has_pending_comparison(self, request: Request) -> bool:
        return self.session.execute(
            select(
                exists().where(
                    CostComparison.request_id == request.id,
                    CostComparison.decision == ComparisonDecision.PENDING.value,
                )
            )
        ).scalar()

    def _has_open_order_line(self, request: Request) -> bool:
        return self.session.execute(
            select(
                exists()
                .where(PurchaseOrderLine.request_id == request.id)
                .where(PurchaseOrderLine.purchase_order_id == PurchaseOrder.id)
                .where(PurchaseOrder.status != PurchaseOrderStatus.CANCELLED.value)
            )
        ).scalar()

    def has_active_delivery(self, request: Request) -> bool:
        return self.session.execute(
            select(
                exists().where(
                    DeliveryItem.request_id == request.id,
                    DeliveryItem.status != DeliveryItemStatus.CANCELLED.value,
                )
            )
        ).scalar()

    def delivered_quantity(self, request_id: UUID) -> Decimal:
        quantities = self.session.execute(
            select(DeliveryItem.quantity).where(
                DeliveryItem.request_id == request_id,
                DeliveryItem.status == DeliveryItemStatus.DELIVERED.value,
            )
        ).scalars()
        return sum(quantities, ZERO)

    def _fully_delivered(self, request: Request) -> bool:
        return self.delivered_quantity(request.id) >= request.effective_ordered_quantity

