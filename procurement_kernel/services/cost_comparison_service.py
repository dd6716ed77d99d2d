"""
CostComparisonService -- multi-vendor quote collection and manager decision.

Responsibility:
    Builds a cost comparison (an ordered set of vendor quotes) for one
    request and records the manager's approve/reject decision, driving
    the request through the comparison states.

Architecture position:
    Kernel > Services -- imperative shell.  Delegates every status change
    to RequestLifecycleController; ranking comes from domain.pricing.

Invariants enforced:
    - Single active comparison: at most one comparison per request with
      decision pending or approved.  Checked here under the request lock
      and backed by the partial unique index.
    - An approval selects exactly one quote from the comparison; the
      default is the cheapest (lowest unit rate, earliest position).
    - A rejection always carries a non-blank manager note.
    - Decided comparisons are immutable (db/immutability.py).

Failure modes:
    - ForbiddenError: create by non purchase officer; decide by non manager.
    - ValidationError: empty quote list, duplicate vendor, bad rate/percent,
      blank rejection note, selected vendor not among the quotes.
    - VendorNotFoundError: unknown or inactive vendor.
    - InvalidTransitionError: request not ready_for_cc, comparison already
      decided.
    - RequestNotFoundError / ComparisonNotFoundError.

Audit relevance:
    Rejected comparisons are never deleted; their note remains queryable
    through CostComparisonSelector.history_for_request.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procurement_kernel.domain.authority import Actor, require_role
from procurement_kernel.domain.clock import Clock
from procurement_kernel.domain.commands import QuoteInput
from procurement_kernel.domain.dtos import (
    ACTIVE_DECISIONS,
    ComparisonDecision,
    ComparisonInfo,
    DecisionOutcome,
    RequestStatus,
)
from procurement_kernel.domain.pricing import cheapest_quote
from procurement_kernel.domain.validation import (
    optional_text,
    require_enum,
    require_percent,
    require_positive,
    require_text,
)
from procurement_kernel.exceptions import (
    ComparisonNotFoundError,
    InvalidTransitionError,
    OptimisticLockError,
    ValidationError,
    VendorNotFoundError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.cost_comparison import CostComparison, Quote
from procurement_kernel.models.vendor import Vendor
from procurement_kernel.services.base import BaseService
from procurement_kernel.services.lifecycle_controller import RequestLifecycleController

logger = get_logger("services.cost_comparison")


class CostComparisonService(BaseService[CostComparison]):
    """
    Creates and decides cost comparisons.

    Contract:
        ``create`` moves the request ready_for_cc -> cc_pending.
        ``decide`` with approve moves it cc_pending -> cc_approved ->
        ready_for_po; with reject, cc_pending -> cc_rejected and, when
        ``auto_resubmit_on_reject`` is set, on to ready_for_cc.

    Non-goals:
        - Does NOT issue purchase orders.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        controller: RequestLifecycleController | None = None,
        auto_resubmit_on_reject: bool = True,
    ):
        super().__init__(session, clock)
        self._controller = controller or RequestLifecycleController(session, self._clock)
        self._auto_resubmit_on_reject = auto_resubmit_on_reject

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create(
        self,
        request_id: UUID,
        quotes: Sequence[QuoteInput],
        actor: Actor,
    ) -> ComparisonInfo:
        """
        Record an ordered set of vendor quotes against a request.

        Preconditions:
            Request status is ready_for_cc.
        Postconditions:
            Comparison persisted as pending; request is cc_pending.
        """
        require_role(actor, "comparison.create")
        validated = self._validate_quotes(quotes)

        request = self._controller.load_for_update(request_id)
        if request.status != RequestStatus.READY_FOR_CC.value:
            raise InvalidTransitionError(
                "Request", str(request.id), request.status,
                RequestStatus.CC_PENDING.value,
                reason="a cost comparison requires status ready_for_cc",
            )

        for fields in validated:
            self._require_active_vendor(fields["vendor_id"])

        if self._active_comparison_exists(request.id):
            raise InvalidTransitionError(
                "Request", str(request.id), request.status,
                RequestStatus.CC_PENDING.value,
                reason="request already has an active cost comparison",
            )

        comparison = CostComparison(
            request_id=request.id,
            decision=ComparisonDecision.PENDING.value,
            created_by_id=actor.actor_id,
            created_at=self._now(),
        )
        for position, fields in enumerate(validated):
            comparison.quotes.append(
                Quote(position=position, created_by_id=actor.actor_id, **fields)
            )
        self.session.add(comparison)
        try:
            self.session.flush()
        except IntegrityError as exc:
            # Partial unique index lost a race with a concurrent create
            raise OptimisticLockError("CostComparison", str(request.id)) from exc

        self._controller.transition(request, RequestStatus.CC_PENDING, actor)

        cheapest = cheapest_quote(comparison.quotes)
        logger.info(
            "comparison_created",
            extra={
                "comparison_id": str(comparison.id),
                "request_id": str(request.id),
                "quote_count": len(comparison.quotes),
                "cheapest_vendor_id": str(cheapest.vendor_id),
                "cheapest_unit_rate": cheapest.unit_rate,
            },
        )
        return comparison.to_dto()

    def _validate_quotes(self, quotes: Sequence[QuoteInput]) -> list[dict]:
        if not quotes:
            raise ValidationError("quotes", "at least one quote is required")

        validated = []
        seen: set[UUID] = set()
        for index, quote in enumerate(quotes):
            prefix = f"quotes[{index}]"
            if quote.vendor_id is None:
                raise ValidationError(f"{prefix}.vendor_id", "is required")
            if quote.vendor_id in seen:
                raise ValidationError(
                    f"{prefix}.vendor_id",
                    f"vendor {quote.vendor_id} is quoted more than once",
                )
            seen.add(quote.vendor_id)
            gst = quote.gst_percent
            validated.append({
                "vendor_id": quote.vendor_id,
                "unit_rate": require_positive(quote.unit_rate, f"{prefix}.unit_rate"),
                "per_unit_basis": require_positive(
                    quote.per_unit_basis, f"{prefix}.per_unit_basis"
                ),
                "discount_percent": require_percent(
                    quote.discount_percent, f"{prefix}.discount_percent"
                ),
                "gst_percent": (
                    None if gst is None else require_percent(gst, f"{prefix}.gst_percent")
                ),
                "notes": optional_text(quote.notes),
            })
        return validated

    def _require_active_vendor(self, vendor_id: UUID) -> Vendor:
        vendor = self.session.get(Vendor, vendor_id)
        if vendor is None or not vendor.is_active:
            raise VendorNotFoundError(str(vendor_id))
        return vendor

    def _active_comparison_exists(self, request_id: UUID) -> bool:
        return self.session.execute(
            select(CostComparison.id).where(
                CostComparison.request_id == request_id,
                CostComparison.decision.in_([d.value for d in ACTIVE_DECISIONS]),
            )
        ).first() is not None

    # -------------------------------------------------------------------------
    # Decide
    # -------------------------------------------------------------------------

    def decide(
        self,
        comparison_id: UUID,
        outcome: DecisionOutcome | str,
        actor: Actor,
        note: str | None = None,
        selected_vendor_id: UUID | None = None,
    ) -> ComparisonInfo:
        """
        Record the manager's verdict on a pending comparison.

        Args:
            outcome: approve or reject.
            note: Optional on approval, required on rejection.
            selected_vendor_id: Winning vendor on approval.  Defaults to
                the cheapest quote.
        """
        require_role(actor, "comparison.decide")
        outcome = require_enum(DecisionOutcome, outcome, "outcome")
        if outcome is DecisionOutcome.REJECT:
            note = require_text(note, "note")
        else:
            note = optional_text(note)

        comparison = self._load_for_update(comparison_id)
        if comparison.decision != ComparisonDecision.PENDING.value:
            raise InvalidTransitionError(
                "CostComparison", str(comparison.id), comparison.decision,
                ComparisonDecision.APPROVED.value
                if outcome is DecisionOutcome.APPROVE
                else ComparisonDecision.REJECTED.value,
                reason="comparison has already been decided",
            )

        request = self._controller.load_for_update(comparison.request_id)

        if outcome is DecisionOutcome.APPROVE:
            self._approve(comparison, request, actor, note, selected_vendor_id)
        else:
            self._reject(comparison, request, actor, note)

        return comparison.to_dto()

    def _approve(self, comparison, request, actor, note, selected_vendor_id) -> None:
        if selected_vendor_id is None:
            winner = cheapest_quote(comparison.quotes)
        else:
            winner = next(
                (q for q in comparison.quotes if q.vendor_id == selected_vendor_id),
                None,
            )
            if winner is None:
                raise ValidationError(
                    "selected_vendor_id",
                    f"vendor {selected_vendor_id} did not quote on this comparison",
                )

        comparison.decision = ComparisonDecision.APPROVED.value
        comparison.selected_quote_id = winner.id
        comparison.manager_note = note
        comparison.decided_by_id = actor.actor_id
        comparison.decided_at = self._now()
        self._stamp_update(comparison, actor)

        request.rejected_comparison_id = None
        self._controller.transition(request, RequestStatus.CC_APPROVED, actor)
        self._controller.transition(request, RequestStatus.READY_FOR_PO, actor)

        logger.info(
            "comparison_approved",
            extra={
                "comparison_id": str(comparison.id),
                "request_id": str(request.id),
                "selected_vendor_id": str(winner.vendor_id),
                "selected_unit_rate": winner.unit_rate,
                "overridden": selected_vendor_id is not None,
            },
        )

    def _reject(self, comparison, request, actor, note) -> None:
        comparison.decision = ComparisonDecision.REJECTED.value
        comparison.manager_note = note
        comparison.decided_by_id = actor.actor_id
        comparison.decided_at = self._now()
        self._stamp_update(comparison, actor)

        request.rejected_comparison_id = comparison.id
        self._controller.transition(request, RequestStatus.CC_REJECTED, actor, note=note)
        if self._auto_resubmit_on_reject:
            self._controller.transition(request, RequestStatus.READY_FOR_CC, actor)

        logger.info(
            "comparison_rejected",
            extra={
                "comparison_id": str(comparison.id),
                "request_id": str(request.id),
                "resubmitted": self._auto_resubmit_on_reject,
            },
        )

    def _load_for_update(self, comparison_id: UUID) -> CostComparison:
        comparison = self.session.execute(
            select(CostComparison)
            .where(CostComparison.id == comparison_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if comparison is None:
            raise ComparisonNotFoundError(str(comparison_id))
        return comparison
