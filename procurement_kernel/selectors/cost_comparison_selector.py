"""
Module: procurement_kernel.selectors.cost_comparison_selector
Responsibility: Read-only queries over cost comparisons, including the
    rejection history a purchase officer consults before re-quoting.
Architecture position: Kernel > Selectors.

Audit relevance:
    Rejected comparisons are never deleted; history_for_request returns them
    with their manager notes in creation order.
"""

from uuid import UUID

from sqlalchemy import select

from procurement_kernel.domain.dtos import ACTIVE_DECISIONS, ComparisonDecision, ComparisonInfo
from procurement_kernel.exceptions import ComparisonNotFoundError
from procurement_kernel.models.cost_comparison import CostComparison
from procurement_kernel.selectors.base import BaseSelector


class CostComparisonSelector(BaseSelector[CostComparison]):
    """Comparison lookups."""

    def get(self, comparison_id: UUID) -> ComparisonInfo:
        comparison = self.session.get(CostComparison, comparison_id)
        if comparison is None:
            raise ComparisonNotFoundError(str(comparison_id))
        return comparison.to_dto()

    def history_for_request(self, request_id: UUID) -> list[ComparisonInfo]:
        """Every comparison ever raised for the request, oldest first."""
        comparisons = self.session.execute(
            select(CostComparison)
            .where(CostComparison.request_id == request_id)
            .order_by(CostComparison.created_at, CostComparison.id)
        ).scalars().all()
        return [c.to_dto() for c in comparisons]

    def active_for_request(self, request_id: UUID) -> ComparisonInfo | None:
        """The pending or approved comparison, if any."""
        comparison = self.session.execute(
            select(CostComparison).where(
                CostComparison.request_id == request_id,
                CostComparison.decision.in_([d.value for d in ACTIVE_DECISIONS]),
            )
        ).scalar_one_or_none()
        return comparison.to_dto() if comparison is not None else None

    def pending(self) -> list[ComparisonInfo]:
        """Comparisons awaiting a manager decision, oldest first."""
        comparisons = self.session.execute(
            select(CostComparison)
            .where(CostComparison.decision == ComparisonDecision.PENDING.value)
            .order_by(CostComparison.created_at, CostComparison.id)
        ).scalars().all()
        return [c.to_dto() for c in comparisons]
