"""
Structural tests for the request lifecycle table.

Covers:
- Every state is reachable from submitted
- Only closed is terminal
- Site engineers fire no transitions; managers decide comparisons
- Guards sit on the transitions that need evidence from other records
- Workflow rejects malformed tables
"""

from collections import deque

import pytest

from procurement_kernel.domain.authority import ActorRole
from procurement_kernel.domain.dtos import RequestStatus
from procurement_kernel.domain.request_workflow import REQUEST_WORKFLOW
from procurement_kernel.domain.workflow import Transition, Workflow

S = RequestStatus


def _reachable(workflow: Workflow) -> set[str]:
    seen = {workflow.initial_state}
    queue = deque(seen)
    while queue:
        for target in workflow.targets_from(queue.popleft()):
            if target not in seen:
                seen.add(target)
                queue.append(target)
    return seen


class TestRequestWorkflowTable:
    """Tests for REQUEST_WORKFLOW."""

    def test_every_state_reachable(self):
        assert _reachable(REQUEST_WORKFLOW) == {s.value for s in RequestStatus}

    def test_only_closed_is_terminal(self):
        dead_ends = [s for s in REQUEST_WORKFLOW.states if not REQUEST_WORKFLOW.targets_from(s)]

        assert dead_ends == [S.CLOSED.value]
        assert REQUEST_WORKFLOW.terminal_states == (S.CLOSED.value,)

    def test_site_engineers_fire_nothing(self):
        assert not any(
            ActorRole.SITE_ENGINEER.value in t.roles for t in REQUEST_WORKFLOW.transitions
        )

    @pytest.mark.parametrize("target", [S.CC_APPROVED, S.CC_REJECTED])
    def test_manager_decides(self, target):
        transition = REQUEST_WORKFLOW.find_transition(S.CC_PENDING.value, target.value)

        assert transition.roles == (ActorRole.MANAGER.value,)
        assert transition.guard.name == "comparison_decided"

    @pytest.mark.parametrize(
        "source, target, guard",
        [
            (S.READY_FOR_CC, S.CC_PENDING, "active_comparison_pending"),
            (S.READY_FOR_PO, S.PO_ISSUED, "purchase_order_issued"),
            (S.SUBMITTED, S.PO_ISSUED, "purchase_order_issued"),
            (S.PO_ISSUED, S.READY_FOR_PO, "no_live_purchase_order"),
            (S.PO_ISSUED, S.DELIVERY_STAGE, "active_delivery_exists"),
            (S.DELIVERY_STAGE, S.PO_ISSUED, "no_active_delivery"),
            (S.DELIVERY_STAGE, S.DELIVERED, "ordered_quantity_delivered"),
        ],
    )
    def test_guarded_transitions(self, source, target, guard):
        transition = REQUEST_WORKFLOW.find_transition(source.value, target.value)

        assert transition.guard.name == guard

    @pytest.mark.parametrize(
        "source, target",
        [
            (S.SUBMITTED, S.CC_PENDING),
            (S.CC_APPROVED, S.PO_ISSUED),
            (S.DELIVERED, S.DELIVERY_STAGE),
            (S.CLOSED, S.SUBMITTED),
        ],
    )
    def test_skips_are_absent(self, source, target):
        assert REQUEST_WORKFLOW.find_transition(source.value, target.value) is None


class TestWorkflowValidation:
    """Tests for Workflow construction checks."""

    def test_unknown_initial_state(self):
        with pytest.raises(ValueError, match="initial state"):
            Workflow("w", "", initial_state="x", states=("a",), transitions=())

    def test_transition_to_undeclared_state(self):
        with pytest.raises(ValueError, match="undeclared"):
            Workflow(
                "w", "", initial_state="a", states=("a",),
                transitions=(Transition("a", "b", action="go"),),
            )

    def test_duplicate_transition(self):
        with pytest.raises(ValueError, match="duplicate"):
            Workflow(
                "w", "", initial_state="a", states=("a", "b"),
                transitions=(
                    Transition("a", "b", action="go"),
                    Transition("a", "b", action="again"),
                ),
            )
